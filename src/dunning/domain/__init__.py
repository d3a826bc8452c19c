from dunning.domain.models import (
    Action,
    ActionDraft,
    Condition,
    Day,
    Library,
    Timeline,
    TimelineSummary,
)
from dunning.domain.rules import ConflictError, NotFoundError, ValidationError

__all__ = [
    "Action",
    "ActionDraft",
    "Condition",
    "ConflictError",
    "Day",
    "Library",
    "NotFoundError",
    "Timeline",
    "TimelineSummary",
    "ValidationError",
]
