from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from dunning.config import TimelineConfig
from dunning.domain import codec
from dunning.domain.models import Action, ActionDraft, Condition, Day, Library, Timeline, TimelineSummary
from dunning.domain.rules import ConflictError, NotFoundError
from dunning.domain.stages import eligible_outcomes
from dunning.services import actions, conditions, exports, placement, timelines
from dunning.services.conditions import ConditionEditor, ConditionScope
from dunning.services.events import EventLogger, disabled_logger
from dunning.services.persistence import Autosaver, WriteQueue
from dunning.services.placement import Placement, PlacementKind
from dunning.store.base import LIBRARY, TIMELINES, KeyedStore, StorageError


class TimelineWorkspace:
    """Editing state for one workspace: the shared library and its timelines.

    Every operation changes the in-memory aggregates first and queues the
    touched records for ``flush``. A failed flush leaves memory as it is and
    keeps the records queued.
    """

    def __init__(
        self,
        store: KeyedStore,
        logger: EventLogger | None = None,
        timeline_config: TimelineConfig | None = None,
        debounce_seconds: float = 0.0,
    ) -> None:
        self.store = store
        self.logger = logger or disabled_logger()
        self.timeline_config = timeline_config or TimelineConfig()
        self.queue = WriteQueue(store)
        self.autosaver = Autosaver(self.queue.flush, debounce_seconds, self._log_flush_failure)
        self.library = Library()
        self.timelines: dict[str, Timeline] = {}

    @classmethod
    def load(cls, store: KeyedStore, **kwargs: Any) -> TimelineWorkspace:
        workspace = cls(store, **kwargs)
        workspace.reload()
        return workspace

    def reload(self) -> None:
        self.library = Library(
            actions=[codec.action_from_record(r) for r in self.store.get_all(LIBRARY)]
        )
        loaded = [codec.timeline_from_record(r) for r in self.store.get_all(TIMELINES)]
        self.timelines = {timeline.id: timeline for timeline in loaded}

    def flush(self) -> int:
        try:
            return self.queue.flush()
        except StorageError as exc:
            self._log_flush_failure(exc)
            raise

    def close(self) -> None:
        self.autosaver.cancel()

    # Timelines

    def create_timeline(self, name: str | None = None) -> Timeline:
        cfg = self.timeline_config
        timeline = timelines.create_timeline(name, cfg.first_day, cfg.last_day, cfg.default_name)
        self.timelines[timeline.id] = timeline
        self._mark_timeline(timeline)
        self._event("timeline_created", "timeline", timeline.id, timeline.id, name=timeline.name)
        return timeline

    def list_timelines(self) -> list[TimelineSummary]:
        ordered = sorted(self.timelines.values(), key=lambda t: (t.created_at, t.name))
        return [timelines.summarize(t) for t in ordered]

    def get_timeline(self, timeline_id: str) -> Timeline:
        timeline = self.timelines.get(timeline_id)
        if timeline is None:
            raise NotFoundError(f"Timeline not found: {timeline_id}")
        return timeline

    def rename_timeline(self, timeline_id: str, name: str) -> Timeline:
        timeline = timelines.rename_timeline(self.get_timeline(timeline_id), name)
        self._mark_timeline(timeline)
        self._event("timeline_renamed", "timeline", timeline.id, timeline.id, name=timeline.name)
        return timeline

    def duplicate_timeline(self, timeline_id: str) -> Timeline:
        source = self.get_timeline(timeline_id)
        duplicate = timelines.duplicate_timeline(source)
        self.timelines[duplicate.id] = duplicate
        self._mark_timeline(duplicate)
        self._event("timeline_duplicated", "timeline", duplicate.id, duplicate.id, source=source.id)
        return duplicate

    def delete_timeline(self, timeline_id: str) -> None:
        self.get_timeline(timeline_id)
        del self.timelines[timeline_id]
        self.queue.mark_delete(TIMELINES, timeline_id)
        self.autosaver.touch()
        self._event("timeline_deleted", "timeline", timeline_id, timeline_id)

    def toggle_day_active(self, timeline_id: str, day_id: str) -> Day:
        timeline = self.get_timeline(timeline_id)
        day = placement.toggle_day_active(timeline, day_id)
        self._mark_timeline(timeline)
        self._event("day_toggled", "day", day.id, timeline.id, active=day.active)
        return day

    # Day actions

    def create_day_action(self, timeline_id: str, day_id: str, draft: ActionDraft) -> Action:
        timeline = self.get_timeline(timeline_id)
        placement.require_day(timeline, day_id)
        action = actions.new_action(draft, day_id)
        placement.add_action_to_day(timeline, day_id, action)
        self._mark_timeline(timeline)
        self._event("action_added", "action", action.id, timeline.id, day_id=day_id)
        return action

    def add_action_to_day(self, timeline_id: str, day_id: str, action: Action) -> Action:
        """Place ``action`` on a day, replacing the same id there if present."""
        timeline = self.get_timeline(timeline_id)
        day = placement.require_day(timeline, day_id)
        actions.validate_action(action)
        if self.library.find(action.id) is not None:
            raise ConflictError(f"Action {action.id} lives in the library; drop it onto the day instead.")
        existing = day.find_action(action.id)
        if existing is not None:
            self._ensure_type_change_allowed(existing, action.type, self._timeline_actions(timeline))
        appended = placement.add_action_to_day(timeline, day_id, action)
        try:
            scope = ConditionScope(self.library, timeline)
            for condition in action.conditions:
                conditions.validate_condition(scope, action, condition)
            conditions.ensure_acyclic(scope.all_actions())
        except Exception:
            if appended:
                day.actions.remove(action)
            else:
                day.actions[day.actions.index(action)] = existing
            raise
        actions.refresh_snapshots(action, self._timeline_actions(timeline))
        self._mark_timeline(timeline)
        event = "action_added" if appended else "action_updated"
        self._event(event, "action", action.id, timeline.id, day_id=day_id)
        return action

    def update_action(self, timeline_id: str, action_id: str, draft: ActionDraft) -> Action:
        timeline = self.get_timeline(timeline_id)
        _, action = placement.require_action(timeline, action_id)
        actions.validate_draft(draft)
        self._ensure_type_change_allowed(action, draft.type, self._timeline_actions(timeline))
        actions.apply_draft(action, draft)
        actions.refresh_snapshots(action, self._timeline_actions(timeline))
        self._mark_timeline(timeline)
        self._event("action_updated", "action", action.id, timeline.id)
        return action

    def clone_action(self, timeline_id: str, action_id: str) -> Action:
        timeline = self.get_timeline(timeline_id)
        day, action = placement.require_action(timeline, action_id)
        clone = actions.clone_action(action)
        placement.add_action_to_day(timeline, day.id, clone)
        self._mark_timeline(timeline)
        self._event("action_cloned", "action", clone.id, timeline.id, source=action.id)
        return clone

    def delete_action(self, timeline_id: str, action_id: str) -> Action:
        timeline = self.get_timeline(timeline_id)
        placement.require_action(timeline, action_id)
        actions.ensure_unreferenced(action_id, self._timeline_actions(timeline))
        action = placement.remove_action(timeline, action_id)
        self._mark_timeline(timeline)
        self._event("action_deleted", "action", action_id, timeline.id)
        return action

    def move_action(
        self,
        timeline_id: str,
        source_day_id: str | None,
        target_day_id: str,
        action_id: str,
    ) -> Placement:
        timeline = self.get_timeline(timeline_id)
        result = placement.move_action(
            timeline, self.library, source_day_id, target_day_id, action_id
        )
        if result.kind is PlacementKind.UNCHANGED:
            return result
        self._mark_timeline(timeline)
        event = "action_moved" if result.kind is PlacementKind.MOVED else "action_copied_from_library"
        self._event(
            event,
            "action",
            result.action.id,
            timeline.id,
            source_action=action_id,
            source_day_id=result.source_day_id,
            target_day_id=result.target_day_id,
        )
        return result

    # Library

    def list_library_actions(self) -> list[Action]:
        return list(self.library.actions)

    def get_library_action(self, action_id: str) -> Action:
        action = self.library.find(action_id)
        if action is None:
            raise NotFoundError(f"Library action not found: {action_id}")
        return action

    def add_library_action(self, draft: ActionDraft) -> Action:
        action = actions.new_action(draft)
        self.library.actions.append(action)
        self._mark_library_action(action)
        self._event("library_action_added", "library_action", action.id)
        return action

    def update_library_action(self, action_id: str, draft: ActionDraft) -> Action:
        action = self.get_library_action(action_id)
        actions.validate_draft(draft)
        self._ensure_type_change_allowed(action, draft.type, self._all_actions())
        actions.apply_draft(action, draft)
        self._mark_library_action(action)
        for holder in self.library.actions:
            if actions.refresh_snapshots(action, [holder]):
                self._mark_library_action(holder)
        for timeline in self.timelines.values():
            if actions.refresh_snapshots(action, self._timeline_actions(timeline)):
                self._mark_timeline(timeline)
        self._event("library_action_updated", "library_action", action.id)
        return action

    def clone_library_action(self, action_id: str) -> Action:
        source = self.get_library_action(action_id)
        clone = actions.clone_action(source)
        clone.day_id = None
        self.library.actions.append(clone)
        self._mark_library_action(clone)
        self._event("library_action_cloned", "library_action", clone.id, source=source.id)
        return clone

    def delete_library_action(self, action_id: str) -> Action:
        action = self.get_library_action(action_id)
        actions.ensure_unreferenced(action_id, self._all_actions())
        self.library.actions.remove(action)
        self.queue.mark_delete(LIBRARY, action_id)
        self.autosaver.touch()
        self._event("library_action_deleted", "library_action", action_id)
        return action

    # Conditions

    def edit_condition(
        self,
        timeline_id: str | None,
        action_id: str,
        condition_id: str | None = None,
    ) -> ConditionEditor:
        scope = self._scope(timeline_id)
        holder = self._require_holder(scope, timeline_id, action_id)
        condition = None
        if condition_id is not None:
            condition = holder.find_condition(condition_id)
            if condition is None:
                raise NotFoundError(f"Condition not found on {action_id}: {condition_id}")
        return ConditionEditor(scope, holder.id, condition, timeline_id=timeline_id)

    def save_condition(self, editor: ConditionEditor) -> Condition:
        condition = editor.build()
        scope = self._scope(editor.timeline_id)
        holder = self._require_holder(scope, editor.timeline_id, editor.holder.id)
        conditions.validate_condition(scope, holder, condition)
        previous = holder.find_condition(condition.id)
        index = holder.conditions.index(previous) if previous is not None else None
        created = conditions.upsert_condition(holder, condition)
        try:
            conditions.ensure_acyclic(scope.all_actions())
        except Exception:
            if index is None:
                holder.conditions.remove(condition)
            else:
                holder.conditions[index] = previous
            raise
        self._mark_holder(editor.timeline_id, holder)
        self._event(
            "condition_saved",
            "condition",
            condition.id,
            editor.timeline_id,
            holder=holder.id,
            created=created,
        )
        return condition

    def remove_condition(self, timeline_id: str | None, action_id: str, condition_id: str) -> Condition:
        scope = self._scope(timeline_id)
        holder = self._require_holder(scope, timeline_id, action_id)
        condition = conditions.remove_condition(holder, condition_id)
        self._mark_holder(timeline_id, holder)
        self._event("condition_removed", "condition", condition_id, timeline_id, holder=holder.id)
        return condition

    # Export / import

    def export_config(self, timeline_id: str) -> dict[str, Any]:
        return exports.export_config(self.get_timeline(timeline_id), self.library)

    def import_config(self, document: dict[str, Any]) -> Timeline:
        cfg = self.timeline_config
        timeline, added = exports.import_config(
            document, self.library, cfg.first_day, cfg.last_day
        )
        for action in added:
            self.library.actions.append(action)
            self._mark_library_action(action)
        self.timelines[timeline.id] = timeline
        self._mark_timeline(timeline)
        self._event(
            "timeline_imported",
            "timeline",
            timeline.id,
            timeline.id,
            library_actions_added=len(added),
        )
        return timeline

    # Internals

    def _scope(self, timeline_id: str | None) -> ConditionScope:
        if timeline_id is None:
            return ConditionScope(self.library)
        return ConditionScope(self.library, self.get_timeline(timeline_id))

    def _require_holder(self, scope: ConditionScope, timeline_id: str | None, action_id: str) -> Action:
        holder = scope.actions.get(action_id)
        if holder is None:
            where = f"timeline {timeline_id}" if timeline_id else "the library"
            raise NotFoundError(f"Action not found in {where}: {action_id}")
        return holder

    def _mark_holder(self, timeline_id: str | None, holder: Action) -> None:
        if self.library.find(holder.id) is holder:
            self._mark_library_action(holder)
        else:
            self._mark_timeline(self.get_timeline(timeline_id))

    def _timeline_actions(self, timeline: Timeline) -> list[Action]:
        return [action for _, action in timeline.iter_actions()]

    def _all_actions(self) -> list[Action]:
        found = list(self.library.actions)
        for timeline in self.timelines.values():
            found.extend(self._timeline_actions(timeline))
        return found

    def _ensure_type_change_allowed(
        self, action: Action, new_type: str, holders: Iterable[Action]
    ) -> None:
        if new_type == action.type:
            return
        offered = eligible_outcomes(new_type)
        blocked = [
            (holder.id, condition.id)
            for holder in holders
            for condition in holder.conditions
            if condition.previous_action_id == action.id and condition.type not in offered
        ]
        if blocked:
            raise ConflictError(
                f"Action {action.id} cannot become {new_type}: conditions depend on its "
                f"{action.type} outcomes.",
                blocked,
            )

    def _mark_timeline(self, timeline: Timeline) -> None:
        self.queue.mark_put(TIMELINES, codec.timeline_to_record(timeline))
        self.autosaver.touch()

    def _mark_library_action(self, action: Action) -> None:
        self.queue.mark_put(LIBRARY, codec.action_to_record(action))
        self.autosaver.touch()

    def _event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        timeline_id: str | None = None,
        **details: Any,
    ) -> None:
        self.logger.log(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            timeline_id=timeline_id,
            details=details,
        )

    def _log_flush_failure(self, exc: StorageError) -> None:
        self._event("flush_failed", "store", "flush", error=str(exc))
