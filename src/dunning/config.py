from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from dunning.domain.stages import DEFAULT_TIMELINE_NAME, FIRST_DAY, LAST_DAY

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"
DEFAULT_DEBOUNCE_SECONDS = 2.0


@dataclass(frozen=True)
class StoreConfig:
    sqlite_path: Path


@dataclass(frozen=True)
class TimelineConfig:
    first_day: int = FIRST_DAY
    last_day: int = LAST_DAY
    default_name: str = DEFAULT_TIMELINE_NAME


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    store: StoreConfig
    timeline: TimelineConfig
    debounce_seconds: float
    events_enabled: bool
    path: Path

    @property
    def events_path(self) -> Path:
        return self.path / "events.ndjson"


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `dunning workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    return load_workspace_file(workspace_config_path(name), name)


def load_workspace_file(config_path: Path, name: str | None = None) -> WorkspaceConfig:
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise WorkspaceError(f"Workspace config is not valid YAML: {config_path}") from exc
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    return WorkspaceConfig(
        name=name or data.get("workspace") or config_path.parent.name,
        store=_parse_store(data.get("store"), config_path),
        timeline=_parse_timeline(data.get("timeline")),
        debounce_seconds=_parse_debounce(data.get("autosave")),
        events_enabled=_parse_events(data.get("events")),
        path=config_path.parent,
    )


def write_workspace_config(name: str) -> Path:
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    config = {
        "workspace": name,
        "store": {"sqlite_path": "./local.sqlite"},
        "timeline": {
            "first_day": FIRST_DAY,
            "last_day": LAST_DAY,
            "default_name": DEFAULT_TIMELINE_NAME,
        },
        "autosave": {"debounce_seconds": DEFAULT_DEBOUNCE_SECONDS},
        "events": {"enabled": True},
    }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def _parse_store(store_data: Any, config_path: Path) -> StoreConfig:
    if not isinstance(store_data, dict):
        raise WorkspaceError("Invalid workspace store configuration.")
    sqlite_path_raw = store_data.get("sqlite_path")
    if not sqlite_path_raw:
        raise WorkspaceError("Workspace store.sqlite_path is required.")
    sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
    if sqlite_path is None:
        raise WorkspaceError("Workspace store.sqlite_path must be a string.")
    return StoreConfig(sqlite_path=sqlite_path)


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        # Paths written relative to the repo root.
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()


def _parse_timeline(timeline_data: Any) -> TimelineConfig:
    if timeline_data is None:
        return TimelineConfig()
    if not isinstance(timeline_data, dict):
        raise WorkspaceError("Workspace timeline must be a mapping.")
    first_day = timeline_data.get("first_day", FIRST_DAY)
    last_day = timeline_data.get("last_day", LAST_DAY)
    for key, value in (("first_day", first_day), ("last_day", last_day)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise WorkspaceError(f"Workspace timeline.{key} must be an integer.")
    if not first_day <= 0 <= last_day:
        raise WorkspaceError("Workspace timeline range must include the due date (0).")
    default_name = timeline_data.get("default_name") or DEFAULT_TIMELINE_NAME
    if not isinstance(default_name, str):
        raise WorkspaceError("Workspace timeline.default_name must be a string.")
    return TimelineConfig(first_day=first_day, last_day=last_day, default_name=default_name)


def _parse_debounce(autosave_data: Any) -> float:
    if autosave_data is None:
        return DEFAULT_DEBOUNCE_SECONDS
    if not isinstance(autosave_data, dict):
        raise WorkspaceError("Workspace autosave must be a mapping.")
    value = autosave_data.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
        raise WorkspaceError("Workspace autosave.debounce_seconds must be a number >= 0.")
    return float(value)


def _parse_events(events_data: Any) -> bool:
    if events_data is None:
        return True
    if not isinstance(events_data, dict):
        raise WorkspaceError("Workspace events must be a mapping.")
    enabled = events_data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise WorkspaceError("Workspace events.enabled must be true or false.")
    return enabled
