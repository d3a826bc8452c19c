from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

import typer

from dunning import __version__
from dunning.config import (
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from dunning.domain import codec
from dunning.domain.models import Action, ActionDraft
from dunning.domain.rules import ConflictError, NotFoundError, ValidationError
from dunning.domain.stages import day_id_for
from dunning.services import exports
from dunning.services.events import EventLogger
from dunning.services.workspace import TimelineWorkspace
from dunning.store.base import StorageError
from dunning.store.migrations import SchemaError
from dunning.store.sqlite import SqliteStore

app = typer.Typer(help="Collection timeline editor")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
timeline_app = typer.Typer(help="Timelines")
day_app = typer.Typer(help="Timeline days")
library_app = typer.Typer(help="Shared action library")
action_app = typer.Typer(help="Actions placed on timeline days")
condition_app = typer.Typer(help="Conditional branches between actions")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(timeline_app, name="timeline")
app.add_typer(day_app, name="day")
app.add_typer(library_app, name="library")
app.add_typer(action_app, name="action")
app.add_typer(condition_app, name="condition")
app.add_typer(export_app, name="export")

SCHEMA_PATH = Path("resources/schema/canonical.yaml")
CORE_ERRORS = (ValidationError, NotFoundError, ConflictError, StorageError)


@app.callback()
def version_callback(version: bool = typer.Option(False, "--version", help="Show version and exit.")):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and exports."""
    ensure_workspaces_dir()
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized dunning directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    config_path = write_workspace_config(name)
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        schema = store.apply_schema(SCHEMA_PATH)
    except (SchemaError, StorageError) as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Applied schema v{schema.version} to local SQLite.")


@timeline_app.command("create")
def timeline_create(name: str | None = typer.Argument(None)) -> None:
    workspace = _open_workspace()
    try:
        timeline = workspace.create_timeline(name)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created timeline: {timeline.id} ({timeline.name})")


@timeline_app.command("list")
def timeline_list(json_output: bool = typer.Option(False, "--json", help="Emit JSON output.")) -> None:
    workspace = _open_workspace()
    summaries = workspace.list_timelines()
    if json_output:
        typer.echo(json.dumps([asdict(s) for s in summaries], indent=2))
        return
    if not summaries:
        typer.echo("No timelines.")
        return
    for s in summaries:
        typer.echo(
            f"{s.timeline_id} | {s.name} | {s.active_day_count}/{s.day_count} days active | "
            f"{s.action_count} actions | {s.created_at}"
        )


@timeline_app.command("show")
def timeline_show(
    timeline_id: str = typer.Argument(...),
    all_days: bool = typer.Option(False, "--all-days", help="Include inactive days."),
    json_output: bool = typer.Option(False, "--json", help="Emit the stored record as JSON."),
) -> None:
    workspace = _open_workspace()
    try:
        timeline = workspace.get_timeline(timeline_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    if json_output:
        typer.echo(json.dumps(codec.timeline_to_record(timeline), indent=2))
        return
    typer.echo(f"{timeline.name} ({timeline.id})")
    for day in timeline.days:
        if not day.active and not all_days:
            continue
        marker = "" if day.active else " [inactive]"
        typer.echo(f"{day.label}{marker}")
        for action in day.actions:
            typer.echo(f"  {_action_line(action)}")
            for condition in action.conditions:
                typer.echo(
                    f"    if {condition.previous_action_id} {condition.type} -> "
                    f"{condition.action.name} ({condition.action.id}) [{condition.id}]"
                )


@timeline_app.command("rename")
def timeline_rename(timeline_id: str = typer.Argument(...), name: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        workspace.rename_timeline(timeline_id, name)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Renamed timeline: {timeline_id}")


@timeline_app.command("duplicate")
def timeline_duplicate(timeline_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        duplicate = workspace.duplicate_timeline(timeline_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created timeline: {duplicate.id} ({duplicate.name})")


@timeline_app.command("delete")
def timeline_delete(timeline_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        workspace.delete_timeline(timeline_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Deleted timeline: {timeline_id}")


@timeline_app.command("export")
def timeline_export(
    timeline_id: str = typer.Argument(...),
    out: str | None = typer.Option(None, "--out", help="Write to a file instead of stdout."),
) -> None:
    """Export name, active days and library actions (not a backup)."""
    workspace = _open_workspace()
    try:
        document = workspace.export_config(timeline_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    if out is None:
        typer.echo(exports.dump_config(document), nl=False)
        return
    try:
        exports.write_config(document, Path(out))
    except OSError as exc:
        _exit_with_error(f"Cannot write {out}: {exc}")
    typer.echo(f"Exported timeline to {out}")


@timeline_app.command("import")
def timeline_import(path: str = typer.Argument(..., help="Export document (JSON).")) -> None:
    workspace = _open_workspace()
    try:
        document = exports.read_config(Path(path))
        timeline = workspace.import_config(document)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Imported timeline: {timeline.id} ({timeline.name})")


@day_app.command("toggle")
def day_toggle(
    timeline_id: str = typer.Argument(...),
    day: int = typer.Option(..., "--day", help="Offset from the due date, e.g. -3, 0, 15."),
) -> None:
    workspace = _open_workspace()
    try:
        toggled = workspace.toggle_day_active(timeline_id, day_id_for(day))
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    state = "active" if toggled.active else "inactive"
    typer.echo(f"{toggled.label} is now {state}.")


@library_app.command("list")
def library_list() -> None:
    workspace = _open_workspace()
    items = workspace.list_library_actions()
    if not items:
        typer.echo("Library is empty.")
        return
    for action in items:
        typer.echo(_action_line(action))


@library_app.command("add")
def library_add(
    action_type: str = typer.Option(..., "--type", help="email, whatsapp, sms or negativar"),
    name: str = typer.Option(..., "--name"),
    subject: str = typer.Option("", "--subject"),
    message: str = typer.Option("", "--message"),
    send_time: str | None = typer.Option(None, "--send-time", help="HH:MM"),
) -> None:
    workspace = _open_workspace()
    draft = ActionDraft(type=action_type, name=name, subject=subject, message=message, send_time=send_time)
    try:
        action = workspace.add_library_action(draft)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created library action: {action.id}")


@library_app.command("update")
def library_update(
    action_id: str = typer.Argument(...),
    action_type: str | None = typer.Option(None, "--type"),
    name: str | None = typer.Option(None, "--name"),
    subject: str | None = typer.Option(None, "--subject"),
    message: str | None = typer.Option(None, "--message"),
    send_time: str | None = typer.Option(None, "--send-time", help="HH:MM"),
) -> None:
    workspace = _open_workspace()
    try:
        current = workspace.get_library_action(action_id)
        draft = _merged_draft(current, action_type, name, subject, message, send_time)
        workspace.update_library_action(action_id, draft)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Updated library action: {action_id}")


@library_app.command("clone")
def library_clone(action_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        clone = workspace.clone_library_action(action_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created library action: {clone.id} ({clone.name})")


@library_app.command("delete")
def library_delete(action_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        workspace.delete_library_action(action_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Deleted library action: {action_id}")


@action_app.command("add")
def action_add(
    timeline_id: str = typer.Argument(...),
    day: int = typer.Option(..., "--day", help="Offset from the due date."),
    action_type: str = typer.Option(..., "--type", help="email, whatsapp, sms or negativar"),
    name: str = typer.Option(..., "--name"),
    subject: str = typer.Option("", "--subject"),
    message: str = typer.Option("", "--message"),
    send_time: str | None = typer.Option(None, "--send-time", help="HH:MM"),
) -> None:
    workspace = _open_workspace()
    draft = ActionDraft(type=action_type, name=name, subject=subject, message=message, send_time=send_time)
    try:
        action = workspace.create_day_action(timeline_id, day_id_for(day), draft)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created action: {action.id}")


@action_app.command("update")
def action_update(
    timeline_id: str = typer.Argument(...),
    action_id: str = typer.Argument(...),
    action_type: str | None = typer.Option(None, "--type"),
    name: str | None = typer.Option(None, "--name"),
    subject: str | None = typer.Option(None, "--subject"),
    message: str | None = typer.Option(None, "--message"),
    send_time: str | None = typer.Option(None, "--send-time", help="HH:MM"),
) -> None:
    workspace = _open_workspace()
    try:
        timeline = workspace.get_timeline(timeline_id)
        located = timeline.locate(action_id)
        if located is None:
            raise NotFoundError(f"Action not found in timeline {timeline_id}: {action_id}")
        draft = _merged_draft(located[1], action_type, name, subject, message, send_time)
        workspace.update_action(timeline_id, action_id, draft)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Updated action: {action_id}")


@action_app.command("clone")
def action_clone(timeline_id: str = typer.Argument(...), action_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        clone = workspace.clone_action(timeline_id, action_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Created action: {clone.id} ({clone.name})")


@action_app.command("delete")
def action_delete(timeline_id: str = typer.Argument(...), action_id: str = typer.Argument(...)) -> None:
    workspace = _open_workspace()
    try:
        workspace.delete_action(timeline_id, action_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Deleted action: {action_id}")


@action_app.command("move")
def action_move(
    timeline_id: str = typer.Argument(...),
    action_id: str = typer.Argument(...),
    to_day: int = typer.Option(..., "--to", help="Target day offset."),
    from_day: int | None = typer.Option(None, "--from", help="Source day offset."),
    from_library: bool = typer.Option(False, "--from-library", help="Copy a library action."),
) -> None:
    if from_library == (from_day is not None):
        raise typer.BadParameter("Pass exactly one of --from or --from-library.")
    source_day_id = None if from_library else day_id_for(from_day)
    workspace = _open_workspace()
    try:
        result = workspace.move_action(timeline_id, source_day_id, day_id_for(to_day), action_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"{result.kind.value}: {result.action.id} -> {result.target_day_id}")


@condition_app.command("add")
def condition_add(
    action_id: str = typer.Argument(..., help="Action that holds the condition."),
    previous: str = typer.Option(..., "--previous", help="Action whose outcome is checked."),
    outcome: str = typer.Option(..., "--outcome", help="delivered, opened, clicked, not_..."),
    then: str = typer.Option(..., "--then", help="Action to perform."),
    timeline_id: str | None = typer.Option(
        None, "--timeline", help="Timeline of the holder; omit for library actions."
    ),
    condition_id: str | None = typer.Option(None, "--edit", help="Existing condition id to replace."),
) -> None:
    workspace = _open_workspace()
    try:
        editor = workspace.edit_condition(timeline_id, action_id, condition_id)
        editor.choose_previous(previous)
        editor.choose_outcome(outcome)
        editor.choose_then(then)
        condition = workspace.save_condition(editor)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Saved condition: {condition.id}")


@condition_app.command("remove")
def condition_remove(
    action_id: str = typer.Argument(...),
    condition_id: str = typer.Argument(...),
    timeline_id: str | None = typer.Option(None, "--timeline"),
) -> None:
    workspace = _open_workspace()
    try:
        workspace.remove_condition(timeline_id, action_id, condition_id)
        workspace.flush()
    except CORE_ERRORS as exc:
        _exit_with_error(_describe(exc))
    typer.echo(f"Removed condition: {condition_id}")


@export_app.command("excel")
def export_excel(
    timeline_id: str = typer.Argument(...),
    out: str = typer.Option(..., "--out"),
) -> None:
    workspace = _open_workspace()
    try:
        timeline = workspace.get_timeline(timeline_id)
    except NotFoundError as exc:
        _exit_with_error(str(exc))
    try:
        exports.export_excel(timeline, workspace.library, Path(out))
    except OSError as exc:
        _exit_with_error(f"Cannot write {out}: {exc}")
    typer.echo(f"Exported Excel to {out}")


def _load_workspace():
    try:
        return load_workspace()
    except WorkspaceError as exc:
        _exit_with_error(str(exc))


def _open_workspace() -> TimelineWorkspace:
    ws = _load_workspace()
    logger = EventLogger(path=ws.events_path, workspace=ws.name, enabled=ws.events_enabled)
    try:
        return TimelineWorkspace.load(
            SqliteStore(ws.store.sqlite_path), logger=logger, timeline_config=ws.timeline
        )
    except (StorageError, ValidationError) as exc:
        _exit_with_error(f"{exc} (did you run `dunning schema apply`?)")


def _merged_draft(
    current: Action,
    action_type: str | None,
    name: str | None,
    subject: str | None,
    message: str | None,
    send_time: str | None,
) -> ActionDraft:
    return ActionDraft(
        type=action_type if action_type is not None else current.type,
        name=name if name is not None else current.name,
        subject=subject if subject is not None else current.subject,
        message=message if message is not None else current.message,
        send_time=send_time if send_time is not None else current.send_time,
    )


def _action_line(action: Action) -> str:
    when = f" @ {action.send_time}" if action.send_time else ""
    return f"{action.id} | {action.type} | {action.name}{when} | {len(action.conditions)} conditions"


def _describe(exc: Exception) -> str:
    references = getattr(exc, "references", None)
    if not references:
        return str(exc)
    listed = ", ".join(f"{holder}/{condition}" for holder, condition in references)
    return f"{exc} [{listed}]"


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
