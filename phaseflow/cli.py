"""Command line interface for running and inspecting phaseflow workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

import typer

from phaseflow.config import PhaseflowConfig, load_config
from phaseflow.contracts import InstanceStatus
from phaseflow.engine import WorkflowEngine
from phaseflow.errors import PhaseflowError, ValidationGateError
from phaseflow.manager import WorkflowInstanceManager
from phaseflow.persistence import InstanceSnapshot, SnapshotStore, StorageArea, get_store

app = typer.Typer(help="CLI for phaseflow workflows")

templates_app = typer.Typer(help="Commands for workflow templates")
instances_app = typer.Typer(help="Commands for persisted workflow instances")

app.add_typer(templates_app, name="templates")
app.add_typer(instances_app, name="instances")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info logging"),
) -> None:
    """phaseflow CLI entry point."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _config(
    storage_dir: Optional[str] = None, templates_dir: Optional[str] = None
) -> PhaseflowConfig:
    config = load_config()
    if storage_dir:
        config.storage.directory = storage_dir
    if templates_dir:
        config.templates_dir = templates_dir
    return config


def _engine(config: PhaseflowConfig) -> WorkflowEngine:
    engine = WorkflowEngine()
    if config.templates_dir:
        engine.load_templates(config.templates_dir)
    return engine


def _parse_options(values: List[str]) -> dict:
    options = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        options[key] = value
    return options


async def _find_snapshot(
    store: SnapshotStore, instance_id: str
) -> Optional[Tuple[StorageArea, InstanceSnapshot]]:
    for area in StorageArea:
        if await store.exists(instance_id, area):
            return area, await store.load(instance_id, area)
    return None


async def _all_snapshots(store: SnapshotStore) -> List[Tuple[StorageArea, InstanceSnapshot]]:
    found = []
    for area in StorageArea:
        for instance_id in await store.list_instance_ids(area):
            try:
                found.append((area, await store.load(instance_id, area)))
            except (OSError, ValueError) as exc:
                typer.secho(f"Skipping {area.value}/{instance_id}: {exc}", fg=typer.colors.YELLOW)
    return found


# ----------------------------------------------------------------------
# templates


@templates_app.command("list")
def templates_list(
    templates_dir: Optional[str] = typer.Option(None, help="Directory of YAML templates"),
) -> None:
    """List workflow templates found in the templates directory."""
    config = _config(templates_dir=templates_dir)
    if not config.templates_dir:
        typer.secho("No templates directory configured", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    engine = _engine(config)
    templates = engine.get_available_workflows()
    if not templates:
        typer.echo("No templates found")
        return
    for template in templates:
        typer.echo(f"{template.id}\t{len(template.steps)} steps\t{template.name or ''}")


# ----------------------------------------------------------------------
# run


async def _run_workflow(config: PhaseflowConfig, template_id: str, options: dict) -> int:
    engine = _engine(config)
    config.manager.monitoring_interval = 0
    config.manager.recovery = False
    manager = WorkflowInstanceManager.from_config(config, engine=engine)
    await manager.initialize()
    try:
        instance = await manager.create_instance(template_id, options)
        typer.echo(f"Instance {instance.instance_id} created from {template_id}")
        await engine.start_workflow(instance.instance_id)
        while instance.status == InstanceStatus.RUNNING:
            result = await engine.execute_next_phase(instance.instance_id)
            typer.echo(
                f"- {result.phase.name}: {result.phase.status.value} "
                f"({instance.progress.overall}%)"
            )
        typer.echo(f"Workflow {instance.status.value}")
        return 0
    except ValidationGateError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        for warning in exc.warnings:
            typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
        return 1
    finally:
        await manager.shutdown()
        await engine.shutdown()


@app.command("run")
def run(
    template_id: str,
    templates_dir: Optional[str] = typer.Option(None, help="Directory of YAML templates"),
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
    option: List[str] = typer.Option([], "--option", "-o", help="key=value instance option"),
) -> None:
    """
    Run every phase of a template with the default action handler.

    Example:
        phaseflow run greenfield-service --templates-dir ./workflows
    """
    config = _config(storage_dir, templates_dir)
    try:
        code = asyncio.run(_run_workflow(config, template_id, _parse_options(option)))
    except PhaseflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if code:
        raise typer.Exit(code=code)


# ----------------------------------------------------------------------
# instances


@instances_app.command("list")
def instances_list(
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
    status: Optional[str] = typer.Option(None, help="Only show this status"),
) -> None:
    """List persisted instances across all storage areas."""
    store = get_store(config=_config(storage_dir))
    snapshots = asyncio.run(_all_snapshots(store))
    if status:
        snapshots = [item for item in snapshots if item[1].status.value == status]
    if not snapshots:
        typer.echo("No instances found")
        return
    for area, snapshot in snapshots:
        typer.echo(
            f"{snapshot.instance_id}\t{area.value}\t{snapshot.status.value}\t"
            f"{snapshot.template.id}\t{snapshot.progress.overall}%"
        )


@instances_app.command("show")
def instances_show(
    instance_id: str,
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
) -> None:
    """Show the phases, artifacts and progress of one persisted instance."""
    store = get_store(config=_config(storage_dir))
    found = asyncio.run(_find_snapshot(store, instance_id))
    if found is None:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    area, snapshot = found
    typer.echo(f"Instance {snapshot.instance_id}: {snapshot.status.value} ({area.value})")
    typer.echo(f"Template: {snapshot.template.id}")
    progress = snapshot.progress
    typer.echo(
        f"Progress: {progress.overall}% "
        f"({progress.completed_phases}/{progress.total_phases} phases)"
    )
    for index, phase in enumerate(snapshot.phases):
        marker = ">" if index == snapshot.current_phase_index else "-"
        line = f"{marker} {phase.name}: {phase.status.value}"
        if phase.duration is not None:
            line += f" ({phase.duration} ms)"
        if phase.error:
            line += f" error={phase.error}"
        typer.echo(line)
    for artifact in snapshot.artifacts:
        typer.echo(f"  artifact {artifact.name} (phase {artifact.phase_index})")


def _with_manager(config: PhaseflowConfig, action):
    async def _runner():
        config.manager.monitoring_interval = 0
        manager = WorkflowInstanceManager.from_config(config)
        await manager.initialize()
        try:
            return await action(manager)
        finally:
            await manager.shutdown()

    return asyncio.run(_runner())


@instances_app.command("stats")
def instances_stats(
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
) -> None:
    """Show statistics for recoverable (active) instances."""

    async def _stats(manager: WorkflowInstanceManager):
        return manager.get_statistics()

    stats = _with_manager(_config(storage_dir), _stats)
    typer.echo(f"Total: {stats.total}")
    for status, count in sorted(stats.by_status.items()):
        typer.echo(f"  {status}: {count}")
    for template_id, count in sorted(stats.by_template.items()):
        typer.echo(f"  template {template_id}: {count}")
    typer.echo(f"Average progress: {stats.avg_progress}%")


@instances_app.command("cancel")
def instances_cancel(
    instance_id: str,
    reason: str = typer.Option("", help="Reason recorded with the cancellation"),
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
) -> None:
    """Cancel an active instance."""

    async def _cancel(manager: WorkflowInstanceManager):
        return await manager.cancel_instance(instance_id, reason)

    try:
        instance = _with_manager(_config(storage_dir), _cancel)
    except PhaseflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Instance {instance.instance_id}: {instance.status.value}")


@instances_app.command("remove")
def instances_remove(
    instance_id: str,
    archive: bool = typer.Option(True, help="Move stored state to the archive"),
    storage_dir: Optional[str] = typer.Option(None, help="Storage root for snapshots"),
) -> None:
    """Remove an active instance, archiving its stored state by default."""

    async def _remove(manager: WorkflowInstanceManager):
        return await manager.remove_instance(instance_id, archive=archive)

    try:
        _with_manager(_config(storage_dir), _remove)
    except PhaseflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Removed {instance_id}" + (" (archived)" if archive else ""))
