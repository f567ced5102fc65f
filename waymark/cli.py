"""Command line interface for inspecting and maintaining workflow state."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Optional

import typer

from waymark import OperationResult, Workspace, load_config, open_workspace

app = typer.Typer(help="CLI for waymark workflow state")

# Command groups
state_app = typer.Typer(help="Commands for stored workflow states")
checkpoint_app = typer.Typer(help="Commands for workflow checkpoints")
rollback_app = typer.Typer(help="Commands for rolling workflows back")

app.add_typer(state_app, name="state")
app.add_typer(checkpoint_app, name="checkpoint")
app.add_typer(rollback_app, name="rollback")


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None, help="Storage root (default: WAYMARK_ROOT, config or ./.waymark)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
) -> None:
    """Waymark CLI entry point."""
    config = load_config()
    logging.basicConfig(level=logging.DEBUG if verbose else config.log_level.upper())
    ctx.obj = open_workspace(root, config)


def _run(awaitable: Awaitable[OperationResult]) -> Any:
    """Run an operation, exiting with code 1 when it fails."""
    result = asyncio.run(awaitable)
    if not result.success:
        typer.secho(f"{result.error.kind.value}: {result.error.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return result.value


def _when(value: Any) -> str:
    return value.isoformat() if value is not None else "-"


@state_app.command("list")
def state_list(ctx: typer.Context) -> None:
    """List workflows that have stored state."""
    workspace: Workspace = ctx.obj
    workflows = _run(workspace.store.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for workflow_id in workflows:
        typer.echo(workflow_id)


@state_app.command("show")
def state_show(ctx: typer.Context, workflow_id: str) -> None:
    """
    Show progress and step history of a workflow.

    Example:
        waymark state show release-2024
        # Output: Workflow release-2024: 50% (1/2 steps finished)
        #         Current step: build
        #         - lint: completed (2024-01-01T10:00:00+00:00 -> 2024-01-01T10:00:03+00:00, 3000ms)
        #         - build: in-progress (2024-01-01T10:00:03+00:00 -> -)
    """
    workspace: Workspace = ctx.obj
    report = _run(workspace.tracker.get_workflow_progress(workflow_id))
    finished = report.completed_steps + report.failed_steps
    typer.echo(
        f"Workflow {workflow_id}: {report.progress_percentage}% "
        f"({finished}/{report.total_steps} steps finished)"
    )
    if report.current_step:
        typer.echo(f"Current step: {report.current_step}")
    for step in report.step_history:
        line = f"- {step.step_id}: {step.status} ({_when(step.start_time)} -> {_when(step.end_time)}"
        if step.duration is not None:
            line += f", {step.duration}ms"
        typer.echo(line + ")")


@state_app.command("delete")
def state_delete(ctx: typer.Context, workflow_id: str) -> None:
    """Delete the stored state of a workflow. Checkpoints are kept."""
    workspace: Workspace = ctx.obj
    _run(workspace.store.delete(workflow_id))
    typer.echo(f"Deleted state for {workflow_id}")


@checkpoint_app.command("create")
def checkpoint_create(
    ctx: typer.Context,
    workflow_id: str,
    step: Optional[str] = typer.Option(None, help="Step to record as active"),
) -> None:
    """Snapshot the current state of a workflow."""
    workspace: Workspace = ctx.obj
    summary = _run(workspace.checkpoints.create_checkpoint(workflow_id, step))
    typer.echo(
        f"Created checkpoint {summary.checkpoint_id} "
        f"({summary.metadata.completed_steps}/{summary.metadata.total_steps} steps, "
        f"{summary.metadata.progress}%)"
    )


@checkpoint_app.command("list")
def checkpoint_list(ctx: typer.Context, workflow_id: str) -> None:
    """List checkpoints of a workflow, newest first."""
    workspace: Workspace = ctx.obj
    summaries = _run(workspace.checkpoints.list_checkpoints(workflow_id))
    if not summaries:
        typer.echo("No checkpoints found")
        return
    for summary in summaries:
        typer.echo(
            f"{summary.checkpoint_id}\t{_when(summary.created_at)}\t"
            f"{summary.step_id or '-'}\t{summary.metadata.progress}%"
        )


@checkpoint_app.command("show")
def checkpoint_show(ctx: typer.Context, workflow_id: str, checkpoint_id: str) -> None:
    """Show the snapshot stored in a checkpoint."""
    workspace: Workspace = ctx.obj
    checkpoint = _run(workspace.checkpoints.get_checkpoint_info(workflow_id, checkpoint_id))
    typer.echo(f"Checkpoint {checkpoint.checkpoint_id} of {checkpoint.workflow_id}")
    typer.echo(f"Created: {_when(checkpoint.created_at)}")
    typer.echo(f"Step: {checkpoint.step_id or '-'}")
    if checkpoint.state.variables:
        typer.echo(f"Variables: {checkpoint.state.variables}")
    for step in checkpoint.state.step_history:
        typer.echo(f"- {step.step_id}: {step.status}")


@checkpoint_app.command("delete")
def checkpoint_delete(ctx: typer.Context, workflow_id: str, checkpoint_id: str) -> None:
    """Delete one checkpoint."""
    workspace: Workspace = ctx.obj
    _run(workspace.checkpoints.delete_checkpoint(workflow_id, checkpoint_id))
    typer.echo(f"Deleted checkpoint {checkpoint_id}")


@checkpoint_app.command("prune")
def checkpoint_prune(
    ctx: typer.Context,
    workflow_id: str,
    keep: int = typer.Option(10, help="Number of newest checkpoints to keep"),
) -> None:
    """Delete all but the newest checkpoints of a workflow."""
    workspace: Workspace = ctx.obj
    deleted = _run(workspace.checkpoints.prune_checkpoints(workflow_id, keep))
    typer.echo(f"Deleted {deleted} checkpoint(s)")


def _echo_rollback(result: Any) -> None:
    typer.echo(
        f"Rolled back {result.workflow_id} to {result.checkpoint_id}: "
        f"{result.steps_reverted} step(s), {result.files_reverted} file(s) reverted "
        f"[{result.status}]"
    )


@rollback_app.command("last")
def rollback_last(ctx: typer.Context, workflow_id: str) -> None:
    """Roll a workflow back to its newest checkpoint."""
    workspace: Workspace = ctx.obj
    _echo_rollback(_run(workspace.rollback.rollback_to_last_checkpoint(workflow_id)))


@rollback_app.command("to")
def rollback_to(ctx: typer.Context, workflow_id: str, checkpoint_id: str) -> None:
    """Roll a workflow back to a specific checkpoint."""
    workspace: Workspace = ctx.obj
    _echo_rollback(_run(workspace.rollback.rollback_to_checkpoint(workflow_id, checkpoint_id)))


@rollback_app.command("status")
def rollback_status(ctx: typer.Context, workflow_id: str) -> None:
    """Show rollback bookkeeping of a workflow."""
    workspace: Workspace = ctx.obj
    status = _run(workspace.rollback.get_rollback_status(workflow_id))
    typer.echo(f"Workflow {workflow_id}: {status.total_rollbacks} rollback(s)")
    typer.echo(f"Last rollback: {_when(status.last_rollback_at)}")
    if status.last_rollback_checkpoint_id:
        typer.echo(f"Last checkpoint restored: {status.last_rollback_checkpoint_id}")
    typer.echo(f"Available checkpoints: {len(status.available_checkpoints)}")


@rollback_app.command("report")
def rollback_report(ctx: typer.Context, workflow_id: str) -> None:
    """Summarize rollback history with recommendations."""
    workspace: Workspace = ctx.obj
    report = _run(workspace.rollback.generate_rollback_report(workflow_id))
    summary = report.summary
    typer.echo(f"Rollback report for {workflow_id}")
    typer.echo(f"Total rollbacks: {summary.total_rollbacks}")
    typer.echo(f"Partial rollbacks: {summary.partial_rollbacks}")
    typer.echo(f"Available checkpoints: {summary.available_checkpoints}")
    for record in report.rollback_history:
        typer.echo(
            f"- {_when(record.rollback_at)} -> {record.checkpoint_id}: "
            f"{record.steps_reverted} step(s), {record.files_reverted} file(s) [{record.status}]"
        )
    for recommendation in report.recommendations:
        typer.echo(f"* {recommendation}")


if __name__ == "__main__":
    app()
