"""Derive human-facing progress figures from a workflow state."""

from __future__ import annotations

from collections import Counter

from ..models import StepSummary, WorkflowProgress, WorkflowReport, WorkflowState


def compute_progress(state: WorkflowState) -> WorkflowProgress:
    """Count steps per status and compute completion percentage.

    Failed steps count as finished for the percentage. A state without steps
    reports 0%.
    """
    steps = state.step_history
    counts = Counter(step.status for step in steps)
    total = len(steps)
    finished = counts["completed"] + counts["failed"]
    percentage = round(100 * finished / total) if total else 0
    current = next((step.step_id for step in steps if step.status == "in-progress"), None)

    return WorkflowProgress(
        total_steps=total,
        completed_steps=counts["completed"],
        failed_steps=counts["failed"],
        in_progress_steps=counts["in-progress"],
        pending_steps=counts["pending"],
        progress_percentage=max(0, min(100, percentage)),
        total_duration=sum(step.duration or 0 for step in steps),
        current_step=current,
    )


def build_report(workflow_id: str, state: WorkflowState) -> WorkflowReport:
    progress = compute_progress(state)
    return WorkflowReport(
        workflow_id=workflow_id,
        step_history=[
            StepSummary(
                step_id=step.step_id,
                status=step.status,
                start_time=step.start_time,
                end_time=step.end_time,
                duration=step.duration,
            )
            for step in state.step_history
        ],
        **progress.model_dump(),
    )
