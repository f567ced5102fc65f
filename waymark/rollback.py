"""Roll a workflow back to a checkpoint, undoing journaled file changes."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List

from .errors import ErrorKind, WaymarkError, require_identifier
from .models import (
    AvailableCheckpoint,
    Checkpoint,
    FileChange,
    RollbackInfo,
    RollbackRecord,
    RollbackReport,
    RollbackReportSummary,
    RollbackResult,
    RollbackStatus,
    StepRecord,
    WorkflowState,
)
from .persistence import CheckpointStore, StateStore
from .results import OperationResult, operation
from .tracking import FileChangeJournal
from .utils import utcnow

logger = logging.getLogger(__name__)

_STATUS_RANK = {"pending": 0, "in-progress": 1, "completed": 2, "failed": 2}


def _rollback_error(exc: WaymarkError, operation_name: str, **details: Any) -> WaymarkError:
    return WaymarkError(
        ErrorKind.ROLLBACK_ERROR,
        exc.message,
        {"operation": operation_name, "cause": exc.kind.value, **details},
    )


def _unwrap(result: OperationResult, operation_name: str, **details: Any) -> Any:
    try:
        return result.unwrap()
    except WaymarkError as exc:
        raise _rollback_error(exc, operation_name, **details) from exc


def reverted_steps(state: WorkflowState, checkpoint: Checkpoint) -> List[StepRecord]:
    """Live steps whose progress is newer than the checkpoint snapshot.

    A step counts when it is missing from the snapshot, when its status moved
    further along (``pending`` < ``in-progress`` < ``completed``/``failed``),
    when it was started again after the checkpoint was taken, or when it
    journaled file changes the snapshot does not have.
    """
    steps = []
    for step in state.step_history:
        before = checkpoint.state.find_step(step.step_id)
        if before is None:
            steps.append(step)
        elif _STATUS_RANK[step.status] > _STATUS_RANK[before.status]:
            steps.append(step)
        elif step.start_time is not None and step.start_time > checkpoint.created_at:
            steps.append(step)
        elif len(step.file_changes) > len(before.file_changes):
            steps.append(step)
    return steps


def changes_since(checkpoint: Checkpoint, steps: List[StepRecord]) -> List[FileChange]:
    """File changes of ``steps`` journaled after ``checkpoint``, oldest first."""
    changes: List[FileChange] = []
    for step in steps:
        before = checkpoint.state.find_step(step.step_id)
        already_recorded = len(before.file_changes) if before else 0
        changes.extend(step.file_changes[already_recorded:])
    return changes


class RollbackEngine:
    """Restore a workflow's state and file side effects to a checkpoint.

    A rollback runs: select checkpoint, collect file changes made after it,
    revert those files, restore the state snapshot, append rollback history.
    Failing to load the checkpoint or the live state aborts the rollback
    before anything is touched. Files that cannot be reverted only degrade
    the outcome to ``partial``; the state is restored regardless.
    """

    def __init__(
        self,
        store: StateStore,
        checkpoints: CheckpointStore,
        journal: FileChangeJournal,
    ):
        self.store = store
        self.checkpoints = checkpoints
        self.journal = journal

    async def _rollback(
        self, workflow_id: str, checkpoint: Checkpoint, operation_name: str
    ) -> RollbackResult:
        checkpoint_id = checkpoint.checkpoint_id
        state = _unwrap(
            await self.store.load(workflow_id),
            operation_name,
            workflowId=workflow_id,
            checkpointId=checkpoint_id,
        )

        steps = reverted_steps(state, checkpoint)
        changes = changes_since(checkpoint, steps)
        files_reverted = files_failed = 0
        if changes:
            summary = _unwrap(
                await self.journal.revert_file_changes(changes),
                operation_name,
                workflowId=workflow_id,
                checkpointId=checkpoint_id,
            )
            files_reverted = summary.reverted_count
            files_failed = summary.failed_count
        status = "success" if files_failed == 0 else "partial"

        rollback_at = utcnow()
        info = state.rollback.model_copy(deep=True) if state.rollback else RollbackInfo()
        info.last_rollback_at = rollback_at
        info.last_rollback_checkpoint_id = checkpoint_id
        info.rollback_history.append(
            RollbackRecord(
                rollback_at=rollback_at,
                checkpoint_id=checkpoint_id,
                steps_reverted=len(steps),
                files_reverted=files_reverted,
                status=status,
            )
        )
        restored = checkpoint.restored_state(rollback=info)
        _unwrap(
            await self.store.save(workflow_id, restored),
            operation_name,
            workflowId=workflow_id,
            checkpointId=checkpoint_id,
            reason="Failed to save restored state",
        )

        log = logger.info if status == "success" else logger.warning
        log(
            f"Rolled back workflow_id={workflow_id} to checkpoint {checkpoint_id}: "
            f"{len(steps)} step(s), {files_reverted} file(s) reverted, status={status}"
        )
        return RollbackResult(
            workflow_id=workflow_id,
            checkpoint_id=checkpoint_id,
            rollback_at=rollback_at,
            steps_reverted=len(steps),
            files_reverted=files_reverted,
            files_failed=files_failed,
            status=status,
            restored_state=restored,
        )

    @operation("rollbackToLastCheckpoint")
    async def rollback_to_last_checkpoint(self, workflow_id: str) -> RollbackResult:
        try:
            require_identifier("workflow_id", workflow_id, "rollbackToLastCheckpoint")
        except WaymarkError as exc:
            raise _rollback_error(exc, "rollbackToLastCheckpoint", workflowId=workflow_id) from exc
        checkpoint = _unwrap(
            await self.checkpoints.get_latest_checkpoint(workflow_id),
            "rollbackToLastCheckpoint",
            workflowId=workflow_id,
            reason="No checkpoint found",
        )
        return await self._rollback(workflow_id, checkpoint, "rollbackToLastCheckpoint")

    @operation("rollbackToCheckpoint")
    async def rollback_to_checkpoint(self, workflow_id: str, checkpoint_id: str) -> RollbackResult:
        try:
            require_identifier("workflow_id", workflow_id, "rollbackToCheckpoint")
            require_identifier("checkpoint_id", checkpoint_id, "rollbackToCheckpoint")
        except WaymarkError as exc:
            raise _rollback_error(
                exc, "rollbackToCheckpoint", workflowId=workflow_id, checkpointId=checkpoint_id
            ) from exc
        checkpoint = _unwrap(
            await self.checkpoints.load_checkpoint(workflow_id, checkpoint_id),
            "rollbackToCheckpoint",
            workflowId=workflow_id,
            checkpointId=checkpoint_id,
            reason="Checkpoint not found",
        )
        return await self._rollback(workflow_id, checkpoint, "rollbackToCheckpoint")

    @operation("getRollbackStatus")
    async def get_rollback_status(self, workflow_id: str) -> RollbackStatus:
        """Rollback bookkeeping of a workflow; zero values if it never rolled back."""
        require_identifier("workflow_id", workflow_id, "getRollbackStatus")
        loaded = await self.store.load(workflow_id)
        if not loaded.success and loaded.kind is not ErrorKind.NOT_FOUND:
            loaded.unwrap()
        info = (loaded.value.rollback if loaded.success else None) or RollbackInfo()

        summaries = (await self.checkpoints.list_checkpoints(workflow_id)).unwrap()
        available = [
            AvailableCheckpoint(
                checkpoint_id=summary.checkpoint_id,
                created_at=summary.created_at,
                step_id=summary.step_id,
            )
            for summary in summaries
        ]
        return RollbackStatus(
            workflow_id=workflow_id,
            last_rollback_at=info.last_rollback_at,
            last_rollback_checkpoint_id=info.last_rollback_checkpoint_id,
            total_rollbacks=len(info.rollback_history),
            rollback_history=info.rollback_history,
            available_checkpoints=available,
            can_rollback=bool(available),
        )

    @operation("generateRollbackReport")
    async def generate_rollback_report(self, workflow_id: str) -> RollbackReport:
        status = (await self.get_rollback_status(workflow_id)).unwrap()
        history = status.rollback_history

        per_checkpoint: Dict[str, int] = Counter(record.checkpoint_id for record in history)
        most_common = max(per_checkpoint.items(), key=lambda item: item[1], default=None)
        partial = sum(1 for record in history if record.status != "success")

        summary = RollbackReportSummary(
            total_rollbacks=status.total_rollbacks,
            last_rollback_at=status.last_rollback_at,
            last_status=history[-1].status if history else None,
            partial_rollbacks=partial,
            available_checkpoints=len(status.available_checkpoints),
            most_rolled_back_checkpoint=most_common[0] if most_common else None,
        )

        recommendations: List[str] = []
        if status.can_rollback:
            recommendations.append(
                f"Use rollback_to_last_checkpoint('{workflow_id}') or "
                f"rollback_to_checkpoint('{workflow_id}', '<checkpoint_id>') to restore"
            )
        else:
            recommendations.append(
                "Create a checkpoint with create_checkpoint() before running risky steps"
            )
        if most_common and most_common[1] > 1:
            recommendations.append(
                f"Checkpoint {most_common[0]} was restored {most_common[1]} times; "
                "repeated rollbacks to the same checkpoint may indicate a persistently "
                "failing step"
            )
        if partial:
            recommendations.append(
                f"{partial} rollback(s) could not revert every file; "
                "check the affected paths by hand"
            )

        return RollbackReport(
            workflow_id=workflow_id,
            generated_at=utcnow(),
            summary=summary,
            rollback_history=history,
            checkpoints=status.available_checkpoints,
            recommendations=recommendations,
        )
