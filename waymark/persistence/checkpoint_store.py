"""Immutable point-in-time snapshots of workflow state."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..errors import ErrorKind, WaymarkError, require_identifier
from ..models import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointSnapshot,
    CheckpointSummary,
    ResumeResult,
)
from ..results import operation
from ..tracking.progress import compute_progress
from ..utils import CheckpointIdGenerator, is_valid_checkpoint_id, sanitize_identifier, utcnow
from .documents import DOCUMENT_SUFFIXES, read_document, write_document
from .state_store import StateStore

logger = logging.getLogger(__name__)

CHECKPOINT_DIR_NAME = "checkpoints"
CHECKPOINT_PREFIX = "checkpoint-"


def _require_checkpoint_id(checkpoint_id: object, operation_name: str) -> str:
    if not is_valid_checkpoint_id(checkpoint_id):
        raise WaymarkError(
            ErrorKind.INVALID_IDENTIFIER,
            "Invalid checkpoint ID",
            {"operation": operation_name, "checkpointId": checkpoint_id},
        )
    return checkpoint_id  # type: ignore[return-value]


class CheckpointStore:
    """Create, list and restore checkpoints of a workflow.

    Checkpoints are stored next to the live state, one document each::

        <root>/state/checkpoints/<sanitized-workflow-id>/checkpoint-<id>.yaml

    A checkpoint is never rewritten after creation; it can only be read or
    deleted. Deleting the live state does not delete its checkpoints.

    Args:
        state_store: Store holding the live workflow states.
        keep_last: When set, only the newest ``keep_last`` checkpoints of a
            workflow are kept after each ``create_checkpoint``.
    """

    def __init__(
        self,
        state_store: StateStore,
        keep_last: Optional[int] = None,
        id_generator: Optional[CheckpointIdGenerator] = None,
    ):
        self.state_store = state_store
        if keep_last is not None and keep_last < 1:
            raise ValueError(f"keep_last must be at least 1, got {keep_last}")
        self.base_dir = state_store.state_dir / CHECKPOINT_DIR_NAME
        self.keep_last = keep_last
        self._ids = id_generator or CheckpointIdGenerator()

    def directory_for(self, workflow_id: str) -> Path:
        return self.base_dir / sanitize_identifier(workflow_id)

    def path_for(self, workflow_id: str, checkpoint_id: str) -> Path:
        return self.directory_for(workflow_id) / f"{CHECKPOINT_PREFIX}{checkpoint_id}.yaml"

    # ------------------------------------------------------------------
    # Blocking helpers, run in a worker thread
    def _allocate(self, workflow_id: str) -> str:
        checkpoint_id = self._ids.next_id()
        while self.path_for(workflow_id, checkpoint_id).exists():
            checkpoint_id = self._ids.next_id()
        return checkpoint_id

    def _read(self, workflow_id: str, checkpoint_id: str) -> Checkpoint:
        path = self.path_for(workflow_id, checkpoint_id)
        try:
            data = read_document(path)
        except WaymarkError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                exc.message = f"Checkpoint not found: {checkpoint_id}"
            exc.details.update(workflowId=workflow_id, checkpointId=checkpoint_id)
            raise
        try:
            return Checkpoint.model_validate(data)
        except ValidationError as exc:
            raise WaymarkError(
                ErrorKind.PARSE_ERROR,
                f"Checkpoint file contains invalid data: {exc.error_count()} validation error(s)",
                {"filePath": str(path), "workflowId": workflow_id, "checkpointId": checkpoint_id},
            ) from exc

    def _scan(self, workflow_id: str) -> List[CheckpointSummary]:
        directory = self.directory_for(workflow_id)
        if not directory.is_dir():
            return []

        summaries: List[CheckpointSummary] = []
        for entry in directory.iterdir():
            if not (entry.name.startswith(CHECKPOINT_PREFIX) and entry.suffix in DOCUMENT_SUFFIXES):
                continue
            try:
                checkpoint = Checkpoint.model_validate(read_document(entry))
            except (WaymarkError, ValidationError, OSError) as exc:
                logger.warning(f"Skipping unreadable checkpoint {entry}: {exc}")
                continue
            summaries.append(checkpoint.summary())

        # Ids are monotonic; created_at only breaks ties.
        summaries.sort(key=lambda s: (s.checkpoint_id, s.created_at), reverse=True)
        return summaries

    # ------------------------------------------------------------------
    # Checkpoint API
    @operation("createCheckpoint")
    async def create_checkpoint(
        self, workflow_id: str, step_id: Optional[str] = None
    ) -> CheckpointSummary:
        """Snapshot the current state of ``workflow_id``.

        A workflow without stored state is checkpointed as an empty state.
        ``step_id`` defaults to the step currently in progress.
        """
        require_identifier("workflow_id", workflow_id, "createCheckpoint")
        if step_id is not None:
            require_identifier("step_id", step_id, "createCheckpoint")

        state = await self.state_store.load_or_create(workflow_id)
        progress = compute_progress(state)
        live = state.model_copy(deep=True)
        current_step = step_id or progress.current_step

        checkpoint_id = await asyncio.to_thread(self._allocate, workflow_id)
        checkpoint = Checkpoint(
            checkpoint_id=checkpoint_id,
            workflow_id=workflow_id,
            created_at=utcnow(),
            step_id=current_step,
            state=CheckpointSnapshot(
                variables=live.variables,
                step_history=live.step_history,
                current_step=current_step,
                timestamps=live.timestamps,
            ),
            metadata=CheckpointMetadata(
                total_steps=progress.total_steps,
                completed_steps=progress.completed_steps,
                progress=progress.progress_percentage,
            ),
        )
        path = self.path_for(workflow_id, checkpoint_id)
        await asyncio.to_thread(write_document, path, checkpoint.to_document())
        logger.info(f"Created checkpoint {checkpoint_id} for workflow_id={workflow_id}")

        if self.keep_last is not None:
            (await self.prune_checkpoints(workflow_id, self.keep_last)).unwrap()
        return checkpoint.summary()

    @operation("loadCheckpoint")
    async def load_checkpoint(self, workflow_id: str, checkpoint_id: str) -> Checkpoint:
        require_identifier("workflow_id", workflow_id, "loadCheckpoint")
        _require_checkpoint_id(checkpoint_id, "loadCheckpoint")
        return await asyncio.to_thread(self._read, workflow_id, checkpoint_id)

    @operation("getCheckpointInfo")
    async def get_checkpoint_info(self, workflow_id: str, checkpoint_id: str) -> Checkpoint:
        """Read-only view of a checkpoint, snapshot included."""
        require_identifier("workflow_id", workflow_id, "getCheckpointInfo")
        _require_checkpoint_id(checkpoint_id, "getCheckpointInfo")
        return await asyncio.to_thread(self._read, workflow_id, checkpoint_id)

    @operation("listCheckpoints")
    async def list_checkpoints(self, workflow_id: str) -> List[CheckpointSummary]:
        """Summaries of all readable checkpoints, newest first."""
        require_identifier("workflow_id", workflow_id, "listCheckpoints")
        return await asyncio.to_thread(self._scan, workflow_id)

    @operation("deleteCheckpoint")
    async def delete_checkpoint(self, workflow_id: str, checkpoint_id: str) -> str:
        require_identifier("workflow_id", workflow_id, "deleteCheckpoint")
        _require_checkpoint_id(checkpoint_id, "deleteCheckpoint")
        path = self.path_for(workflow_id, checkpoint_id)
        if not await asyncio.to_thread(path.exists):
            raise WaymarkError(
                ErrorKind.NOT_FOUND,
                f"Checkpoint not found: {checkpoint_id}",
                {"workflowId": workflow_id, "checkpointId": checkpoint_id},
            )
        await asyncio.to_thread(path.unlink)
        logger.info(f"Deleted checkpoint {checkpoint_id} for workflow_id={workflow_id}")
        return checkpoint_id

    @operation("getLatestCheckpoint")
    async def get_latest_checkpoint(self, workflow_id: str) -> Checkpoint:
        require_identifier("workflow_id", workflow_id, "getLatestCheckpoint")
        summaries = (await self.list_checkpoints(workflow_id)).unwrap()
        if not summaries:
            raise WaymarkError(
                ErrorKind.NOT_FOUND,
                f"No checkpoints found for workflow: {workflow_id}",
                {"workflowId": workflow_id},
            )
        return (await self.load_checkpoint(workflow_id, summaries[0].checkpoint_id)).unwrap()

    @operation("pruneCheckpoints")
    async def prune_checkpoints(self, workflow_id: str, keep_last: int) -> int:
        """Delete all but the ``keep_last`` newest checkpoints; return how many went."""
        require_identifier("workflow_id", workflow_id, "pruneCheckpoints")
        if keep_last < 0:
            raise WaymarkError(
                ErrorKind.INVALID_STATE,
                f"keep_last must be zero or positive, got {keep_last}",
                {"workflowId": workflow_id},
            )
        summaries = (await self.list_checkpoints(workflow_id)).unwrap()
        stale = summaries[keep_last:]
        for summary in stale:
            (await self.delete_checkpoint(workflow_id, summary.checkpoint_id)).unwrap()
        if stale:
            logger.info(f"Pruned {len(stale)} checkpoint(s) for workflow_id={workflow_id}")
        return len(stale)

    @operation("resumeFromCheckpoint")
    async def resume_from_checkpoint(
        self, workflow_id: str, checkpoint_id: Optional[str] = None
    ) -> ResumeResult:
        """Restore the live state from a checkpoint without touching files.

        Uses the latest checkpoint when ``checkpoint_id`` is omitted. Rollback
        bookkeeping already on the live state is kept.
        """
        require_identifier("workflow_id", workflow_id, "resumeFromCheckpoint")
        if checkpoint_id is None:
            checkpoint = (await self.get_latest_checkpoint(workflow_id)).unwrap()
        else:
            checkpoint = (await self.load_checkpoint(workflow_id, checkpoint_id)).unwrap()

        current = await self.state_store.load(workflow_id)
        if not current.success and current.kind is not ErrorKind.NOT_FOUND:
            current.unwrap()
        rollback = current.value.rollback if current.success else None

        restored = checkpoint.restored_state(rollback=rollback)
        await self.state_store.commit(workflow_id, restored)
        logger.info(
            f"Resumed workflow_id={workflow_id} from checkpoint {checkpoint.checkpoint_id}"
        )
        return ResumeResult(
            workflow_id=workflow_id,
            checkpoint_id=checkpoint.checkpoint_id,
            restored_at=utcnow(),
            step_id=checkpoint.step_id,
            metadata=checkpoint.metadata,
            restored_state=restored,
        )


__all__ = ["CheckpointStore", "CHECKPOINT_DIR_NAME", "CHECKPOINT_PREFIX"]
