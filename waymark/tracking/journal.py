"""Journal of filesystem mutations performed by workflow steps."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Union

from pydantic import ValidationError

from ..errors import ErrorKind, WaymarkError, require_identifier
from ..models import FileChange, RevertOutcome, RevertSummary
from ..persistence.state_store import StateStore
from ..results import operation
from ..utils import utcnow

logger = logging.getLogger(__name__)

ChangeLike = Union[FileChange, Mapping[str, Any]]


def coerce_change(change: Any) -> FileChange:
    if isinstance(change, FileChange):
        return change.model_copy()
    if not isinstance(change, Mapping):
        raise WaymarkError(
            ErrorKind.INVALID_CHANGE,
            "Invalid file change object",
            {"expectedType": "mapping"},
        )
    try:
        return FileChange.model_validate(dict(change))
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise WaymarkError(
            ErrorKind.INVALID_CHANGE,
            f"Invalid file change: check {', '.join(fields) or 'fields'}",
            {"fields": fields},
        ) from exc


def _revert_one(change: FileChange) -> RevertOutcome:
    path = Path(change.path)
    if change.operation in ("create", "copy", "move"):
        if path.exists():
            path.unlink()
    elif change.previous_content is None:
        return RevertOutcome(
            path=change.path,
            operation=change.operation,
            status="failed",
            reason="Cannot revert - no previous content",
        )
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(change.previous_content, encoding="utf-8")
    return RevertOutcome(path=change.path, operation=change.operation, status="reverted")


def revert_changes(changes: Sequence[FileChange]) -> RevertSummary:
    """Undo ``changes`` newest first, continuing past individual failures."""
    outcomes: List[RevertOutcome] = []
    for change in reversed(changes):
        try:
            outcome = _revert_one(change)
        except OSError as exc:
            outcome = RevertOutcome(
                path=change.path,
                operation=change.operation,
                status="failed",
                reason=exc.strerror or str(exc),
            )
        if outcome.status == "failed":
            logger.warning(f"Could not revert {change.operation} of {change.path}: {outcome.reason}")
        outcomes.append(outcome)

    reverted = sum(1 for outcome in outcomes if outcome.status == "reverted")
    failed = len(outcomes) - reverted
    if failed == 0:
        status = "success"
    elif reverted:
        status = "partial"
    else:
        status = "failed"
    return RevertSummary(
        status=status, reverted_count=reverted, failed_count=failed, changes=outcomes
    )


class FileChangeJournal:
    """Record file mutations against the step that made them.

    Recording is bookkeeping only: the caller performs the real I/O first and
    then reports it here, capturing ``previous_content`` for modifications and
    deletions so the change can be undone later.
    """

    def __init__(self, store: StateStore):
        self.store = store

    @operation("trackFileChange")
    async def track_file_change(
        self, workflow_id: str, step_id: str, change: ChangeLike
    ) -> FileChange:
        require_identifier("workflow_id", workflow_id, "trackFileChange")
        require_identifier("step_id", step_id, "trackFileChange")
        record = coerce_change(change)

        state = await self.store.require(workflow_id)
        step = state.find_step(step_id)
        if step is None:
            raise WaymarkError(
                ErrorKind.NOT_FOUND,
                f"Step not found: {step_id}",
                {"workflowId": workflow_id, "stepId": step_id},
            )

        now = utcnow()
        record.timestamp = record.timestamp or now
        step.file_changes.append(record)
        state.touch(now)
        await self.store.commit(workflow_id, state)
        logger.debug(
            f"Tracked {record.operation} of {record.path} for step {step_id} "
            f"(workflow_id={workflow_id})"
        )
        return record

    @operation("revertFileChanges")
    async def revert_file_changes(self, changes: Sequence[ChangeLike]) -> RevertSummary:
        """Undo ``changes`` in reverse order, best effort.

        A change that cannot be undone is reported in the summary instead of
        aborting the remaining reverts.
        """
        if not changes:
            return RevertSummary()
        records = [coerce_change(change) for change in changes]
        summary = await asyncio.to_thread(revert_changes, records)
        logger.info(
            f"Reverted {summary.reverted_count}/{len(records)} file change(s), "
            f"status={summary.status}"
        )
        return summary
