"""Filesystem-backed store holding one workflow state document per workflow."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Mapping

from pydantic import ValidationError

from ..errors import ErrorKind, WaymarkError, require_identifier
from ..models import WorkflowState
from ..results import OperationResult, operation
from ..utils import sanitize_identifier, utcnow
from .documents import DOCUMENT_SUFFIXES, read_document, write_document
from .models import PersistedState

logger = logging.getLogger(__name__)

STATE_DIR_NAME = "state"


def coerce_state(state: Any, operation_name: str) -> WorkflowState:
    """Validate ``state`` as a ``WorkflowState`` or raise ``InvalidState``."""
    if isinstance(state, WorkflowState):
        return state
    if not isinstance(state, Mapping):
        raise WaymarkError(
            ErrorKind.INVALID_STATE,
            "Invalid state object",
            {"operation": operation_name, "expectedType": "mapping"},
        )
    try:
        return WorkflowState.model_validate(dict(state))
    except ValidationError as exc:
        raise WaymarkError(
            ErrorKind.INVALID_STATE,
            f"Invalid state object: {exc.error_count()} validation error(s)",
            {"operation": operation_name, "errors": exc.errors(include_url=False)},
        ) from exc


class StateStore:
    """Persist workflow states as YAML documents.

    Layout::

        <root>/state/<sanitized-workflow-id>.yaml

    Saves are atomic and last-writer-wins. The store keeps no workflow state
    in memory; every call goes to disk.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.state_dir = self.root / STATE_DIR_NAME

    def path_for(self, workflow_id: str) -> Path:
        """Deterministic document path for ``workflow_id``."""
        return self.state_dir / f"{sanitize_identifier(workflow_id)}.yaml"

    # ------------------------------------------------------------------
    # Blocking helpers, run in a worker thread
    def _write(self, workflow_id: str, state: WorkflowState) -> Path:
        record = PersistedState.from_domain(workflow_id, state, saved_at=utcnow())
        path = self.path_for(workflow_id)
        try:
            write_document(path, record.to_document())
        except WaymarkError as exc:
            exc.details.setdefault("workflowId", workflow_id)
            raise
        return path

    def _read(self, workflow_id: str) -> WorkflowState:
        path = self.path_for(workflow_id)
        try:
            data = read_document(path)
        except WaymarkError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                exc.message = f"State file not found for workflow: {workflow_id}"
            exc.details["workflowId"] = workflow_id
            raise
        data.setdefault("workflowId", workflow_id)
        data.setdefault("savedAt", utcnow().isoformat())
        try:
            record = PersistedState.model_validate(data)
        except ValidationError as exc:
            raise WaymarkError(
                ErrorKind.PARSE_ERROR,
                f"State file contains invalid data: {exc.error_count()} validation error(s)",
                {"filePath": str(path), "workflowId": workflow_id},
            ) from exc
        return record.to_domain()

    def _list(self) -> List[str]:
        if not self.state_dir.is_dir():
            return []
        return sorted(
            entry.stem
            for entry in self.state_dir.iterdir()
            if entry.is_file() and entry.suffix in DOCUMENT_SUFFIXES
        )

    # ------------------------------------------------------------------
    # Store API
    @operation("save")
    async def save(self, workflow_id: str, state: WorkflowState | Mapping[str, Any]) -> None:
        """Persist ``state`` for ``workflow_id``, replacing any previous version."""
        require_identifier("workflow_id", workflow_id, "save")
        domain_state = coerce_state(state, "save")
        path = await asyncio.to_thread(self._write, workflow_id, domain_state)
        logger.debug(f"Saved state for workflow_id={workflow_id} to {path}")

    @operation("load")
    async def load(self, workflow_id: str) -> WorkflowState:
        """Return the stored state; ``NotFound`` if nothing was saved yet."""
        require_identifier("workflow_id", workflow_id, "load")
        state = await asyncio.to_thread(self._read, workflow_id)
        logger.debug(f"Loaded state for workflow_id={workflow_id}")
        return state

    @operation("exists")
    async def exists(self, workflow_id: str) -> bool:
        require_identifier("workflow_id", workflow_id, "exists")
        return await asyncio.to_thread(self.path_for(workflow_id).is_file)

    @operation("delete")
    async def delete(self, workflow_id: str) -> None:
        """Remove the stored state. Checkpoints are left untouched."""
        require_identifier("workflow_id", workflow_id, "delete")
        path = self.path_for(workflow_id)
        if not await asyncio.to_thread(path.exists):
            raise WaymarkError(
                ErrorKind.NOT_FOUND,
                f"State file not found for workflow: {workflow_id}",
                {"filePath": str(path), "workflowId": workflow_id},
            )
        await asyncio.to_thread(path.unlink)
        logger.info(f"Deleted state for workflow_id={workflow_id}")

    @operation("list")
    async def list_workflows(self) -> List[str]:
        """Sanitized identifiers of all stored workflows (empty if none)."""
        return await asyncio.to_thread(self._list)

    async def load_or_create(self, workflow_id: str) -> WorkflowState:
        """Load the state or return a fresh one stamped ``created``.

        Raises ``WaymarkError`` for any failure other than ``NotFound``.
        """
        result = await self.load(workflow_id)
        if result.success:
            return result.value
        if result.kind is ErrorKind.NOT_FOUND:
            return WorkflowState(timestamps={"created": utcnow()})
        return result.unwrap()

    async def require(self, workflow_id: str) -> WorkflowState:
        """Load the state, raising ``WaymarkError`` on failure."""
        return (await self.load(workflow_id)).unwrap()

    async def commit(self, workflow_id: str, state: WorkflowState) -> None:
        """Save the state, raising ``WaymarkError`` on failure."""
        (await self.save(workflow_id, state)).unwrap()


__all__ = ["StateStore", "STATE_DIR_NAME", "coerce_state"]
