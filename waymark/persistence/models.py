"""Persisted record types and their mapping onto domain models."""

from __future__ import annotations

from datetime import datetime

from ..models import UtcDatetime, WorkflowState


class PersistedState(WorkflowState):
    """``WorkflowState`` as written to disk, with store-owned metadata."""

    workflow_id: str
    saved_at: UtcDatetime

    @classmethod
    def from_domain(
        cls, workflow_id: str, state: WorkflowState, saved_at: datetime
    ) -> "PersistedState":
        return cls(
            **state.model_dump(exclude={"workflow_id", "saved_at"}),
            workflow_id=workflow_id,
            saved_at=saved_at,
        )

    def to_domain(self) -> WorkflowState:
        """Strip store-owned fields, returning a plain ``WorkflowState``."""
        return WorkflowState.model_validate(
            self.model_dump(exclude={"workflow_id", "saved_at"})
        )
