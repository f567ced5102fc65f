"""Domain models for workflow state, checkpoints and rollbacks.

Python code uses snake_case attribute names; persisted documents use the
camelCase aliases (``stepHistory``, ``previousContent`` ...) so the on-disk
layout matches other tools reading the same files. Always dump with
``by_alias=True`` when writing documents.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticSerializationError

from .errors import ErrorKind, WaymarkError
from .utils import as_utc

StepStatus = Literal["pending", "in-progress", "completed", "failed"]
STEP_STATUSES: tuple[str, ...] = ("pending", "in-progress", "completed", "failed")
TERMINAL_STATUSES: tuple[str, ...] = ("completed", "failed")

FileOperation = Literal["create", "modify", "delete", "copy", "move"]
RollbackOutcome = Literal["success", "partial", "failed"]

# Naive values are read as UTC so stored times always compare with utcnow().
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class WaymarkModel(BaseModel):
    """Base model with camelCase aliases for persisted documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """Alias-keyed dump that keeps datetimes and nested values as Python objects."""
        try:
            return self.model_dump(by_alias=True)
        except PydanticSerializationError as exc:
            raise WaymarkError(
                ErrorKind.INVALID_STATE,
                f"State contains a value that cannot be stored: {exc}",
            ) from exc


class FileChange(WaymarkModel):
    """One filesystem mutation performed by a step.

    ``create``, ``copy`` and ``move`` are reverted by deleting ``path``;
    ``modify`` and ``delete`` by writing ``previous_content`` back.
    """

    operation: FileOperation
    path: str = Field(min_length=1)
    previous_content: Optional[str] = None
    timestamp: Optional[UtcDatetime] = None


class StepRecord(WaymarkModel):
    """Record of one step inside a workflow."""

    step_id: str
    status: StepStatus = "pending"
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    duration: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Any] = None
    file_changes: List[FileChange] = Field(default_factory=list)


class RollbackRecord(WaymarkModel):
    rollback_at: UtcDatetime
    checkpoint_id: str
    steps_reverted: int = 0
    files_reverted: int = 0
    status: RollbackOutcome = "success"


class RollbackInfo(WaymarkModel):
    """Rollback bookkeeping kept on the live state across restores."""

    last_rollback_at: Optional[UtcDatetime] = None
    last_rollback_checkpoint_id: Optional[str] = None
    rollback_history: List[RollbackRecord] = Field(default_factory=list)


class WorkflowState(WaymarkModel):
    """Recorded progress of one workflow."""

    variables: Dict[str, Any] = Field(default_factory=dict)
    step_history: List[StepRecord] = Field(default_factory=list)
    timestamps: Dict[str, UtcDatetime] = Field(default_factory=dict)
    rollback: Optional[RollbackInfo] = None

    def find_step(self, step_id: str) -> Optional[StepRecord]:
        for step in self.step_history:
            if step.step_id == step_id:
                return step
        return None

    def touch(self, when: datetime, *names: str) -> None:
        """Stamp ``updated`` and any extra named timestamps with ``when``."""
        self.timestamps["updated"] = when
        for name in names:
            self.timestamps[name] = when


class WorkflowProgress(WaymarkModel):
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    in_progress_steps: int = 0
    pending_steps: int = 0
    progress_percentage: int = 0
    total_duration: int = 0
    current_step: Optional[str] = None


class StepSummary(WaymarkModel):
    step_id: str
    status: StepStatus
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    duration: Optional[int] = None


class WorkflowReport(WorkflowProgress):
    """Progress of a stored workflow together with a per-step summary."""

    workflow_id: str
    step_history: List[StepSummary] = Field(default_factory=list)


class StepStarted(WaymarkModel):
    step_id: str
    status: StepStatus = "in-progress"
    start_time: UtcDatetime


class StepFinished(WaymarkModel):
    step_id: str
    status: StepStatus
    end_time: UtcDatetime


class StepStatusChange(WaymarkModel):
    step_id: str
    status: StepStatus


class CheckpointMetadata(WaymarkModel):
    total_steps: int = 0
    completed_steps: int = 0
    progress: int = 0


class CheckpointSnapshot(WaymarkModel):
    """Deep copy of the recorded state taken when a checkpoint is created."""

    variables: Dict[str, Any] = Field(default_factory=dict)
    step_history: List[StepRecord] = Field(default_factory=list)
    current_step: Optional[str] = None
    timestamps: Dict[str, UtcDatetime] = Field(default_factory=dict)

    def find_step(self, step_id: str) -> Optional[StepRecord]:
        for step in self.step_history:
            if step.step_id == step_id:
                return step
        return None


class CheckpointSummary(WaymarkModel):
    checkpoint_id: str
    workflow_id: str
    created_at: UtcDatetime
    step_id: Optional[str] = None
    metadata: CheckpointMetadata = Field(default_factory=CheckpointMetadata)


class Checkpoint(CheckpointSummary):
    """Immutable snapshot of a workflow's state at a point in time."""

    model_config = ConfigDict(frozen=True)

    state: CheckpointSnapshot = Field(default_factory=CheckpointSnapshot)

    def summary(self) -> CheckpointSummary:
        return CheckpointSummary(
            checkpoint_id=self.checkpoint_id,
            workflow_id=self.workflow_id,
            created_at=self.created_at,
            step_id=self.step_id,
            metadata=self.metadata,
        )

    def restored_state(self, rollback: Optional[RollbackInfo] = None) -> WorkflowState:
        """Fresh ``WorkflowState`` rebuilt from the snapshot."""
        snapshot = self.state.model_copy(deep=True)
        return WorkflowState(
            variables=snapshot.variables,
            step_history=snapshot.step_history,
            timestamps=snapshot.timestamps,
            rollback=rollback,
        )


class RevertOutcome(WaymarkModel):
    path: str
    operation: str
    status: Literal["reverted", "failed"]
    reason: Optional[str] = None


class RevertSummary(WaymarkModel):
    status: RollbackOutcome = "success"
    reverted_count: int = 0
    failed_count: int = 0
    changes: List[RevertOutcome] = Field(default_factory=list)


class RollbackResult(WaymarkModel):
    workflow_id: str
    checkpoint_id: str
    rollback_at: UtcDatetime
    steps_reverted: int
    files_reverted: int
    files_failed: int = 0
    status: RollbackOutcome
    restored_state: WorkflowState


class ResumeResult(WaymarkModel):
    workflow_id: str
    checkpoint_id: str
    restored_at: UtcDatetime
    step_id: Optional[str] = None
    metadata: CheckpointMetadata = Field(default_factory=CheckpointMetadata)
    restored_state: WorkflowState


class AvailableCheckpoint(WaymarkModel):
    checkpoint_id: str
    created_at: UtcDatetime
    step_id: Optional[str] = None


class RollbackStatus(WaymarkModel):
    workflow_id: str
    last_rollback_at: Optional[UtcDatetime] = None
    last_rollback_checkpoint_id: Optional[str] = None
    total_rollbacks: int = 0
    rollback_history: List[RollbackRecord] = Field(default_factory=list)
    available_checkpoints: List[AvailableCheckpoint] = Field(default_factory=list)
    can_rollback: bool = False


class RollbackReportSummary(WaymarkModel):
    total_rollbacks: int = 0
    last_rollback_at: Optional[UtcDatetime] = None
    last_status: Optional[RollbackOutcome] = None
    partial_rollbacks: int = 0
    available_checkpoints: int = 0
    most_rolled_back_checkpoint: Optional[str] = None


class RollbackReport(WaymarkModel):
    workflow_id: str
    generated_at: UtcDatetime
    summary: RollbackReportSummary
    rollback_history: List[RollbackRecord] = Field(default_factory=list)
    checkpoints: List[AvailableCheckpoint] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
