"""Waymark: durable workflow state, checkpoints and rollback."""

from .config import WaymarkConfig, load_config
from .errors import ErrorKind, WaymarkError
from .models import (
    Checkpoint,
    CheckpointSummary,
    FileChange,
    RollbackRecord,
    StepRecord,
    WorkflowProgress,
    WorkflowState,
)
from .persistence import CheckpointStore, StateStore
from .results import ErrorInfo, OperationResult
from .rollback import RollbackEngine
from .tracking import FileChangeJournal, StepTracker, compute_progress
from .workspace import Workspace, open_workspace

__version__ = "0.1.0"
__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "CheckpointSummary",
    "ErrorInfo",
    "ErrorKind",
    "FileChange",
    "FileChangeJournal",
    "OperationResult",
    "RollbackEngine",
    "RollbackRecord",
    "StateStore",
    "StepRecord",
    "StepTracker",
    "WaymarkConfig",
    "WaymarkError",
    "WorkflowProgress",
    "WorkflowState",
    "Workspace",
    "compute_progress",
    "load_config",
    "open_workspace",
]
