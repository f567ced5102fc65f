"""Persistence layer for waymark workflow state and checkpoints."""

from __future__ import annotations

from .documents import read_document, write_document
from .models import PersistedState
from .state_store import StateStore
from .checkpoint_store import CheckpointStore

__all__ = [
    "CheckpointStore",
    "PersistedState",
    "StateStore",
    "read_document",
    "write_document",
]
