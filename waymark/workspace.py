"""Explicit handle bundling the stores and services of one storage root."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import WaymarkConfig, load_config, resolve_root
from .persistence import CheckpointStore, StateStore
from .rollback import RollbackEngine
from .tracking import FileChangeJournal, StepTracker


class Workspace:
    """All waymark components sharing one storage root.

    Create one per root and pass it to whatever drives the workflow; no state
    is shared between workspaces, so several can be used in one process.
    """

    def __init__(self, root: str | Path, keep_last: Optional[int] = None):
        self.root = Path(root)
        self.store = StateStore(self.root)
        self.checkpoints = CheckpointStore(self.store, keep_last=keep_last)
        self.tracker = StepTracker(self.store)
        self.journal = FileChangeJournal(self.store)
        self.rollback = RollbackEngine(self.store, self.checkpoints, self.journal)

    def __repr__(self) -> str:
        return f"Workspace(root={str(self.root)!r})"


def open_workspace(
    root: Optional[str | Path] = None, config: Optional[WaymarkConfig] = None
) -> Workspace:
    """Factory function to obtain a workspace.

    The storage root is taken from ``root`` when given, otherwise from the
    ``WAYMARK_ROOT`` environment variable or loaded configuration, and finally
    defaults to ``.waymark`` under the detected project root.
    """

    config = config or load_config()
    if root is None:
        root = resolve_root(config)
    return Workspace(root, keep_last=config.checkpoints.keep_last)
