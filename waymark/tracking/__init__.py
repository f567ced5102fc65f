"""Step lifecycle, file change journal and progress derivation."""

from __future__ import annotations

from .journal import FileChangeJournal, revert_changes
from .progress import build_report, compute_progress
from .steps import StepTracker

__all__ = [
    "FileChangeJournal",
    "StepTracker",
    "build_report",
    "compute_progress",
    "revert_changes",
]
