"""Identifier helpers for state and checkpoint files."""

from __future__ import annotations

import re
import threading
import time

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9\-_]")
_CHECKPOINT_ID = re.compile(r"^[A-Za-z0-9\-_]+$")


def sanitize_identifier(identifier: str) -> str:
    """Replace every character outside ``[A-Za-z0-9-_]`` with ``-``."""
    return _UNSAFE_CHARS.sub("-", identifier)


def is_valid_checkpoint_id(checkpoint_id: object) -> bool:
    return isinstance(checkpoint_id, str) and bool(_CHECKPOINT_ID.match(checkpoint_id))


class CheckpointIdGenerator:
    """Generate time-ordered checkpoint identifiers.

    Identifiers look like ``0001760868000123-0000``: a zero padded millisecond
    timestamp followed by a sequence number. When two identifiers are requested
    within the same millisecond (or the clock moves backwards) the timestamp
    part is held and the sequence is bumped, so identifiers from one generator
    always sort lexically in creation order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = 0
        self._sequence = 0

    def next_id(self) -> str:
        with self._lock:
            now_ms = time.time_ns() // 1_000_000
            if now_ms > self._last_ms:
                self._last_ms = now_ms
                self._sequence = 0
            else:
                self._sequence += 1
            return f"{self._last_ms:016d}-{self._sequence:04d}"
