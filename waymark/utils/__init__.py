"""Small helpers shared across waymark components."""

from .clock import as_utc, duration_ms, utcnow
from .ids import CheckpointIdGenerator, is_valid_checkpoint_id, sanitize_identifier

__all__ = [
    "CheckpointIdGenerator",
    "as_utc",
    "duration_ms",
    "is_valid_checkpoint_id",
    "sanitize_identifier",
    "utcnow",
]
