from __future__ import annotations

from enum import Enum


class LockMode(Enum):
    """Select locking behavior for cached singleton construction.

    Use these values for binding-level ``lock_mode`` or the container-level
    default. ``THREAD`` gives the single-flight guarantee: concurrent first
    calls for one capability run its producer exactly once.
    """

    THREAD = "thread"
    """Guard singleton construction with a per-capability ``threading.Lock``."""

    NONE = "none"
    """Disable locking around construction for this binding."""
