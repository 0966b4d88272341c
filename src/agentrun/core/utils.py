"""Small helpers shared across layers."""

import time
import uuid


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Return a prefixed random identifier, e.g. ``evt-3f2a...``."""
    return f"{prefix}-{uuid.uuid4().hex[:16]}"
