"""
Per-run execution context.

A RunContext is created when an agent call starts, handed by reference to
everything that participates in the run, and closed when the run ends.
Parent/child relationships between runs live here instead of in shared
module-level maps.
"""

from dataclasses import dataclass, field

from agentrun.core.utils import generate_id, now_ms


@dataclass
class RunContext:
    """Identity and wall-clock deadline of one agent run."""

    tenant_id: str
    agent_name: str
    session_id: str | None = None
    correlation_id: str = field(default_factory=lambda: generate_id("corr"))
    parent_correlation_id: str | None = None
    started_at_ms: int = field(default_factory=now_ms)
    timeout_ms: int | None = None
    child_correlation_ids: list[str] = field(default_factory=list)
    closed: bool = False

    @property
    def deadline_ms(self) -> int | None:
        if self.timeout_ms is None:
            return None
        return self.started_at_ms + self.timeout_ms

    def elapsed_ms(self) -> int:
        return now_ms() - self.started_at_ms

    def remaining_ms(self) -> int | None:
        """Milliseconds left before the deadline, or None when unbounded."""
        deadline = self.deadline_ms
        if deadline is None:
            return None
        return max(0, deadline - now_ms())

    def is_expired(self) -> bool:
        remaining = self.remaining_ms()
        return remaining is not None and remaining <= 0

    def spawn_child(self, agent_name: str) -> "RunContext":
        """Create a nested run that shares tenant, session and deadline."""
        child = RunContext(
            tenant_id=self.tenant_id,
            agent_name=agent_name,
            session_id=self.session_id,
            parent_correlation_id=self.correlation_id,
            started_at_ms=now_ms(),
            timeout_ms=self.remaining_ms(),
        )
        self.child_correlation_ids.append(child.correlation_id)
        return child

    def close(self) -> None:
        self.closed = True
        self.child_correlation_ids.clear()
