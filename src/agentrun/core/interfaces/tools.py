"""
Tool Protocol

Strategies only depend on this shape; ToolDefinition in the domain models is
the default implementation.
"""

from typing import Any, Protocol

from agentrun.core.domain.models import ToolContext


class ToolProtocol(Protocol):
    """A named, schema-described callable."""

    name: str
    description: str
    input_schema: dict[str, Any]

    async def invoke(self, input: dict[str, Any], context: ToolContext) -> Any:
        """Execute the tool with already-validated input."""
        ...
