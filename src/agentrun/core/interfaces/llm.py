"""
Reasoning Backend Protocol

The runtime never talks to a concrete LLM vendor. Anything exposing an async
``invoke(prompt, options)`` that returns text or an already-parsed dict can
drive the strategies.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ReasoningAdapterProtocol(Protocol):
    """Opaque reasoning capability consumed by the strategies."""

    async def invoke(
        self,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> str | dict[str, Any]:
        """
        Ask the backend for a completion.

        Args:
            prompt: Fully rendered prompt text
            options: Backend hints such as ``response_format`` or ``temperature``

        Returns:
            Raw text (expected to contain JSON) or a structured dict
        """
        ...
