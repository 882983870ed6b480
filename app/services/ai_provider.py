"""
AI Provider Protocol - Provider-agnostic interface for billed calls.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from app.models.pricing import UsageFacts


@dataclass(frozen=True)
class ProviderResult:
    """
    Outcome of a successful provider call.

    `realized_usage` carries the usage the provider actually reported
    (token counts, images produced). When None the precharge estimate
    stands as the final charge.
    """

    payload: Any
    realized_usage: UsageFacts | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


class ProviderCall(Protocol):
    """
    A single external call, invoked once by the billed-operation runner.

    Any provider adapter (chat completion, image generation, image edit)
    is wrapped in a zero-argument coroutine function of this shape.
    """

    async def __call__(self) -> ProviderResult:
        """
        Perform the call.

        Returns:
            Provider payload plus realized usage

        Raises:
            Any exception: treated as a failed call and fully refunded
        """
        ...
