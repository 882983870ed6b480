"""
Pricing domain models - Tagged union of model pricing configurations.

NO DICTIONARIES - The raw JSON blob is parsed into these types at the boundary.
"""

from dataclasses import dataclass, field
from typing import Literal

from app.models.api import ImageMode


@dataclass(frozen=True)
class TokenPricing:
    """Per-thousand-token pricing for chat models."""

    input_per_k: float
    output_per_k: float
    minimum: int
    unit: Literal["token"] = "token"

    def __post_init__(self) -> None:
        """Validate token pricing."""
        if self.input_per_k < 0 or self.output_per_k < 0:
            raise ValueError("Token rates cannot be negative")
        if self.minimum < 0:
            raise ValueError(f"Minimum cannot be negative: {self.minimum}")


@dataclass(frozen=True)
class ImagePricing:
    """Per-image pricing with optional edit base and size multipliers."""

    base: float
    edit_base: float | None = None
    size_multipliers: dict[str, float] = field(default_factory=dict)
    unit: Literal["image"] = "image"

    def __post_init__(self) -> None:
        """Validate image pricing."""
        if self.base < 0:
            raise ValueError(f"Base cannot be negative: {self.base}")
        if self.edit_base is not None and self.edit_base < 0:
            raise ValueError(f"Edit base cannot be negative: {self.edit_base}")
        for size, multiplier in self.size_multipliers.items():
            if multiplier < 0:
                raise ValueError(f"Multiplier for {size} cannot be negative")

    def multiplier_for(self, size: str | None) -> float:
        """Size multiplier, 1 when the size has no entry."""
        if size is None:
            return 1.0
        return self.size_multipliers.get(size) or 1.0

    def base_for(self, mode: ImageMode) -> float:
        """Edit mode uses edit_base when set."""
        if mode == ImageMode.EDIT and self.edit_base:
            return self.edit_base
        return self.base


PricingConfig = TokenPricing | ImagePricing


@dataclass(frozen=True)
class TokenUsageFacts:
    """Token counts for a chat call (estimated or realized)."""

    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self) -> None:
        """Validate token counts."""
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("Token counts cannot be negative")


@dataclass(frozen=True)
class ImageUsageFacts:
    """Image request parameters (requested or realized)."""

    size: str | None = None
    quantity: int = 1
    mode: ImageMode = ImageMode.GENERATE

    def __post_init__(self) -> None:
        """Validate quantity."""
        if self.quantity < 1:
            raise ValueError(f"Quantity must be at least 1: {self.quantity}")


UsageFacts = TokenUsageFacts | ImageUsageFacts
