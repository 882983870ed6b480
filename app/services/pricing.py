"""
Pricing Evaluator - Pure functions mapping pricing config + usage facts to credits.

The raw pricing JSON attached to a model record is parsed into a tagged union
(TokenPricing | ImagePricing) before any arithmetic happens. Unknown units and
malformed fields raise PricingConfigError so that nothing is precharged on a
bad configuration.
"""

import json
import math
from collections.abc import Mapping
from typing import Any

from app.config import settings
from app.exceptions import PricingConfigError
from app.models.api import ImageMode
from app.models.pricing import (
    ImagePricing,
    ImageUsageFacts,
    PricingConfig,
    TokenPricing,
    TokenUsageFacts,
    UsageFacts,
)


def _number(raw: Mapping[str, Any], key: str, default: float) -> float:
    """Read a numeric field, falling back to default when absent."""
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise PricingConfigError(f"'{key}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise PricingConfigError(f"'{key}' must be a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise PricingConfigError(f"'{key}' must be finite, got {value!r}")
    if number < 0:
        raise PricingConfigError(f"'{key}' cannot be negative, got {value!r}")
    return number


def _size_multipliers(raw: Mapping[str, Any]) -> dict[str, float]:
    value = raw.get("sizeMultipliers")
    if value is None:
        return dict(settings.pricing_default_size_multipliers)
    if not isinstance(value, Mapping):
        raise PricingConfigError("'sizeMultipliers' must be an object")
    return {str(size): _number(value, size, 1.0) for size in value}


def parse_pricing(raw: Any) -> PricingConfig:
    """
    Parse a model's pricing JSON into TokenPricing or ImagePricing.

    Raises:
        PricingConfigError: pricing missing, not an object, unknown unit,
            or a malformed field
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise PricingConfigError("pricing is not valid JSON") from exc

    if not raw or not isinstance(raw, Mapping):
        raise PricingConfigError("model has no pricing configured")

    unit = raw.get("unit")

    if unit == "token":
        return TokenPricing(
            input_per_k=_number(raw, "inputPerK", settings.pricing_default_input_per_k),
            output_per_k=_number(raw, "outputPerK", settings.pricing_default_output_per_k),
            minimum=math.ceil(_number(raw, "minimum", settings.pricing_default_minimum)),
        )

    if unit == "image":
        base = _number(raw, "base", settings.pricing_default_image_base)
        return ImagePricing(
            base=base,
            edit_base=_number(raw, "editBase", base),
            size_multipliers=_size_multipliers(raw),
        )

    raise PricingConfigError(f"unknown pricing unit: {unit!r}")


def token_cost(config: TokenPricing, facts: TokenUsageFacts) -> int:
    """ceil(prompt/1000 * inputPerK + completion/1000 * outputPerK), floored at minimum."""
    input_cost = facts.prompt_tokens / 1000 * config.input_per_k
    output_cost = facts.completion_tokens / 1000 * config.output_per_k
    return max(math.ceil(input_cost + output_cost), config.minimum)


def image_cost(config: ImagePricing, facts: ImageUsageFacts) -> int:
    """ceil(base * sizeMultiplier(size) * quantity)."""
    base = config.base_for(facts.mode)
    return math.ceil(base * config.multiplier_for(facts.size) * facts.quantity)


def estimate(pricing: Any, facts: UsageFacts) -> int:
    """
    Compute the credit cost of an operation.

    Accepts either a parsed PricingConfig or the raw JSON blob.

    Raises:
        PricingConfigError: malformed pricing, or facts of the wrong family
    """
    config = pricing if isinstance(pricing, (TokenPricing, ImagePricing)) else parse_pricing(pricing)

    if isinstance(config, TokenPricing):
        if not isinstance(facts, TokenUsageFacts):
            raise PricingConfigError("token pricing cannot bill image usage")
        return token_cost(config, facts)

    if not isinstance(facts, ImageUsageFacts):
        raise PricingConfigError("image pricing cannot bill token usage")
    return image_cost(config, facts)


def calculate_chat_cost(pricing: Any, prompt_tokens: int, completion_tokens: int) -> int:
    """Cost of a chat call from its token counts."""
    return estimate(pricing, TokenUsageFacts(prompt_tokens, completion_tokens))


def calculate_image_cost(
    pricing: Any,
    size: str | None = None,
    quantity: int = 1,
    mode: ImageMode = ImageMode.GENERATE,
) -> int:
    """Cost of an image generation or edit."""
    return estimate(pricing, ImageUsageFacts(size=size, quantity=quantity, mode=mode))


def estimate_prompt_tokens(texts: list[str]) -> int:
    """Rough upper bound on prompt tokens before the provider reports usage."""
    total_chars = sum(len(text) for text in texts)
    return max(8, math.ceil(total_chars / 4))
