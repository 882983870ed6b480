"""
Tests for the pricing evaluator.

Pure functions: no database, no mocks.
"""

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from app.exceptions import PricingConfigError
from app.models.api import ImageMode
from app.models.pricing import ImagePricing, ImageUsageFacts, TokenPricing, TokenUsageFacts
from app.services.pricing import (
    calculate_chat_cost,
    calculate_image_cost,
    estimate,
    estimate_prompt_tokens,
    parse_pricing,
)

TOKEN_PRICING = {"unit": "token", "inputPerK": 10, "outputPerK": 30, "minimum": 15}
IMAGE_PRICING = {
    "unit": "image",
    "base": 60,
    "sizeMultipliers": {"512x512": 1, "1024x1024": 1.6},
}


# ============================================================================
# Parsing
# ============================================================================


class TestParsePricing:
    """Tests for parse_pricing."""

    def test_token_pricing(self):
        config = parse_pricing(TOKEN_PRICING)

        assert config == TokenPricing(input_per_k=10, output_per_k=30, minimum=15)

    def test_image_pricing_edit_base_defaults_to_base(self):
        config = parse_pricing(IMAGE_PRICING)

        assert isinstance(config, ImagePricing)
        assert config.base == 60
        assert config.edit_base == 60
        assert config.size_multipliers == {"512x512": 1.0, "1024x1024": 1.6}

    def test_json_string_accepted(self):
        config = parse_pricing(json.dumps(TOKEN_PRICING))

        assert isinstance(config, TokenPricing)

    def test_missing_fields_use_defaults(self):
        token = parse_pricing({"unit": "token"})
        image = parse_pricing({"unit": "image"})

        assert (token.input_per_k, token.output_per_k, token.minimum) == (10, 30, 15)
        assert image.base == 60
        assert image.size_multipliers == {"512x512": 1.0, "1024x1024": 1.6}

    def test_numeric_strings_accepted(self):
        config = parse_pricing({"unit": "token", "inputPerK": "2.5"})

        assert config.input_per_k == 2.5

    @pytest.mark.parametrize("raw", [None, {}, [], "null", 42])
    def test_missing_pricing_rejected(self, raw):
        with pytest.raises(PricingConfigError, match="no pricing configured"):
            parse_pricing(raw)

    def test_invalid_json_rejected(self):
        with pytest.raises(PricingConfigError, match="not valid JSON"):
            parse_pricing("{unit: token")

    @pytest.mark.parametrize("unit", [None, "second", "TOKEN", 1])
    def test_unknown_unit_rejected(self, unit):
        with pytest.raises(PricingConfigError, match="unknown pricing unit"):
            parse_pricing({"unit": unit, "base": 60})

    @pytest.mark.parametrize(
        "field,value",
        [
            ("inputPerK", "ten"),
            ("outputPerK", -1),
            ("minimum", True),
            ("inputPerK", float("nan")),
            ("outputPerK", [30]),
        ],
    )
    def test_malformed_token_fields_rejected(self, field, value):
        with pytest.raises(PricingConfigError):
            parse_pricing({**TOKEN_PRICING, field: value})

    def test_malformed_size_multipliers_rejected(self):
        with pytest.raises(PricingConfigError):
            parse_pricing({"unit": "image", "sizeMultipliers": [1, 1.6]})

        with pytest.raises(PricingConfigError):
            parse_pricing({"unit": "image", "sizeMultipliers": {"512x512": "big"}})


# ============================================================================
# Cost Evaluation
# ============================================================================


class TestTokenCost:
    """Tests for token pricing."""

    def test_minimum_applies_to_small_calls(self):
        """100 prompt / 50 completion tokens at 10/30 per K is below the minimum."""
        assert calculate_chat_cost(TOKEN_PRICING, 100, 50) == 15

    def test_cost_rounds_up(self):
        """1000 / 1000 tokens cost exactly 40; one more token rounds up."""
        assert calculate_chat_cost(TOKEN_PRICING, 1000, 1000) == 40
        assert calculate_chat_cost(TOKEN_PRICING, 1001, 1000) == 41

    def test_zero_tokens_cost_minimum(self):
        assert calculate_chat_cost(TOKEN_PRICING, 0, 0) == 15


class TestImageCost:
    """Tests for image pricing."""

    def test_base_size(self):
        assert calculate_image_cost(IMAGE_PRICING, size="512x512") == 60

    def test_size_multiplier_rounds_up(self):
        assert calculate_image_cost(IMAGE_PRICING, size="1024x1024") == 96

    def test_unknown_size_uses_multiplier_one(self):
        assert calculate_image_cost(IMAGE_PRICING, size="2048x2048") == 60

    def test_quantity(self):
        assert calculate_image_cost(IMAGE_PRICING, size="1024x1024", quantity=3) == 288

    def test_edit_uses_edit_base(self):
        pricing = {**IMAGE_PRICING, "editBase": 80}

        assert calculate_image_cost(pricing, size="512x512", mode=ImageMode.EDIT) == 80
        assert calculate_image_cost(pricing, size="512x512", mode=ImageMode.GENERATE) == 60

    def test_edit_without_edit_base_uses_base(self):
        assert calculate_image_cost(IMAGE_PRICING, mode=ImageMode.EDIT) == 60


class TestEstimate:
    """Tests for the estimate entry point."""

    def test_accepts_parsed_config(self):
        config = parse_pricing(IMAGE_PRICING)

        assert estimate(config, ImageUsageFacts(size="512x512")) == 60

    def test_token_facts_on_image_pricing_rejected(self):
        with pytest.raises(PricingConfigError):
            estimate(IMAGE_PRICING, TokenUsageFacts(100, 50))

    def test_image_facts_on_token_pricing_rejected(self):
        with pytest.raises(PricingConfigError):
            estimate(TOKEN_PRICING, ImageUsageFacts(size="512x512"))


class TestEstimatePromptTokens:
    """Tests for prompt token estimation."""

    def test_short_prompt_has_floor(self):
        assert estimate_prompt_tokens(["hi"]) == 8

    def test_four_chars_per_token(self):
        assert estimate_prompt_tokens(["a" * 100, "b" * 101]) == 51


# ============================================================================
# Properties
# ============================================================================

rates = st.floats(min_value=0, max_value=1_000, allow_nan=False, allow_infinity=False)
token_counts = st.integers(min_value=0, max_value=1_000_000)


class TestPricingProperties:
    """Property-based tests for pricing."""

    @given(rates, rates, st.integers(min_value=0, max_value=1_000), token_counts, token_counts)
    @settings(max_examples=200)
    def test_token_cost_never_below_minimum(
        self, input_rate, output_rate, minimum, prompt, completion
    ):
        pricing = {
            "unit": "token",
            "inputPerK": input_rate,
            "outputPerK": output_rate,
            "minimum": minimum,
        }

        assert calculate_chat_cost(pricing, prompt, completion) >= minimum

    @given(rates, st.integers(min_value=1, max_value=50))
    @settings(max_examples=100)
    def test_image_cost_monotonic_in_quantity(self, base, quantity):
        pricing = {"unit": "image", "base": base}

        assert calculate_image_cost(pricing, quantity=quantity + 1) >= calculate_image_cost(
            pricing, quantity=quantity
        )
