"""Unit tests for candidate confidence scoring"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from config import Settings
from models.provider_order import ProviderOrder
from models.storefront_order import StorefrontOrder
from reconciliation.scorer import (
    MatchScorer,
    amount_score,
    amount_tolerance,
    date_score,
    minor_units,
    name_score,
    time_gap,
)

T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
WINDOW = timedelta(days=7)


def provider(amount="49.99", name="Jane Doe", created_at=T0, currency="USD"):
    return ProviderOrder(
        id=1, recipient_name=name, total_amount=Decimal(amount), currency=currency, created_at=created_at
    )


def storefront(amount="49.99", name="Jane Doe", created_at=T0, currency="USD", id=10):
    return StorefrontOrder(
        id=id, customer_name=name, total_amount=Decimal(amount), currency=currency, created_at=created_at
    )


class TestAmountScore:
    """Test amount sub-score"""

    def test_equal_amounts(self):
        assert amount_score(Decimal("49.99"), "USD", Decimal("49.99"), "USD", 0.1) == 1.0

    def test_within_half_minor_unit(self):
        assert amount_score(Decimal("49.994"), "USD", Decimal("49.99"), "USD", 0.1) == 1.0

    def test_zero_decimal_currency_tolerance(self):
        """JPY has no minor unit, so a 0.4 yen difference is still exact"""
        assert minor_units("JPY") == 0
        assert amount_tolerance("JPY", "JPY") == Decimal("0.5")
        assert amount_score(Decimal("5000"), "JPY", Decimal("5000.4"), "JPY", 0.1) == 1.0

    def test_three_decimal_currency(self):
        assert minor_units("KWD") == 3
        assert amount_tolerance("KWD", "KWD") == Decimal("0.0005")

    def test_close_amount_is_partial(self):
        score = amount_score(Decimal("100.00"), "USD", Decimal("95.00"), "USD", 0.1)
        # 5% relative difference, half of the decay ratio
        assert score == pytest.approx(0.45)
        assert score < 0.9

    def test_far_amount_is_zero(self):
        assert amount_score(Decimal("100.00"), "USD", Decimal("50.00"), "USD", 0.1) == 0.0

    def test_currency_mismatch_is_zero(self):
        assert amount_score(Decimal("49.99"), "USD", Decimal("49.99"), "EUR", 0.1) == 0.0

    def test_currency_case_insensitive(self):
        assert amount_score(Decimal("49.99"), "usd", Decimal("49.99"), "USD", 0.1) == 1.0

    def test_missing_amount(self):
        assert amount_score(None, "USD", Decimal("49.99"), "USD", 0.1) == 0.0


class TestNameScore:
    """Test recipient/customer name similarity"""

    def test_identical(self):
        assert name_score("Jane Doe", "Jane Doe") == 1.0

    def test_case_and_punctuation_insensitive(self):
        assert name_score("JANE DOE.", "  jane   doe") == 1.0

    def test_token_order_insensitive(self):
        assert name_score("Doe, Jane", "Jane Doe") == 1.0

    def test_similar_names(self):
        assert name_score("Jane Doe", "John Doe") == pytest.approx(0.75)

    def test_empty_name(self):
        assert name_score("", "Jane Doe") == 0.0
        assert name_score(None, "Jane Doe") == 0.0
        assert name_score("...", "Jane Doe") == 0.0


class TestDateScore:
    """Test date proximity sub-score"""

    def test_same_instant(self):
        assert date_score(timedelta(0), WINDOW) == 1.0

    def test_linear_decay(self):
        assert date_score(timedelta(days=3.5), WINDOW) == pytest.approx(0.5)

    def test_clamped_at_window_edge(self):
        assert date_score(timedelta(days=10), WINDOW) == 0.0

    def test_time_gap_naive_and_aware(self):
        naive = datetime(2024, 3, 1, 9, 50)
        assert time_gap(T0, naive) == timedelta(minutes=10)


class TestMatchScorer:
    """Test combined confidence"""

    @pytest.fixture
    def scorer(self):
        return MatchScorer(Settings(DATABASE_URL="sqlite://"))

    def test_perfect_match(self, scorer):
        result = scorer.calculate_confidence(provider(), storefront())
        assert result["confidence"] == 1.0
        assert result["features"] == {"S_amount": 1.0, "S_name": 1.0, "S_date": 1.0}
        assert "Exact amount match" in result["reasons"]
        assert "Same day order" in result["reasons"]

    def test_score_bounds(self, scorer):
        result = scorer.calculate_confidence(
            provider(amount="10.00", name="Alice"),
            storefront(amount="999.00", name="Zed", created_at=T0 + timedelta(days=30)),
        )
        assert 0.0 <= result["confidence"] <= 1.0
        assert result["confidence"] < 0.3

    def test_scenario_ranking(self, scorer):
        """S1 (10 minutes earlier, same name) outranks S2 (3.6 days later, John Doe)"""
        p1 = provider()
        s1 = scorer.calculate_confidence(p1, storefront(created_at=T0 - timedelta(minutes=10)))
        s2 = scorer.calculate_confidence(
            p1, storefront(name="John Doe", created_at=datetime(2024, 3, 5, tzinfo=timezone.utc), id=11)
        )
        assert s1["confidence"] == pytest.approx(0.9998, abs=1e-4)
        assert s2["confidence"] == pytest.approx(0.8226, abs=1e-3)
        assert s1["confidence"] - s2["confidence"] > 0.05

    def test_close_date_reason(self, scorer):
        result = scorer.calculate_confidence(provider(), storefront(created_at=T0 + timedelta(days=2)))
        assert "Close order date (2.0 days apart)" in result["reasons"]

    def test_similar_amount_reason(self, scorer):
        result = scorer.calculate_confidence(provider(amount="50.00"), storefront(amount="49.00"))
        assert "Similar amount (diff 1.00 USD)" in result["reasons"]

    def test_currency_mismatch_reason(self, scorer):
        result = scorer.calculate_confidence(provider(currency="USD"), storefront(currency="EUR"))
        assert "Currency mismatch (USD vs EUR)" in result["reasons"]
        assert result["features"]["S_amount"] == 0.0

    def test_weights_are_normalized(self):
        scorer = MatchScorer(Settings(
            DATABASE_URL="sqlite://",
            MATCH_WEIGHT_AMOUNT=5.0,
            MATCH_WEIGHT_NAME=3.0,
            MATCH_WEIGHT_DATE=2.0,
        ))
        assert scorer.w_amount == pytest.approx(0.5)
        assert scorer.w_name == pytest.approx(0.3)
        assert scorer.w_date == pytest.approx(0.2)
