"""Candidate confidence scoring.

Implements the weighted scoring formula:
- S_amount = 1.0 (equal within half a minor unit)
           | 0.9 * (1 - rel_diff / AMOUNT_DECAY_RATIO) (close)
           | 0.0 (far apart or different currency)
- S_name = rapidfuzz token_sort_ratio / 100 (case/punctuation/whitespace insensitive)
- S_date = 1 - gap / window, clamped to 0..1
- score = (w_a * S_amount + w_n * S_name + w_d * S_date) / (w_a + w_n + w_d)
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List

from rapidfuzz import fuzz, utils

from config import Settings, get_settings
from models.provider_order import ProviderOrder
from models.storefront_order import StorefrontOrder

# ISO 4217 currencies whose minor unit is not 2 decimals
_MINOR_UNIT_EXCEPTIONS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}

# Sub-score levels at which a reason is worth showing
NAME_REASON_MIN = 0.5
SAME_DAY = timedelta(days=1)
CLOSE_DATE = timedelta(days=3)


def minor_units(currency: Optional[str]) -> int:
    """Number of decimals in the currency's minor unit (default 2)."""
    if not currency:
        return 2
    return _MINOR_UNIT_EXCEPTIONS.get(currency.upper(), 2)


def amount_tolerance(currency_a: Optional[str], currency_b: Optional[str]) -> Decimal:
    """Half a minor unit of the less precise of the two currencies."""
    decimals = min(minor_units(currency_a), minor_units(currency_b))
    return Decimal(1).scaleb(-decimals) / 2


def amount_score(
    amount_a: Optional[Decimal],
    currency_a: Optional[str],
    amount_b: Optional[Decimal],
    currency_b: Optional[str],
    decay_ratio: float,
) -> float:
    """Score how well two order totals agree.

    Returns:
        1.0 for equal totals, a decaying partial score below 0.9 for close
        totals, 0.0 otherwise or when currencies differ
    """
    if amount_a is None or amount_b is None:
        return 0.0
    if (currency_a or "").upper() != (currency_b or "").upper():
        return 0.0

    a = Decimal(str(amount_a))
    b = Decimal(str(amount_b))
    diff = abs(a - b)
    if diff <= amount_tolerance(currency_a, currency_b):
        return 1.0

    largest = max(abs(a), abs(b))
    if largest == 0 or decay_ratio <= 0:
        return 0.0
    relative = float(diff / largest)
    return max(0.0, 0.9 * (1.0 - relative / decay_ratio))


def name_score(name_a: Optional[str], name_b: Optional[str]) -> float:
    """Token-order-insensitive fuzzy similarity of two person names (0.0-1.0)."""
    if not name_a or not name_b:
        return 0.0
    a = utils.default_process(name_a)
    b = utils.default_process(name_b)
    if not a or not b:
        return 0.0
    return fuzz.token_sort_ratio(a, b) / 100.0


def date_score(gap: timedelta, window: timedelta) -> float:
    """Linear decay from 1.0 at zero gap to 0.0 at the window boundary."""
    if window.total_seconds() <= 0:
        return 0.0
    ratio = abs(gap.total_seconds()) / window.total_seconds()
    return max(0.0, min(1.0, 1.0 - ratio))


def time_gap(a: datetime, b: datetime) -> timedelta:
    """Absolute gap between two timestamps, tolerating naive/aware mixes."""
    if (a.tzinfo is None) != (b.tzinfo is None):
        a = a.replace(tzinfo=None)
        b = b.replace(tzinfo=None)
    return abs(a - b)


class MatchScorer:
    """Calculate candidate confidence for a provider/storefront order pair."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        weights = (
            self.settings.MATCH_WEIGHT_AMOUNT,
            self.settings.MATCH_WEIGHT_NAME,
            self.settings.MATCH_WEIGHT_DATE,
        )
        total = sum(weights)
        self.w_amount, self.w_name, self.w_date = (w / total for w in weights)
        self.window = timedelta(days=self.settings.MATCH_WINDOW_DAYS)

    def calculate_confidence(
        self,
        provider_order: ProviderOrder,
        storefront_order: StorefrontOrder,
    ) -> Dict[str, Any]:
        """Calculate final match confidence with all components.

        Returns:
            Dict with confidence, time gap, features and reasons
        """
        gap = time_gap(provider_order.created_at, storefront_order.created_at)

        s_amount = amount_score(
            provider_order.total_amount,
            provider_order.currency,
            storefront_order.total_amount,
            storefront_order.currency,
            self.settings.AMOUNT_DECAY_RATIO,
        )
        s_name = name_score(provider_order.recipient_name, storefront_order.customer_name)
        s_date = date_score(gap, self.window)

        confidence = self.w_amount * s_amount + self.w_name * s_name + self.w_date * s_date
        confidence = round(max(0.0, min(1.0, confidence)), 4)

        return {
            "confidence": confidence,
            "time_gap_seconds": gap.total_seconds(),
            "features": {
                "S_amount": round(s_amount, 4),
                "S_name": round(s_name, 4),
                "S_date": round(s_date, 4),
            },
            "reasons": self._reasons(provider_order, storefront_order, s_amount, s_name, gap),
        }

    def _reasons(
        self,
        provider_order: ProviderOrder,
        storefront_order: StorefrontOrder,
        s_amount: float,
        s_name: float,
        gap: timedelta,
    ) -> List[str]:
        reasons = []

        same_currency = (provider_order.currency or "").upper() == (storefront_order.currency or "").upper()
        if not same_currency:
            reasons.append(
                f"Currency mismatch ({provider_order.currency} vs {storefront_order.currency})"
            )
        elif s_amount == 1.0:
            reasons.append("Exact amount match")
        elif s_amount > 0:
            diff = abs(Decimal(str(provider_order.total_amount)) - Decimal(str(storefront_order.total_amount)))
            reasons.append(f"Similar amount (diff {diff:.2f} {provider_order.currency})")

        if s_name >= NAME_REASON_MIN:
            reasons.append(f"Name similarity {s_name:.2f}")

        if gap <= SAME_DAY:
            reasons.append("Same day order")
        elif gap <= CLOSE_DATE:
            reasons.append(f"Close order date ({gap.total_seconds() / 86400:.1f} days apart)")

        return reasons
