"""
Agora Service Tiers — price multipliers and response-time SLAs.

Tiers trade price for speed. The ordering basic > pro > premium on
response-time SLA is a configuration invariant: it is checked whenever an
availability table is loaded or changed, never per request.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Mapping

from agora.errors import ValidationError
from agora.models import SLAPerformance, Tier, TierAvailability


# Slowest to fastest
TIER_ORDER: tuple[Tier, ...] = (Tier.BASIC, Tier.PRO, Tier.PREMIUM)

TIER_MULTIPLIERS: dict[Tier, Decimal] = {
    Tier.BASIC: Decimal("1.0"),
    Tier.PRO: Decimal("2.5"),
    Tier.PREMIUM: Decimal("5.0"),
}

DEFAULT_TIER_SLA_MS: dict[Tier, int] = {
    Tier.BASIC: 8000,
    Tier.PRO: 3000,
    Tier.PREMIUM: 500,
}

FALLBACK_SLA_MS = 5000


def price_for_tier(base_fee: str | Decimal, tier: Tier | str) -> Decimal:
    """Scale a capability's base price by the tier multiplier."""
    return Decimal(str(base_fee)) * TIER_MULTIPLIERS[Tier(tier)]


def validate_sla_ordering(availability: Mapping[str, TierAvailability]) -> None:
    """
    Check that offered tiers get strictly faster from basic to premium.

    Only the tiers actually present are compared, so an agent offering
    basic and premium must still have basic slower than premium.

    Raises:
        ValidationError: naming the first pair that breaks the ordering
    """
    offered = [t for t in TIER_ORDER if t.value in availability]
    for slower, faster in zip(offered, offered[1:]):
        slow_ms = availability[slower.value].response_sla
        fast_ms = availability[faster.value].response_sla
        if not slow_ms > fast_ms:
            raise ValidationError(
                f"Tier SLA ordering violated: {slower.value} ({slow_ms}ms) "
                f"must be slower than {faster.value} ({fast_ms}ms)",
                hint="responseSLA must satisfy basic > pro > premium",
            )


def calculate_sla_performance(
    tier: Tier | str,
    actual_ms: int,
    expected_ms: int | None = None,
) -> SLAPerformance:
    """
    Compare an observed execution time against the tier's SLA.

    Pure reporting helper; does not touch booking state. A breach carries a
    penalty of 10 points per 100% over the SLA, rounded up. Pass expected_ms
    to judge against an agent's own published SLA instead of the default.
    """
    tier = Tier(tier)
    if expected_ms is None:
        expected_ms = DEFAULT_TIER_SLA_MS.get(tier, FALLBACK_SLA_MS)
    within = actual_ms <= expected_ms
    penalty = 0 if within else math.ceil((actual_ms / expected_ms - 1) * 10)

    if within:
        message = f"SLA met ({actual_ms}ms <= {expected_ms}ms)"
    else:
        message = f"SLA breached ({actual_ms}ms > {expected_ms}ms, -{penalty}% penalty)"

    return SLAPerformance(
        tier=tier,
        expected_ms=expected_ms,
        actual_ms=actual_ms,
        within_sla=within,
        penalty=penalty,
        message=message,
    )
