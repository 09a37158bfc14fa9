"""
Earnings Tier Table

The host's revenue share is a pure function of the host's insurance level.
Declaration, compliance score and anomaly history are deliberately not
parameters here: no caller can feed them in.
"""
from decimal import Decimal

from ...models.ssot import EarningsTier, InsuranceLevel


EARNINGS_TIERS = {
    InsuranceLevel.NONE: EarningsTier(InsuranceLevel.NONE, Decimal("0.40"), "40% (Platform Only)"),
    InsuranceLevel.P2P: EarningsTier(InsuranceLevel.P2P, Decimal("0.75"), "75% (P2P Insurance)"),
    InsuranceLevel.COMMERCIAL: EarningsTier(InsuranceLevel.COMMERCIAL, Decimal("0.90"), "90% (Commercial Insurance)"),
}


def earnings_tier_for(insurance_level: InsuranceLevel) -> EarningsTier:
    """Return the earnings tier for an insurance level."""
    return EARNINGS_TIERS[InsuranceLevel(insurance_level)]
