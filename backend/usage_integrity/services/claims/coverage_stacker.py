"""
Insurance Coverage Stacker

Builds the claim-time coverage hierarchy and the financial breakdown.

Hierarchy:
    1. Guest personal insurance (only when verified)     -> first level
    2. Host commercial, else host P2P, else nothing      -> next level
    3. Platform protection plan (always, when configured) -> last level

Breakdown:
    host_payout          = approved_amount x earnings tier percentage
    platform_fee         = approved_amount - host_payout
    guest_responsibility = max(0, deductible - deposit_held)

The earnings tier comes from the host's insurance level and nothing else.
Nothing in this module reads anomalies or compliance state.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from ...errors import InsufficientCoverageDataError
from ...models.ssot import (
    ClaimBreakdown, CoverageLevel, CoverageType, EarningsTier,
    GuestInsuranceFacts, HostInsuranceFacts, InsuranceCoverageLayer,
    InsuranceLevel, PlatformPolicy,
)


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

_LEVEL_ORDER = [CoverageLevel.PRIMARY, CoverageLevel.SECONDARY, CoverageLevel.TERTIARY]


def to_money(value) -> Decimal:
    """Quantize to cents, half-up."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class InsuranceCoverageStacker:
    """Stateless; safe to share."""

    def stack(
        self,
        guest: GuestInsuranceFacts,
        host: HostInsuranceFacts,
        platform: Optional[PlatformPolicy],
    ) -> List[InsuranceCoverageLayer]:
        """
        Order the applicable coverages and assign levels by priority.

        Raises:
            InsufficientCoverageDataError: no layer applies at all
        """
        candidates = []

        if guest is not None and guest.verified:
            provider = guest.provider or "Guest personal auto policy"
            candidates.append((
                CoverageType.GUEST_PERSONAL,
                to_money(guest.deductible),
                f"{provider} (verified guest coverage)",
            ))

        if host is not None:
            level = InsuranceLevel(host.insurance_level)
            if level == InsuranceLevel.COMMERCIAL:
                candidates.append((
                    CoverageType.HOST_COMMERCIAL,
                    to_money(host.commercial_deductible),
                    "Host commercial fleet policy",
                ))
            elif level == InsuranceLevel.P2P:
                candidates.append((
                    CoverageType.HOST_P2P,
                    to_money(host.p2p_deductible),
                    "Host peer-to-peer rental policy",
                ))

        if platform is not None:
            candidates.append((
                CoverageType.PLATFORM,
                to_money(platform.deductible),
                platform.description,
            ))

        if not candidates:
            raise InsufficientCoverageDataError(
                "No insurance facts available for this claim and no platform policy "
                "is configured; liability cannot be determined"
            )

        return [
            InsuranceCoverageLayer(
                level=_LEVEL_ORDER[i],
                type=coverage_type,
                deductible=deductible,
                coverage_description=description,
            )
            for i, (coverage_type, deductible, description) in enumerate(candidates)
        ]

    def breakdown(
        self,
        approved_amount,
        tier: EarningsTier,
        deductible,
        deposit_held=ZERO,
    ) -> ClaimBreakdown:
        approved = to_money(approved_amount)
        host_payout = to_money(approved * tier.percentage)
        deductible = to_money(deductible)
        deposit = to_money(deposit_held)

        return ClaimBreakdown(
            approved_amount=approved,
            earnings_tier_percentage=tier.percentage,
            host_payout=host_payout,
            platform_fee=approved - host_payout,
            deductible=deductible,
            deposit_held=deposit,
            guest_responsibility=max(ZERO, deductible - deposit),
        )
