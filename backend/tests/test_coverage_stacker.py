"""
Tests for the Insurance Coverage Stacker.

Test Coverage:
1. Layer ordering: verified guest -> host -> platform
2. Unverified guest coverage is skipped
3. No applicable coverage at all -> InsufficientCoverageDataError
4. Breakdown math per earnings tier, with cent rounding
5. Guest responsibility never negative
"""
from decimal import Decimal

import pytest

from usage_integrity.errors import InsufficientCoverageDataError
from usage_integrity.models.ssot import (
    CoverageLevel, CoverageType, GuestInsuranceFacts, HostInsuranceFacts,
    InsuranceLevel, PlatformPolicy,
)
from usage_integrity.services.claims import InsuranceCoverageStacker, to_money
from usage_integrity.services.policy import earnings_tier_for


PLATFORM = PlatformPolicy(deductible=Decimal("1000.00"))


@pytest.fixture
def stacker():
    return InsuranceCoverageStacker()


def host(level, p2p=None, commercial=None):
    return HostInsuranceFacts(
        host_id="host-1",
        insurance_level=level,
        p2p_deductible=p2p,
        commercial_deductible=commercial,
    )


# =============================================================================
# TEST: LAYER ORDERING
# =============================================================================

class TestStack:

    def test_full_stack(self, stacker):
        guest = GuestInsuranceFacts(verified=True, provider="Acme Auto", deductible=Decimal("500"))

        layers = stacker.stack(guest, host(InsuranceLevel.COMMERCIAL, commercial=Decimal("2500")), PLATFORM)

        assert [l.level for l in layers] == [
            CoverageLevel.PRIMARY, CoverageLevel.SECONDARY, CoverageLevel.TERTIARY,
        ]
        assert [l.type for l in layers] == [
            CoverageType.GUEST_PERSONAL, CoverageType.HOST_COMMERCIAL, CoverageType.PLATFORM,
        ]
        assert layers[0].deductible == Decimal("500.00")
        assert "Acme Auto" in layers[0].coverage_description
        assert layers[1].deductible == Decimal("2500.00")

    def test_unverified_guest_is_skipped(self, stacker):
        guest = GuestInsuranceFacts(verified=False, provider="Acme Auto", deductible=Decimal("500"))

        layers = stacker.stack(guest, host(InsuranceLevel.P2P, p2p=Decimal("750")), PLATFORM)

        assert [(l.level, l.type) for l in layers] == [
            (CoverageLevel.PRIMARY, CoverageType.HOST_P2P),
            (CoverageLevel.SECONDARY, CoverageType.PLATFORM),
        ]
        assert layers[0].deductible == Decimal("750.00")

    def test_uninsured_host_falls_to_platform(self, stacker):
        layers = stacker.stack(GuestInsuranceFacts(), host(InsuranceLevel.NONE), PLATFORM)

        assert len(layers) == 1
        assert layers[0].level == CoverageLevel.PRIMARY
        assert layers[0].type == CoverageType.PLATFORM
        assert layers[0].deductible == Decimal("1000.00")

    def test_missing_deductible_is_zero(self, stacker):
        layers = stacker.stack(GuestInsuranceFacts(), host(InsuranceLevel.P2P), None)
        assert layers[0].deductible == Decimal("0.00")

    def test_no_coverage_at_all(self, stacker):
        with pytest.raises(InsufficientCoverageDataError):
            stacker.stack(GuestInsuranceFacts(), host(InsuranceLevel.NONE), None)

    def test_layer_to_dict(self, stacker):
        layer = stacker.stack(GuestInsuranceFacts(), host(InsuranceLevel.NONE), PLATFORM)[0]
        assert layer.to_dict() == {
            "level": "PRIMARY",
            "type": "PLATFORM",
            "deductible": "1000.00",
            "coverage_description": PLATFORM.description,
        }


# =============================================================================
# TEST: BREAKDOWN
# =============================================================================

class TestBreakdown:

    @pytest.mark.parametrize("level,payout,fee", [
        (InsuranceLevel.COMMERCIAL, "900.00", "100.00"),
        (InsuranceLevel.P2P, "750.00", "250.00"),
        (InsuranceLevel.NONE, "400.00", "600.00"),
    ])
    def test_payout_per_tier(self, stacker, level, payout, fee):
        result = stacker.breakdown(Decimal("1000"), earnings_tier_for(level), Decimal("500"), Decimal("200"))

        assert result.host_payout == Decimal(payout)
        assert result.platform_fee == Decimal(fee)
        assert result.guest_responsibility == Decimal("300.00")

    def test_rounding_keeps_total(self, stacker):
        result = stacker.breakdown(
            Decimal("333.33"), earnings_tier_for(InsuranceLevel.P2P), Decimal("0"), Decimal("0")
        )

        assert result.host_payout == Decimal("250.00")
        assert result.platform_fee == Decimal("83.33")
        assert result.host_payout + result.platform_fee == result.approved_amount

    def test_deposit_above_deductible(self, stacker):
        result = stacker.breakdown(
            Decimal("1000"), earnings_tier_for(InsuranceLevel.P2P), Decimal("250"), Decimal("400")
        )
        assert result.guest_responsibility == Decimal("0.00")

    def test_to_money(self):
        assert to_money(None) == Decimal("0.00")
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(7) == Decimal("7.00")


class TestEarningsTier:

    @pytest.mark.parametrize("level,percentage", [
        (InsuranceLevel.NONE, Decimal("0.40")),
        (InsuranceLevel.P2P, Decimal("0.75")),
        (InsuranceLevel.COMMERCIAL, Decimal("0.90")),
    ])
    def test_tier_from_insurance_level(self, level, percentage):
        assert earnings_tier_for(level).percentage == percentage

    def test_tier_accepts_raw_value(self):
        assert earnings_tier_for("commercial").percentage == Decimal("0.90")
