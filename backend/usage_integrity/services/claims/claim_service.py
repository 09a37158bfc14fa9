"""
Claim Service

Claim-time workflow around the Insurance Coverage Stacker.

Core Principles:
1. Host and guest insurance facts are read once, in one transaction, and
   copied onto the claim. Later edits to the host never change a filed claim.
2. The earnings tier is stamped at filing from the host's insurance level.
   Approval uses the stamped tier; nothing re-derives it.
3. Standing CRITICAL / VIOLATION anomalies put the claim UNDER_REVIEW. An
   anomaly stands while it is unresolved and is the newest row for its trip
   and cause, the same rule the compliance score uses.
   Review may deny the claim. It never alters the revenue split.
4. An approval writes an immutable PayoutRecordDB.
"""
import logging
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import EngineConfig
from ...errors import InvalidClaimStateError, NotFoundError
from ...models.db_models import (
    ClaimDB, ClaimStatus, HostDB, PayoutRecordDB, TripDB,
    VehicleDB, OPEN_CLAIM_STATUSES, utcnow,
)
from ...models.ssot import (
    AnomalySeverity, EarningsTier, GuestInsuranceFacts, HostInsuranceFacts,
    InsuranceLevel,
)
from ..audit import AuditRecorder
from ..compliance.declaration_service import DeclarationService
from ..policy.earnings import earnings_tier_for
from .coverage_stacker import InsuranceCoverageStacker, to_money

logger = logging.getLogger(__name__)


REVIEW_SEVERITIES = (AnomalySeverity.CRITICAL, AnomalySeverity.VIOLATION)


class ClaimService:
    """
    Files, approves and denies claims.

    Usage:
        service = ClaimService(db, config)
        claim = service.file_claim(booking_id, Decimal("2500.00"))
    """

    def __init__(self, db: Session, config: EngineConfig):
        self.db = db
        self.config = config
        self.stacker = InsuranceCoverageStacker()
        self.declarations = DeclarationService(db)

    # =========================================================================
    # FILING
    # =========================================================================

    def file_claim(
        self,
        booking_id: str,
        claim_estimated_cost,
        approved_amount=None,
    ) -> ClaimDB:
        """
        File a claim against a booking.

        Args:
            booking_id: Trip / booking the damage happened on
            claim_estimated_cost: Initial damage estimate
            approved_amount: Approved amount when the claim is decided at filing

        Returns:
            ClaimDB (flushed, not committed)

        Raises:
            NotFoundError: unknown booking
            InsufficientCoverageDataError: no coverage layer applies
        """
        trip = (
            self.db.query(TripDB)
            .filter(TripDB.id == booking_id)
            .with_for_update(read=True)
            .first()
        )
        if trip is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == trip.vehicle_id).first()
        host = (
            self.db.query(HostDB)
            .filter(HostDB.id == vehicle.host_id)
            .with_for_update(read=True)
            .first()
        )
        if host is None:
            raise NotFoundError(f"Host {vehicle.host_id} not found")

        # 1. Snapshot insurance facts
        guest = GuestInsuranceFacts(
            verified=bool(trip.guest_insurance_verified),
            provider=trip.guest_insurance_provider,
            deductible=trip.guest_insurance_deductible,
        )
        host_facts = HostInsuranceFacts(
            host_id=host.id,
            insurance_level=InsuranceLevel(host.insurance_level),
            p2p_deductible=host.p2p_deductible,
            commercial_deductible=host.commercial_deductible,
        )

        # 2. Coverage and tier
        layers = self.stacker.stack(guest, host_facts, self.config.platform_policy)
        tier = earnings_tier_for(host_facts.insurance_level)

        # 3. Compliance review flags
        declaration = self.declarations.current_declaration(vehicle.id)
        policy = self.config.policy_for(declaration)
        flagged = self._review_anomalies(vehicle.id)
        requires_review = bool(flagged)

        # 4. Breakdown - projected from the estimate until an amount is approved
        amount = approved_amount if approved_amount is not None else claim_estimated_cost
        breakdown = self.stacker.breakdown(amount, tier, layers[0].deductible, trip.deposit_held)

        if requires_review:
            status = ClaimStatus.UNDER_REVIEW
        elif approved_amount is not None:
            status = ClaimStatus.APPROVED
        else:
            status = ClaimStatus.FILED

        claim = ClaimDB(
            id=str(uuid4()),
            booking_id=trip.id,
            vehicle_id=vehicle.id,
            host_id=host.id,
            status=status,
            estimated_cost=to_money(claim_estimated_cost),
            approved_amount=to_money(approved_amount) if approved_amount is not None else None,
            insurance_level=tier.insurance_level,
            earnings_tier_percentage=tier.percentage,
            declaration_at_filing=declaration,
            coverage_layers=[layer.to_dict() for layer in layers],
            deductible=breakdown.deductible,
            deposit_held=breakdown.deposit_held,
            host_payout=breakdown.host_payout,
            platform_fee=breakdown.platform_fee,
            guest_responsibility=breakdown.guest_responsibility,
            requires_review=requires_review,
            compliance_flags={
                "declaration": declaration.value,
                "claim_impact": policy.claim_impact,
                "anomalies": [
                    {
                        "id": a.id,
                        "trip_id": a.trip_id,
                        "severity": a.severity.value,
                        "cause": a.cause.value,
                        "gap_miles": a.gap_miles,
                    }
                    for a in flagged
                ],
            } if requires_review else None,
            filed_at=utcnow(),
            decided_at=utcnow() if status == ClaimStatus.APPROVED else None,
        )
        self.db.add(claim)
        self.db.flush()

        if status == ClaimStatus.APPROVED:
            self._record_payout(claim)

        if requires_review:
            logger.warning(
                f"Claim {claim.id} on vehicle {vehicle.id} flagged for review: "
                f"{len(flagged)} unresolved critical/violation anomalies"
            )
        logger.info(f"Claim {claim.id} filed for booking {booking_id}: status {status.value}")
        return claim

    def _review_anomalies(self, vehicle_id: str):
        """Standing CRITICAL / VIOLATION anomalies, newest row per (trip, cause)."""
        standing = AuditRecorder(self.db).current_anomalies(vehicle_id=vehicle_id)
        return [a for a in standing if a.severity in REVIEW_SEVERITIES]

    # =========================================================================
    # DECISIONS
    # =========================================================================

    def approve_claim(self, claim_id: str, approved_amount=None) -> ClaimDB:
        """
        Approve an open claim at the tier stamped when it was filed.
        """
        claim = self._open_claim(claim_id)

        amount = approved_amount
        if amount is None:
            amount = claim.approved_amount if claim.approved_amount is not None else claim.estimated_cost
        tier = EarningsTier(
            insurance_level=InsuranceLevel(claim.insurance_level),
            percentage=Decimal(str(claim.earnings_tier_percentage)),
            label="",
        )
        breakdown = self.stacker.breakdown(amount, tier, claim.deductible, claim.deposit_held)

        claim.status = ClaimStatus.APPROVED
        claim.approved_amount = breakdown.approved_amount
        claim.host_payout = breakdown.host_payout
        claim.platform_fee = breakdown.platform_fee
        claim.guest_responsibility = breakdown.guest_responsibility
        claim.decided_at = utcnow()
        self.db.flush()

        self._record_payout(claim)
        logger.info(f"Claim {claim.id} approved: host payout {claim.host_payout}")
        return claim

    def deny_claim(self, claim_id: str) -> ClaimDB:
        claim = self._open_claim(claim_id)
        claim.status = ClaimStatus.DENIED
        claim.decided_at = utcnow()
        self.db.flush()
        logger.info(f"Claim {claim.id} denied")
        return claim

    def _open_claim(self, claim_id: str) -> ClaimDB:
        claim = self.db.query(ClaimDB).filter(ClaimDB.id == claim_id).first()
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        if claim.status not in OPEN_CLAIM_STATUSES:
            raise InvalidClaimStateError(f"Claim {claim_id} is already {claim.status.value}")
        return claim

    def _record_payout(self, claim: ClaimDB) -> PayoutRecordDB:
        payout = PayoutRecordDB(
            id=str(uuid4()),
            claim=claim,
            host_id=claim.host_id,
            approved_amount=claim.approved_amount,
            insurance_level=claim.insurance_level,
            earnings_tier_percentage=claim.earnings_tier_percentage,
            host_payout=claim.host_payout,
            platform_fee=claim.platform_fee,
            recorded_at=utcnow(),
        )
        self.db.add(payout)
        self.db.flush()
        return payout

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @staticmethod
    def to_dict(claim: ClaimDB) -> dict:
        tier = earnings_tier_for(claim.insurance_level)
        return {
            "claim_id": claim.id,
            "booking_id": claim.booking_id,
            "vehicle_id": claim.vehicle_id,
            "host_id": claim.host_id,
            "status": claim.status.value,
            "coverage_layers": claim.coverage_layers,
            "earnings_tier": {
                "insurance_level": claim.insurance_level.value,
                "percentage": str(claim.earnings_tier_percentage),
                "label": tier.label,
            },
            "breakdown": {
                "estimated_cost": str(claim.estimated_cost),
                "approved_amount": str(claim.approved_amount) if claim.approved_amount is not None else None,
                "host_payout": str(claim.host_payout),
                "platform_fee": str(claim.platform_fee),
                "deductible": str(claim.deductible),
                "deposit_held": str(claim.deposit_held),
                "guest_responsibility": str(claim.guest_responsibility),
                "projected": claim.approved_amount is None,
            },
            "requires_review": bool(claim.requires_review),
            "compliance_flags": claim.compliance_flags,
            "declaration_at_filing": claim.declaration_at_filing.value if claim.declaration_at_filing else None,
            "payout_ids": [p.id for p in claim.payouts],
            "filed_at": claim.filed_at.isoformat(),
            "decided_at": claim.decided_at.isoformat() if claim.decided_at else None,
        }
