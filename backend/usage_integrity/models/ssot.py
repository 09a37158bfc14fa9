"""
Vehicle Usage Integrity Engine - Single Source of Truth Models

In-memory value objects passed between the engine layers.
The reconstructor, classifier and stacker only ever see these types,
never ORM rows, so every layer can be exercised without a database.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional


# =============================================================================
# ENUMS
# =============================================================================

class DeclarationType(str, Enum):
    """Host-attested usage category for a vehicle."""
    RENTAL_ONLY = "RENTAL_ONLY"
    RENTAL_PLUS_PERSONAL = "RENTAL_PLUS_PERSONAL"
    BUSINESS = "BUSINESS"


class AnomalySeverity(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    VIOLATION = "VIOLATION"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def worst(cls, *severities: "AnomalySeverity") -> "AnomalySeverity":
        return max(severities, key=lambda s: s.rank)


_SEVERITY_RANK = {
    AnomalySeverity.NORMAL: 0,
    AnomalySeverity.WARNING: 1,
    AnomalySeverity.CRITICAL: 2,
    AnomalySeverity.VIOLATION: 3,
}


class AnomalyCause(str, Enum):
    """What produced an anomaly. Integrity causes are independent of declaration."""
    BACKWARD_MOVEMENT = "BACKWARD_MOVEMENT"
    REVERSED_TRIP_READING = "REVERSED_TRIP_READING"
    IMPLAUSIBLE_DISTANCE = "IMPLAUSIBLE_DISTANCE"
    EXCESSIVE_GAP = "EXCESSIVE_GAP"
    MISSING_DATA = "MISSING_DATA"


class ServiceType(str, Enum):
    """Attested mileage events. Every type is trusted as an anchor."""
    OIL_CHANGE = "OIL_CHANGE"
    STATE_INSPECTION = "STATE_INSPECTION"
    TIRE_ROTATION = "TIRE_ROTATION"
    BRAKE_SERVICE = "BRAKE_SERVICE"
    INSPECTION = "INSPECTION"
    MANUAL_ATTESTATION = "MANUAL_ATTESTATION"
    OTHER = "OTHER"


class InsuranceLevel(str, Enum):
    """Host insurance level - the ONLY input to the earnings tier."""
    NONE = "none"
    P2P = "p2p"
    COMMERCIAL = "commercial"


class CoverageLevel(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    TERTIARY = "TERTIARY"


class CoverageType(str, Enum):
    GUEST_PERSONAL = "GUEST_PERSONAL"
    HOST_P2P = "HOST_P2P"
    HOST_COMMERCIAL = "HOST_COMMERCIAL"
    PLATFORM = "PLATFORM"


# =============================================================================
# POLICY TABLES
# =============================================================================

@dataclass(frozen=True)
class DeclarationPolicy:
    """
    Compliance thresholds for one declared usage category.

    gap <= max_normal_gap_miles              -> NORMAL
    gap <= critical_gap_miles                -> WARNING
    gap <= 2 x critical_gap_miles            -> CRITICAL
    beyond                                   -> VIOLATION
    """
    declaration: DeclarationType
    max_normal_gap_miles: int
    critical_gap_miles: int
    label: str = ""
    description: str = ""
    claim_impact: str = ""

    @property
    def violation_gap_miles(self) -> int:
        return 2 * self.critical_gap_miles


@dataclass(frozen=True)
class EarningsTier:
    """Host revenue share. Derived from insurance level alone."""
    insurance_level: InsuranceLevel
    percentage: Decimal
    label: str


# =============================================================================
# RECONCILIATION
# =============================================================================

@dataclass(frozen=True)
class Anchor:
    """Most recent attested mileage fact at or before a reconciliation range."""
    service_record_id: Optional[str]
    anchor_date: Optional[date]
    mileage: Optional[int]
    service_type: Optional[ServiceType] = None

    @classmethod
    def none(cls) -> "Anchor":
        return cls(service_record_id=None, anchor_date=None, mileage=None)

    @property
    def exists(self) -> bool:
        return self.mileage is not None


@dataclass(frozen=True)
class TripSnapshot:
    """Raw trip facts as presented by the booking subsystem."""
    trip_id: str
    start_date: date
    end_date: date
    recorded_start_mileage: Optional[int] = None
    recorded_end_mileage: Optional[int] = None


@dataclass(frozen=True)
class ReconstructedTrip:
    """Corrected mileage for one trip plus the facts the classifier needs."""
    trip_id: str
    corrected_start_mileage: int
    corrected_end_mileage: int
    is_estimated: bool
    had_backward_anomaly: bool
    # Context
    previous_mileage: int            # corrected end of the previous event
    expected_start_mileage: int      # previous_mileage + idle estimate
    idle_days: int
    idle_gap_miles: int              # corrected_start - previous_mileage
    gap_measured: bool               # start came from an accepted recorded reading
    previous_end_estimated: bool
    trip_days: int
    trip_miles: int
    trip_miles_recorded: bool
    had_reversed_reading: bool = False
    recorded_start_mileage: Optional[int] = None
    recorded_end_mileage: Optional[int] = None


@dataclass(frozen=True)
class TimelineResult:
    anchor: Anchor
    baseline_date: Optional[date]
    baseline_mileage: int
    trips: List[ReconstructedTrip] = field(default_factory=list)
    final_mileage: int = 0


@dataclass(frozen=True)
class AnomalyFinding:
    """A non-NORMAL classification waiting to be recorded."""
    trip_id: Optional[str]
    severity: AnomalySeverity
    cause: AnomalyCause
    last_known_mileage: int
    current_mileage: int
    gap_miles: int
    explanation: str


# =============================================================================
# COMPLIANCE
# =============================================================================

@dataclass
class ForensicSummary:
    total_gaps: int = 0
    average_gap: float = 0.0
    max_gap: int = 0
    unauthorized_mileage: int = 0


@dataclass
class ServiceMetrics:
    service_count: int = 0
    last_service_date: Optional[date] = None
    days_since_last_service: Optional[int] = None
    next_service_due_date: Optional[date] = None
    is_overdue: bool = False


@dataclass
class ComplianceAdvice:
    """Advisory output. Never applied automatically."""
    vehicle_id: str
    declaration: DeclarationType
    window_start: date
    window_end: date
    average_gap: float
    compliance_score: int
    anomaly_counts: dict
    forensics: ForensicSummary
    service: ServiceMetrics
    recommended_declaration: Optional[DeclarationType] = None
    recommendation: Optional[str] = None


# =============================================================================
# CLAIMS
# =============================================================================

@dataclass(frozen=True)
class GuestInsuranceFacts:
    verified: bool = False
    provider: Optional[str] = None
    deductible: Optional[Decimal] = None


@dataclass(frozen=True)
class HostInsuranceFacts:
    host_id: str
    insurance_level: InsuranceLevel
    p2p_deductible: Optional[Decimal] = None
    commercial_deductible: Optional[Decimal] = None


@dataclass(frozen=True)
class PlatformPolicy:
    deductible: Decimal
    description: str = "Platform protection plan"


@dataclass(frozen=True)
class InsuranceCoverageLayer:
    level: CoverageLevel
    type: CoverageType
    deductible: Decimal
    coverage_description: str

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "type": self.type.value,
            "deductible": str(self.deductible),
            "coverage_description": self.coverage_description,
        }


@dataclass(frozen=True)
class ClaimBreakdown:
    approved_amount: Decimal
    earnings_tier_percentage: Decimal
    host_payout: Decimal
    platform_fee: Decimal
    deductible: Decimal
    deposit_held: Decimal
    guest_responsibility: Decimal

    def to_dict(self) -> dict:
        return {
            "approved_amount": str(self.approved_amount),
            "earnings_tier_percentage": str(self.earnings_tier_percentage),
            "host_payout": str(self.host_payout),
            "platform_fee": str(self.platform_fee),
            "deductible": str(self.deductible),
            "deposit_held": str(self.deposit_held),
            "guest_responsibility": str(self.guest_responsibility),
        }
