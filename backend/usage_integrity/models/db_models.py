"""
Vehicle Usage Integrity Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum,
    Boolean, Date, Numeric, event, inspect, select,
)
from sqlalchemy.orm import relationship

from ..database import Base
from ..errors import ImmutableRecordError
from .ssot import (
    AnomalyCause, AnomalySeverity, DeclarationType, InsuranceLevel, ServiceType,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS FOR PERSISTED WORKFLOW STATE
# =============================================================================

class PassStatus(str, Enum):
    """Outcome of a reconciliation pass."""
    COMPLETED = "COMPLETED"
    SKIPPED_LOCKED = "SKIPPED_LOCKED"


class ClaimStatus(str, Enum):
    FILED = "FILED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    CLOSED = "CLOSED"


OPEN_CLAIM_STATUSES = (ClaimStatus.FILED, ClaimStatus.UNDER_REVIEW)


# =============================================================================
# HOSTS & VEHICLES
# =============================================================================

class HostDB(Base):
    """Host account with the insurance facts that determine the earnings tier."""
    __tablename__ = "hosts"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)

    # Insurance facts - the ONLY input to the earnings tier
    insurance_level = Column(SQLEnum(InsuranceLevel), nullable=False, default=InsuranceLevel.NONE)
    p2p_deductible = Column(Numeric(10, 2), nullable=True)
    commercial_deductible = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vehicles = relationship("VehicleDB", back_populates="host")


class VehicleDB(Base):
    """Rented vehicle. current_mileage is written only by reconciliation."""
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True)  # UUID
    host_id = Column(String(36), ForeignKey("hosts.id"), nullable=False, index=True)

    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    vin = Column(String(17), nullable=True)

    # Host-entered at listing time, unverified. Baseline only when no anchor exists.
    listed_mileage = Column(Integer, nullable=True)

    current_mileage = Column(Integer, nullable=True)
    current_mileage_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    host = relationship("HostDB", back_populates="vehicles")
    trips = relationship("TripDB", back_populates="vehicle", order_by="TripDB.start_date")
    service_records = relationship("ServiceRecordDB", back_populates="vehicle")
    declarations = relationship("DeclarationDB", back_populates="vehicle", order_by="DeclarationDB.effective_at")


class ServiceRecordDB(Base):
    """
    Attested maintenance or inspection event - a trust anchor.

    Immutable once created.
    """
    __tablename__ = "service_records"

    id = Column(String(36), primary_key=True)  # UUID
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)

    service_date = Column(Date, nullable=False, index=True)
    mileage_at_service = Column(Integer, nullable=False)
    service_type = Column(SQLEnum(ServiceType), nullable=False)

    next_service_due_date = Column(Date, nullable=True)
    next_service_due_mileage = Column(Integer, nullable=True)
    performed_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    vehicle = relationship("VehicleDB", back_populates="service_records")


class TripDB(Base):
    """
    Single rental occurrence (the booking).

    Raw recorded readings are preserved for audit. Reconciliation writes the
    corrected_* columns and never touches the recorded_* ones.
    """
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True)  # Trip / booking ID
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)

    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False)

    # Raw readings - may be absent, may be wrong, never overwritten
    recorded_start_mileage = Column(Integer, nullable=True)
    recorded_end_mileage = Column(Integer, nullable=True)

    # Booking insurance facts, read at claim time
    guest_insurance_verified = Column(Boolean, default=False)
    guest_insurance_provider = Column(String(255), nullable=True)
    guest_insurance_deductible = Column(Numeric(10, 2), nullable=True)
    deposit_held = Column(Numeric(10, 2), default=0)

    # Reconciliation output
    corrected_start_mileage = Column(Integer, nullable=True)
    corrected_end_mileage = Column(Integer, nullable=True)
    is_estimated = Column(Boolean, nullable=True)
    had_backward_anomaly = Column(Boolean, nullable=True)
    idle_gap_miles = Column(Integer, nullable=True)
    gap_measured = Column(Boolean, nullable=True)
    last_reconciliation_pass_id = Column(String(36), nullable=True)
    reconciled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    vehicle = relationship("VehicleDB", back_populates="trips")


class DeclarationDB(Base):
    """
    Append-only declaration history. The current declaration is the latest row.
    Effective immediately, never retroactive.
    """
    __tablename__ = "declarations"

    id = Column(String(36), primary_key=True)  # UUID
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    declaration_type = Column(SQLEnum(DeclarationType), nullable=False)
    effective_at = Column(DateTime, nullable=False, default=utcnow)
    changed_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    vehicle = relationship("VehicleDB", back_populates="declarations")


# =============================================================================
# AUDIT TRAIL
# =============================================================================
# Append-only. A re-run that disagrees creates a new row; nothing is rewritten.
# =============================================================================

class ReconciliationPassDB(Base):
    """
    One full reconciliation pass: anchor used, constants in effect, result.

    Append-only. Immutable after insert.
    """
    __tablename__ = "reconciliation_passes"

    id = Column(String(36), primary_key=True)  # UUID
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    status = Column(SQLEnum(PassStatus), nullable=False)

    range_start = Column(Date, nullable=False)

    # Anchor
    had_anchor = Column(Boolean, nullable=False)
    anchor_service_record_id = Column(String(36), nullable=True)
    anchor_date = Column(Date, nullable=True)
    anchor_mileage = Column(Integer, nullable=True)
    baseline_mileage = Column(Integer, nullable=False)

    # Constants in effect
    idle_rate_mpd = Column(Float, nullable=False)
    trip_rate_mpd = Column(Float, nullable=False)
    tolerance_miles = Column(Integer, nullable=False)
    max_plausible_trip_mpd = Column(Float, nullable=False)
    declaration_in_force = Column(SQLEnum(DeclarationType), nullable=False)

    # Result
    trips_processed = Column(Integer, default=0)
    final_mileage = Column(Integer, nullable=False)
    anomalies_recorded = Column(Integer, default=0)
    trip_results = Column(JSON, nullable=True)  # [{trip_id, corrected_start, corrected_end, ...}]

    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class MileageAnomalyDB(Base):
    """
    Immutable mileage anomaly.

    Severity is computed under the declaration in force at evaluation time
    and the thresholds used are frozen on the row. Only the resolution
    columns may ever change.
    """
    __tablename__ = "mileage_anomalies"

    id = Column(String(36), primary_key=True)  # UUID
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    host_id = Column(String(36), ForeignKey("hosts.id"), nullable=True, index=True)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=True, index=True)
    reconciliation_pass_id = Column(String(36), ForeignKey("reconciliation_passes.id"), nullable=True)

    detected_at = Column(DateTime, nullable=False, index=True)
    last_known_mileage = Column(Integer, nullable=False)
    current_mileage = Column(Integer, nullable=False)
    gap_miles = Column(Integer, nullable=False)
    severity = Column(SQLEnum(AnomalySeverity), nullable=False, index=True)
    cause = Column(SQLEnum(AnomalyCause), nullable=False)
    explanation = Column(Text, nullable=False)

    # Policy in force at evaluation time
    declaration_in_force = Column(SQLEnum(DeclarationType), nullable=False)
    max_normal_gap_miles = Column(Integer, nullable=False)
    critical_gap_miles = Column(Integer, nullable=False)

    # SHA-256 of the finding content - identical re-runs are not duplicated
    fingerprint = Column(String(64), nullable=False, index=True)

    # Resolution (the only mutable columns)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(100), nullable=True)
    resolution_note = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)


ANOMALY_RESOLUTION_COLUMNS = frozenset({"resolved", "resolved_at", "resolved_by", "resolution_note"})
RAW_READING_COLUMNS = frozenset({"recorded_start_mileage", "recorded_end_mileage"})


# =============================================================================
# CLAIMS & PAYOUTS
# =============================================================================

class ClaimDB(Base):
    """Claim filed against a booking, with the coverage stack built at filing."""
    __tablename__ = "claims"

    id = Column(String(36), primary_key=True)  # UUID
    booking_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False, index=True)
    host_id = Column(String(36), ForeignKey("hosts.id"), nullable=False, index=True)

    status = Column(SQLEnum(ClaimStatus), nullable=False, default=ClaimStatus.FILED)
    estimated_cost = Column(Numeric(12, 2), nullable=False)
    approved_amount = Column(Numeric(12, 2), nullable=True)

    # Snapshot at filing
    insurance_level = Column(SQLEnum(InsuranceLevel), nullable=False)
    earnings_tier_percentage = Column(Numeric(4, 2), nullable=False)
    declaration_at_filing = Column(SQLEnum(DeclarationType), nullable=True)
    coverage_layers = Column(JSON, nullable=False)

    # Financial breakdown (projected until approved)
    deductible = Column(Numeric(10, 2), nullable=False)
    deposit_held = Column(Numeric(10, 2), nullable=False, default=0)
    host_payout = Column(Numeric(12, 2), nullable=True)
    platform_fee = Column(Numeric(12, 2), nullable=True)
    guest_responsibility = Column(Numeric(12, 2), nullable=True)

    # Compliance review - affects the claim decision, never the split
    requires_review = Column(Boolean, default=False)
    compliance_flags = Column(JSON, nullable=True)

    filed_at = Column(DateTime, nullable=False, default=utcnow)
    decided_at = Column(DateTime, nullable=True)

    payouts = relationship("PayoutRecordDB", back_populates="claim")


class PayoutRecordDB(Base):
    """
    Historical payout. The earnings tier is stored on the record and never re-derived.

    Append-only. Immutable after insert.
    """
    __tablename__ = "payout_records"

    id = Column(String(36), primary_key=True)  # UUID
    claim_id = Column(String(36), ForeignKey("claims.id"), nullable=False, index=True)
    host_id = Column(String(36), ForeignKey("hosts.id"), nullable=False, index=True)

    approved_amount = Column(Numeric(12, 2), nullable=False)
    insurance_level = Column(SQLEnum(InsuranceLevel), nullable=False)
    earnings_tier_percentage = Column(Numeric(4, 2), nullable=False)
    host_payout = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)

    recorded_at = Column(DateTime, nullable=False, default=utcnow)

    claim = relationship("ClaimDB", back_populates="payouts")


# =============================================================================
# ADVISORY LOCKS
# =============================================================================

class ReconciliationLockDB(Base):
    """Per-vehicle advisory lock. The primary key makes acquisition insert-or-fail."""
    __tablename__ = "reconciliation_locks"

    vehicle_id = Column(String(36), primary_key=True)
    holder = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)


# =============================================================================
# IMMUTABILITY GUARDS
# =============================================================================

def _changed_columns(target):
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def _stored_row(connection, target):
    """Row as currently persisted; attribute history is empty once a session expires it."""
    table = type(target).__table__
    return connection.execute(select(table).where(table.c.id == target.id)).mappings().first()


def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} is append-only and cannot be deleted")


def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} is immutable after insert")


for _model in (ReconciliationPassDB, PayoutRecordDB, ServiceRecordDB):
    event.listen(_model, "before_update", _refuse_update)
    event.listen(_model, "before_delete", _refuse_delete)

event.listen(MileageAnomalyDB, "before_delete", _refuse_delete)
event.listen(DeclarationDB, "before_update", _refuse_update)
event.listen(DeclarationDB, "before_delete", _refuse_delete)


@event.listens_for(MileageAnomalyDB, "before_update")
def _guard_anomaly_update(mapper, connection, target):
    forbidden = _changed_columns(target) - ANOMALY_RESOLUTION_COLUMNS
    if forbidden:
        raise ImmutableRecordError(
            f"MileageAnomaly {target.id}: {sorted(forbidden)} cannot be rewritten; record a new anomaly instead"
        )
    stored = _stored_row(connection, target)
    if stored is not None and stored["resolved"] and not target.resolved:
        raise ImmutableRecordError(f"MileageAnomaly {target.id} is already resolved")


@event.listens_for(TripDB, "before_update")
def _guard_raw_readings(mapper, connection, target):
    changed = _changed_columns(target) & RAW_READING_COLUMNS
    if not changed:
        return
    stored = _stored_row(connection, target)
    for key in sorted(changed):
        previous = stored[key] if stored is not None else None
        if previous is not None and getattr(target, key) != previous:
            raise ImmutableRecordError(
                f"Trip {target.id}: raw {key} ({previous}) is preserved for audit and cannot be overwritten"
            )
