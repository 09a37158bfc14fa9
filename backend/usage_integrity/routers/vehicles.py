"""
Vehicle API Routes

Write path for trips, service records and declarations, plus the
reconciliation and compliance reads for one vehicle.
"""
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import EngineConfig, get_config
from ..database import get_db
from ..errors import IntegrityEngineError
from ..models.ssot import DeclarationType, ServiceType
from ..services.compliance import ComplianceAdvisor, DeclarationService
from ..services.ingestion import IngestionService
from ..services.reconciliation import ReconciliationService
from .errors import to_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class TripIngestRequest(BaseModel):
    """Trip facts from the booking subsystem."""
    trip_id: str = Field(..., description="Booking ID")
    start_date: date
    end_date: date
    recorded_start_mileage: Optional[int] = Field(None, ge=0, description="Odometer at handoff")
    recorded_end_mileage: Optional[int] = Field(None, ge=0, description="Odometer at return")
    guest_insurance_verified: Optional[bool] = None
    guest_insurance_provider: Optional[str] = None
    guest_insurance_deductible: Optional[Decimal] = Field(None, ge=0)
    deposit_held: Optional[Decimal] = Field(None, ge=0)
    reconcile: bool = Field(default=False, description="Run a reconciliation pass after ingesting (trip closed)")


class ServiceRecordRequest(BaseModel):
    """Attested mileage event."""
    service_date: date
    mileage_at_service: int = Field(..., ge=0)
    service_type: ServiceType = ServiceType.OTHER
    next_service_due_date: Optional[date] = None
    next_service_due_mileage: Optional[int] = Field(None, ge=0)
    performed_by: Optional[str] = None


class DeclarationChangeRequest(BaseModel):
    declaration_type: DeclarationType
    changed_by: Optional[str] = None


# =============================================================================
# INGESTION
# =============================================================================

@router.post("/{vehicle_id}/trips", response_model=dict)
async def ingest_trip(
    vehicle_id: str,
    request: TripIngestRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """
    Create or update a trip.

    Raw odometer readings are write-once; re-sending a different value is a 409.
    """
    try:
        trip = IngestionService(db).ingest_trip(
            vehicle_id=vehicle_id,
            trip_id=request.trip_id,
            start_date=request.start_date,
            end_date=request.end_date,
            recorded_start_mileage=request.recorded_start_mileage,
            recorded_end_mileage=request.recorded_end_mileage,
            guest_insurance_verified=request.guest_insurance_verified,
            guest_insurance_provider=request.guest_insurance_provider,
            guest_insurance_deductible=request.guest_insurance_deductible,
            deposit_held=request.deposit_held,
        )
        db.commit()
    except (IntegrityEngineError, ValueError) as e:
        db.rollback()
        raise to_http_error(e)

    result = {
        "trip_id": trip.id,
        "vehicle_id": vehicle_id,
        "recorded_start_mileage": trip.recorded_start_mileage,
        "recorded_end_mileage": trip.recorded_end_mileage,
        "reconciliation": None,
    }

    if request.reconcile:
        try:
            outcome = ReconciliationService(db, config).reconcile_vehicle(vehicle_id)
        except IntegrityEngineError as e:
            raise to_http_error(e)
        result["reconciliation"] = outcome.to_dict()

    return result


@router.post("/{vehicle_id}/service-records", response_model=dict)
async def ingest_service_record(
    vehicle_id: str,
    request: ServiceRecordRequest,
    db: Session = Depends(get_db),
):
    """Append a service record. It becomes an anchor for later passes."""
    try:
        record = IngestionService(db).ingest_service_record(
            vehicle_id=vehicle_id,
            service_date=request.service_date,
            mileage_at_service=request.mileage_at_service,
            service_type=request.service_type,
            next_service_due_date=request.next_service_due_date,
            next_service_due_mileage=request.next_service_due_mileage,
            performed_by=request.performed_by,
        )
        db.commit()
    except (IntegrityEngineError, ValueError) as e:
        db.rollback()
        raise to_http_error(e)

    return {
        "service_record_id": record.id,
        "vehicle_id": vehicle_id,
        "service_date": record.service_date.isoformat(),
        "mileage_at_service": record.mileage_at_service,
        "service_type": record.service_type.value,
    }


# =============================================================================
# DECLARATIONS
# =============================================================================

@router.post("/{vehicle_id}/declaration", response_model=dict)
async def change_declaration(
    vehicle_id: str,
    request: DeclarationChangeRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """
    Change the declared usage category, effective immediately.

    Returns 423 while the vehicle has an open claim.
    """
    try:
        record = DeclarationService(db).change_declaration(
            vehicle_id, request.declaration_type, changed_by=request.changed_by
        )
        db.commit()
    except IntegrityEngineError as e:
        db.rollback()
        raise to_http_error(e)

    policy = config.policy_for(record.declaration_type)
    return {
        "vehicle_id": vehicle_id,
        "declaration_type": record.declaration_type.value,
        "effective_at": record.effective_at.isoformat(),
        "max_normal_gap_miles": policy.max_normal_gap_miles,
        "critical_gap_miles": policy.critical_gap_miles,
        "claim_impact": policy.claim_impact,
    }


@router.get("/{vehicle_id}/declaration", response_model=dict)
async def get_declaration(
    vehicle_id: str,
    db: Session = Depends(get_db),
):
    """Current declaration and full change history."""
    service = DeclarationService(db)
    return {
        "vehicle_id": vehicle_id,
        "current": service.current_declaration(vehicle_id).value,
        "history": [
            {
                "declaration_type": d.declaration_type.value,
                "effective_at": d.effective_at.isoformat(),
                "changed_by": d.changed_by,
            }
            for d in service.history(vehicle_id)
        ],
    }


# =============================================================================
# RECONCILIATION & COMPLIANCE
# =============================================================================

@router.post("/{vehicle_id}/reconcile", response_model=dict)
async def reconcile_vehicle(
    vehicle_id: str,
    range_start: Optional[date] = Query(None, description="Anchor search date (default: latest anchor)"),
    as_of: Optional[date] = Query(None, description="Ignore trips starting after this date"),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """
    Run an on-demand reconciliation pass.

    status is SKIPPED_LOCKED when another pass holds the vehicle lock.
    """
    try:
        outcome = ReconciliationService(db, config).reconcile_vehicle(
            vehicle_id, range_start=range_start, as_of=as_of
        )
    except IntegrityEngineError as e:
        raise to_http_error(e)
    return outcome.to_dict()


@router.get("/{vehicle_id}/reconciliation", response_model=dict)
async def get_reconciliation(
    vehicle_id: str,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """Corrected values per trip with anomaly ids, plus the vehicle's current mileage."""
    try:
        return ReconciliationService(db, config).latest_output(vehicle_id)
    except IntegrityEngineError as e:
        raise to_http_error(e)


@router.get("/{vehicle_id}/compliance", response_model=dict)
async def get_compliance(
    vehicle_id: str,
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """Advisory compliance summary. Never changes the declaration."""
    try:
        advice = ComplianceAdvisor(db, config).advise(vehicle_id, as_of=as_of)
    except IntegrityEngineError as e:
        raise to_http_error(e)
    return ComplianceAdvisor.to_dict(advice)
