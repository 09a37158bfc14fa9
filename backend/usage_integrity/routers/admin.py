"""
Vehicle Usage Integrity Engine - Admin Router

Audit console over the anomaly trail and reconciliation passes.
Admin reviews and resolves; severity, gaps and pass results are never edited.
"""
from datetime import date
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import IntegrityEngineError
from ..models.ssot import AnomalySeverity
from ..services.audit import AuditRecorder
from .errors import to_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ResolveAnomalyRequest(BaseModel):
    """Review outcome for an anomaly."""
    resolved_by: str = Field(..., min_length=1)
    note: Optional[str] = None


# =============================================================================
# ANOMALIES
# =============================================================================

@router.get("/anomalies", response_model=dict)
async def list_anomalies(
    vehicle_id: Optional[str] = Query(None),
    host_id: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None, description="Detected on or after"),
    end_date: Optional[date] = Query(None, description="Detected on or before"),
    severity: Optional[AnomalySeverity] = Query(None),
    min_severity: Optional[AnomalySeverity] = Query(None),
    resolved: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """List anomalies by vehicle / host / date range / severity / review state."""
    anomalies = AuditRecorder(db).list_anomalies(
        vehicle_id=vehicle_id,
        start_date=start_date,
        end_date=end_date,
        severity=severity,
        min_severity=min_severity,
        resolved=resolved,
        host_id=host_id,
        limit=limit,
        offset=offset,
    )
    return {
        "count": len(anomalies),
        "anomalies": [AuditRecorder.anomaly_to_dict(a) for a in anomalies],
    }


@router.post("/anomalies/{anomaly_id}/resolve", response_model=dict)
async def resolve_anomaly(
    anomaly_id: str,
    request: ResolveAnomalyRequest,
    db: Session = Depends(get_db),
):
    """Mark an anomaly reviewed. 409 if it was already resolved."""
    try:
        anomaly = AuditRecorder(db).resolve_anomaly(anomaly_id, request.resolved_by, note=request.note)
        db.commit()
    except IntegrityEngineError as e:
        db.rollback()
        raise to_http_error(e)

    logger.info(f"Anomaly {anomaly_id} resolved by {request.resolved_by}")
    return AuditRecorder.anomaly_to_dict(anomaly)


# =============================================================================
# RECONCILIATION PASSES
# =============================================================================

@router.get("/reconciliation-passes", response_model=dict)
async def list_reconciliation_passes(
    vehicle_id: str = Query(...),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Pass history for a vehicle with the anchor and constants each pass used."""
    passes = AuditRecorder(db).list_passes(vehicle_id, limit=limit)
    return {
        "count": len(passes),
        "passes": [
            {
                "id": p.id,
                "status": p.status.value,
                "range_start": p.range_start.isoformat(),
                "had_anchor": p.had_anchor,
                "anchor_service_record_id": p.anchor_service_record_id,
                "anchor_date": p.anchor_date.isoformat() if p.anchor_date else None,
                "anchor_mileage": p.anchor_mileage,
                "baseline_mileage": p.baseline_mileage,
                "constants": {
                    "idle_rate_mpd": p.idle_rate_mpd,
                    "trip_rate_mpd": p.trip_rate_mpd,
                    "tolerance_miles": p.tolerance_miles,
                    "max_plausible_trip_mpd": p.max_plausible_trip_mpd,
                },
                "declaration_in_force": p.declaration_in_force.value,
                "trips_processed": p.trips_processed,
                "final_mileage": p.final_mileage,
                "anomalies_recorded": p.anomalies_recorded,
                "started_at": p.started_at.isoformat(),
                "completed_at": p.completed_at.isoformat(),
            }
            for p in passes
        ],
    }
