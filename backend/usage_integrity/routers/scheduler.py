"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Nightly fleet reconciliation sweep.
"""
import os
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.orm import Session, sessionmaker

from ..config import EngineConfig, get_config
from ..database import get_db
from ..services.reconciliation import FleetSweep


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/reconciliation-sweep", response_model=dict)
async def run_reconciliation_sweep(
    max_workers: int = Query(4, ge=1, le=32),
    as_of: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
    _: bool = Depends(verify_internal_key),
):
    """
    Reconcile every vehicle.

    System-automatic - vehicles run in parallel, each in its own session.
    Vehicles locked by an in-flight pass are skipped until the next sweep.
    """
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())
    result = FleetSweep(session_factory, config).run(max_workers=max_workers, as_of=as_of)

    return {
        "task": "reconciliation_sweep",
        **result,
    }
