"""
Claims API Routes

Claim-time query used by the claims workflow: coverage hierarchy, earnings
tier and financial breakdown for a booking.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import EngineConfig, get_config
from ..database import get_db
from ..errors import IntegrityEngineError
from ..models.db_models import ClaimDB
from ..services.claims import ClaimService
from .errors import to_http_error


router = APIRouter(prefix="/claims", tags=["claims"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class FileClaimRequest(BaseModel):
    booking_id: str = Field(..., description="Trip / booking ID")
    claim_estimated_cost: Decimal = Field(..., gt=0)
    approved_amount: Optional[Decimal] = Field(None, ge=0)


class ApproveClaimRequest(BaseModel):
    approved_amount: Optional[Decimal] = Field(None, ge=0, description="Defaults to the amount given at filing")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=dict)
async def file_claim(
    request: FileClaimRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """
    File a claim and return the coverage stack and payout split.

    422 when no coverage layer applies (no guest, host or platform coverage).
    """
    try:
        claim = ClaimService(db, config).file_claim(
            request.booking_id,
            request.claim_estimated_cost,
            approved_amount=request.approved_amount,
        )
        db.commit()
    except IntegrityEngineError as e:
        db.rollback()
        raise to_http_error(e)
    return ClaimService.to_dict(claim)


@router.get("/{claim_id}", response_model=dict)
async def get_claim(
    claim_id: str,
    db: Session = Depends(get_db),
):
    claim = db.query(ClaimDB).filter(ClaimDB.id == claim_id).first()
    if claim is None:
        raise HTTPException(status_code=404, detail=f"Claim {claim_id} not found")
    return ClaimService.to_dict(claim)


@router.post("/{claim_id}/approve", response_model=dict)
async def approve_claim(
    claim_id: str,
    request: ApproveClaimRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    """Approve at the earnings tier stamped at filing and record the payout."""
    try:
        claim = ClaimService(db, config).approve_claim(claim_id, approved_amount=request.approved_amount)
        db.commit()
    except IntegrityEngineError as e:
        db.rollback()
        raise to_http_error(e)
    return ClaimService.to_dict(claim)


@router.post("/{claim_id}/deny", response_model=dict)
async def deny_claim(
    claim_id: str,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_config),
):
    try:
        claim = ClaimService(db, config).deny_claim(claim_id)
        db.commit()
    except IntegrityEngineError as e:
        db.rollback()
        raise to_http_error(e)
    return ClaimService.to_dict(claim)
