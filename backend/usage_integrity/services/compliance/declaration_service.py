"""
Declaration Service

Hosts change their declared usage category at any time; the change applies
going forward only. History is append-only and past anomalies keep the
severity computed under the policy that was in force when they were
evaluated.

Declaration changes are locked while a claim on the vehicle is open, so a
claim is always judged against the declaration the host held when it was
filed.
"""
import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...errors import DeclarationLockedError, NotFoundError
from ...models.db_models import (
    ClaimDB, DeclarationDB, VehicleDB, OPEN_CLAIM_STATUSES, utcnow,
)
from ...models.ssot import DeclarationType

logger = logging.getLogger(__name__)

# Vehicles listed without an explicit declaration are evaluated under the
# strictest category.
DEFAULT_DECLARATION = DeclarationType.RENTAL_ONLY


class DeclarationService:
    """Reads and appends declaration history for vehicles."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def current_declaration(self, vehicle_id: str) -> DeclarationType:
        return self.declaration_at(vehicle_id, None)

    def declaration_at(self, vehicle_id: str, when: Optional[datetime]) -> DeclarationType:
        """Declaration in force at `when` (now when None)."""
        query = self.db.query(DeclarationDB).filter(DeclarationDB.vehicle_id == vehicle_id)
        if when is not None:
            query = query.filter(DeclarationDB.effective_at <= when)
        latest = query.order_by(DeclarationDB.effective_at.desc(), DeclarationDB.created_at.desc()).first()
        return latest.declaration_type if latest else DEFAULT_DECLARATION

    def history(self, vehicle_id: str) -> List[DeclarationDB]:
        return (
            self.db.query(DeclarationDB)
            .filter(DeclarationDB.vehicle_id == vehicle_id)
            .order_by(DeclarationDB.effective_at)
            .all()
        )

    def open_claims(self, vehicle_id: str) -> List[ClaimDB]:
        return (
            self.db.query(ClaimDB)
            .filter(ClaimDB.vehicle_id == vehicle_id, ClaimDB.status.in_(OPEN_CLAIM_STATUSES))
            .all()
        )

    def change_declaration(
        self,
        vehicle_id: str,
        declaration_type: DeclarationType,
        changed_by: Optional[str] = None,
    ) -> DeclarationDB:
        """
        Append a new declaration, effective immediately.

        Raises:
            NotFoundError: unknown vehicle
            DeclarationLockedError: the vehicle has an open claim
        """
        if self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first() is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

        declaration_type = DeclarationType(declaration_type)

        open_claims = self.open_claims(vehicle_id)
        if open_claims:
            raise DeclarationLockedError(
                f"Vehicle {vehicle_id} has {len(open_claims)} open claim(s); "
                f"declaration changes are locked until they are decided"
            )

        record = DeclarationDB(
            id=str(uuid4()),
            vehicle_id=vehicle_id,
            declaration_type=declaration_type,
            effective_at=utcnow(),
            changed_by=changed_by,
        )
        self.db.add(record)
        self.db.flush()

        logger.info(f"Declaration for vehicle {vehicle_id} set to {declaration_type.value}")
        return record
