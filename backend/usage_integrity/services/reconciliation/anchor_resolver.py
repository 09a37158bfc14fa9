"""
Anchor Resolver

Finds the most recent attested mileage fact (service record, inspection or
manual attestation) at or before the start of a reconciliation range.
Absence of an anchor is a reportable state, not an error.
"""
from datetime import date

from sqlalchemy.orm import Session

from ...models.db_models import ServiceRecordDB
from ...models.ssot import Anchor


class AnchorResolver:
    """Selects the ground-truth baseline for timeline reconstruction."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def resolve(self, vehicle_id: str, range_start: date) -> Anchor:
        """
        Return the latest ServiceRecord with service_date <= range_start.

        Ties on the same day resolve to the highest attested mileage, then
        the latest insert, so the choice is deterministic across re-runs.
        """
        record = (
            self.db.query(ServiceRecordDB)
            .filter(
                ServiceRecordDB.vehicle_id == vehicle_id,
                ServiceRecordDB.service_date <= range_start,
            )
            .order_by(
                ServiceRecordDB.service_date.desc(),
                ServiceRecordDB.mileage_at_service.desc(),
                ServiceRecordDB.created_at.desc(),
            )
            .first()
        )

        if record is None:
            return Anchor.none()

        return Anchor(
            service_record_id=record.id,
            anchor_date=record.service_date,
            mileage=record.mileage_at_service,
            service_type=record.service_type,
        )
