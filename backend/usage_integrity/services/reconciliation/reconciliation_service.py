"""
Reconciliation Service

Runs one reconciliation pass for one vehicle:

    Anchor Resolver -> Timeline Reconstructor -> Anomaly Classifier
        -> Audit Recorder -> corrected trip fields + vehicle mileage

AUTHORITY: SYSTEM
Triggered on demand (a trip closes) or by the fleet sweep. A pass holds the
vehicle's advisory lock for its whole duration and commits before releasing
it. If the lock is held elsewhere the pass is skipped, never queued.

Missing data never fails a pass. Integrity anomalies are recorded and the
pass continues through later trips.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import EngineConfig
from ...errors import NotFoundError
from ...models.db_models import PassStatus, TripDB, VehicleDB, utcnow
from ...models.ssot import Anchor, TripSnapshot
from ..audit.recorder import AuditRecorder
from ..compliance.declaration_service import DeclarationService
from .anchor_resolver import AnchorResolver
from .anomaly_classifier import AnomalyClassifier
from .locks import VehicleLockManager
from .timeline import reconstruct_timeline

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationOutcome:
    """Result handed back to callers and serialized by the API."""
    vehicle_id: str
    status: PassStatus
    pass_id: Optional[str] = None
    current_mileage: Optional[int] = None
    had_anchor: bool = False
    anchor: Optional[Anchor] = None
    trips: List[dict] = field(default_factory=list)
    anomalies_recorded: int = 0

    def to_dict(self) -> dict:
        return {
            "vehicle_id": self.vehicle_id,
            "status": self.status.value,
            "pass_id": self.pass_id,
            "current_mileage": self.current_mileage,
            "had_anchor": self.had_anchor,
            "anchor": {
                "service_record_id": self.anchor.service_record_id,
                "anchor_date": self.anchor.anchor_date.isoformat(),
                "mileage": self.anchor.mileage,
            } if self.anchor and self.anchor.exists else None,
            "trips": self.trips,
            "anomalies_recorded": self.anomalies_recorded,
        }


class ReconciliationService:
    """
    Orchestrates a reconciliation pass.

    Usage:
        service = ReconciliationService(db, config)
        outcome = service.reconcile_vehicle(vehicle_id)
    """

    def __init__(
        self,
        db_session: Session,
        config: EngineConfig,
        lock_manager: Optional[VehicleLockManager] = None,
    ):
        self.db = db_session
        self.config = config
        self.locks = lock_manager or VehicleLockManager(db_session.get_bind(), config.lock_ttl_seconds)
        self.anchors = AnchorResolver(db_session)
        self.classifier = AnomalyClassifier(config)
        self.recorder = AuditRecorder(db_session)
        self.declarations = DeclarationService(db_session)

    def reconcile_vehicle(
        self,
        vehicle_id: str,
        range_start: Optional[date] = None,
        as_of: Optional[date] = None,
    ) -> ReconciliationOutcome:
        """
        Reconcile one vehicle and commit the result.

        Args:
            vehicle_id: Vehicle to reconcile
            range_start: Anchor search date (default: as_of, i.e. latest anchor)
            as_of: Ignore trips starting after this date (default: today)

        Returns:
            ReconciliationOutcome - status SKIPPED_LOCKED if another pass holds the lock
        """
        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first()
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

        with self.locks.hold(vehicle_id) as acquired:
            if not acquired:
                logger.warning(f"Reconciliation for vehicle {vehicle_id} skipped: lock held by another pass")
                return ReconciliationOutcome(vehicle_id=vehicle_id, status=PassStatus.SKIPPED_LOCKED)

            try:
                outcome = self._run_pass(vehicle, range_start, as_of)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Reconciled vehicle {vehicle_id}: {len(outcome.trips)} trips, "
            f"current mileage {outcome.current_mileage}, "
            f"{outcome.anomalies_recorded} new anomalies"
        )
        return outcome

    def _run_pass(
        self,
        vehicle: VehicleDB,
        range_start: Optional[date],
        as_of: Optional[date],
    ) -> ReconciliationOutcome:
        started_at = utcnow()
        as_of = as_of or date.today()
        range_start = range_start or as_of

        # 1. Baseline
        anchor = self.anchors.resolve(vehicle.id, range_start)

        # 2. Trips after the anchor, chronological
        query = self.db.query(TripDB).filter(
            TripDB.vehicle_id == vehicle.id,
            TripDB.start_date <= as_of,
        )
        if anchor.exists:
            query = query.filter(TripDB.start_date >= anchor.anchor_date)
        trips = query.order_by(TripDB.start_date, TripDB.end_date, TripDB.id).all()

        snapshots = [
            TripSnapshot(
                trip_id=t.id,
                start_date=t.start_date,
                end_date=t.end_date,
                recorded_start_mileage=t.recorded_start_mileage,
                recorded_end_mileage=t.recorded_end_mileage,
            )
            for t in trips
        ]

        # 3. Reconstruct
        timeline = reconstruct_timeline(anchor, snapshots, self.config, fallback_mileage=vehicle.listed_mileage)

        # 4. Classify under the declaration in force now
        declaration = self.declarations.current_declaration(vehicle.id)
        policy = self.config.policy_for(declaration)
        findings = self.classifier.classify(timeline, policy)

        # 5. Audit trail: pass first, then its new anomalies
        pass_id = str(uuid4())
        matched = self.recorder.match_findings(
            vehicle.id, findings, policy,
            host_id=vehicle.host_id,
            reconciliation_pass_id=pass_id,
            detected_at=started_at,
        )
        anomaly_ids: Dict[str, List[str]] = {}
        for row, _ in matched:
            anomaly_ids.setdefault(row.trip_id, []).append(row.id)
        new_count = sum(1 for _, is_new in matched if is_new)

        trip_results = [
            {
                "trip_id": r.trip_id,
                "corrected_start_mileage": r.corrected_start_mileage,
                "corrected_end_mileage": r.corrected_end_mileage,
                "is_estimated": r.is_estimated,
                "had_backward_anomaly": r.had_backward_anomaly,
                "idle_gap_miles": r.idle_gap_miles,
                "gap_measured": r.gap_measured,
                "anomaly_ids": anomaly_ids.get(r.trip_id, []),
            }
            for r in timeline.trips
        ]

        self.recorder.record_pass(
            pass_id=pass_id,
            vehicle_id=vehicle.id,
            range_start=range_start,
            timeline=timeline,
            policy=policy,
            config=self.config,
            trip_results=trip_results,
            anomalies_recorded=new_count,
            started_at=started_at,
        )
        self.recorder.persist_new(matched)

        # 6. Write corrected fields; raw recorded_* columns are left alone
        by_id = {t.id: t for t in trips}
        reconciled_at = utcnow()
        for r in timeline.trips:
            trip = by_id[r.trip_id]
            trip.corrected_start_mileage = r.corrected_start_mileage
            trip.corrected_end_mileage = r.corrected_end_mileage
            trip.is_estimated = r.is_estimated
            trip.had_backward_anomaly = r.had_backward_anomaly
            trip.idle_gap_miles = r.idle_gap_miles
            trip.gap_measured = r.gap_measured
            trip.last_reconciliation_pass_id = pass_id
            trip.reconciled_at = reconciled_at

        vehicle.current_mileage = timeline.final_mileage
        vehicle.current_mileage_updated_at = reconciled_at
        self.db.flush()

        return ReconciliationOutcome(
            vehicle_id=vehicle.id,
            status=PassStatus.COMPLETED,
            pass_id=pass_id,
            current_mileage=timeline.final_mileage,
            had_anchor=anchor.exists,
            anchor=anchor,
            trips=trip_results,
            anomalies_recorded=new_count,
        )

    def latest_output(self, vehicle_id: str) -> dict:
        """
        Reconciliation output for dashboards: per-trip corrected values with
        anomaly ids from the latest pass, plus the vehicle's current mileage.
        """
        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first()
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

        latest = self.recorder.latest_pass(vehicle_id)
        return {
            "vehicle_id": vehicle_id,
            "current_mileage": vehicle.current_mileage,
            "pass_id": latest.id if latest else None,
            "reconciled_at": latest.completed_at.isoformat() if latest else None,
            "had_anchor": latest.had_anchor if latest else None,
            "trips": latest.trip_results if latest else [],
        }
