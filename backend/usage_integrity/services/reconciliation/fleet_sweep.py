"""
Fleet Reconciliation Sweep

Scheduled job that reconciles every vehicle in the fleet.

Vehicles are independent of each other, so passes run in parallel, each in
its own session. Per-vehicle ordering is still guaranteed by the advisory
lock: a vehicle already being reconciled (e.g. on trip close) is skipped and
picked up by the next sweep.

A failure on one vehicle is logged and counted; it never aborts the sweep.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ...config import EngineConfig
from ...models.db_models import PassStatus, VehicleDB
from .reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class FleetSweep:
    """
    Reconciles all vehicles in parallel.

    Usage:
        sweep = FleetSweep(SessionLocal, config)
        result = sweep.run()
    """

    def __init__(self, session_factory: Callable[[], Session], config: EngineConfig):
        self.session_factory = session_factory
        self.config = config

    def vehicle_ids(self) -> List[str]:
        db = self.session_factory()
        try:
            return [row.id for row in db.query(VehicleDB.id).order_by(VehicleDB.id).all()]
        finally:
            db.close()

    def _reconcile_one(self, vehicle_id: str, as_of: Optional[date]) -> PassStatus:
        db = self.session_factory()
        try:
            outcome = ReconciliationService(db, self.config).reconcile_vehicle(vehicle_id, as_of=as_of)
            return outcome.status
        finally:
            db.close()

    def run(
        self,
        max_workers: int = 4,
        vehicle_ids: Optional[List[str]] = None,
        as_of: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Run one sweep.

        Args:
            max_workers: Parallel passes
            vehicle_ids: Restrict the sweep (default: every vehicle)
            as_of: Reconciliation date (default: today)

        Returns:
            Summary with completed / skipped / failed counts
        """
        started_at = datetime.now(timezone.utc)
        ids = vehicle_ids if vehicle_ids is not None else self.vehicle_ids()

        results = {
            "started_at": started_at.isoformat(),
            "vehicles": len(ids),
            "completed": 0,
            "skipped": 0,
            "failed": 0,
            "errors": {},
        }

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = {pool.submit(self._reconcile_one, vid, as_of): vid for vid in ids}
            for future in as_completed(futures):
                vid = futures[future]
                try:
                    status = future.result()
                except Exception as e:
                    results["failed"] += 1
                    results["errors"][vid] = str(e)
                    logger.error(f"Reconciliation failed for vehicle {vid}: {e}")
                    continue

                if status == PassStatus.SKIPPED_LOCKED:
                    results["skipped"] += 1
                else:
                    results["completed"] += 1

        completed_at = datetime.now(timezone.utc)
        results["completed_at"] = completed_at.isoformat()
        results["duration_seconds"] = (completed_at - started_at).total_seconds()

        logger.info(
            f"Fleet sweep complete: {results['completed']} reconciled, "
            f"{results['skipped']} skipped, {results['failed']} failed"
        )
        return results
