"""
Per-vehicle Advisory Lock

Serializes reconciliation passes for one vehicle across processes.
Acquisition is an INSERT on the vehicle's primary key in its own short
transaction: the insert either wins or fails immediately. Callers never
block; a held lock means "skip and retry later".

Locks carry an expiry so a crashed worker cannot wedge a vehicle forever.
"""
import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import delete, and_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ...models.db_models import ReconciliationLockDB, utcnow

logger = logging.getLogger(__name__)


class VehicleLockManager:
    """Advisory locks stored in reconciliation_locks."""

    def __init__(self, engine: Engine, ttl_seconds: int = 900):
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)

    def try_acquire(self, vehicle_id: str, holder: Optional[str] = None) -> Optional[str]:
        """
        Try to take the lock. Returns the holder token, or None if it is held.
        """
        holder = holder or str(uuid4())
        now = utcnow()
        table = ReconciliationLockDB.__table__

        # Reclaim an expired lock first
        with self.engine.begin() as conn:
            conn.execute(
                delete(table).where(and_(table.c.vehicle_id == vehicle_id, table.c.expires_at < now))
            )

        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert().values(
                    vehicle_id=vehicle_id,
                    holder=holder,
                    acquired_at=now,
                    expires_at=now + self.ttl,
                ))
        except IntegrityError:
            logger.info(f"Reconciliation lock for vehicle {vehicle_id} is held; skipping")
            return None

        return holder

    def release(self, vehicle_id: str, holder: str) -> None:
        table = ReconciliationLockDB.__table__
        with self.engine.begin() as conn:
            conn.execute(
                delete(table).where(and_(table.c.vehicle_id == vehicle_id, table.c.holder == holder))
            )

    @contextmanager
    def hold(self, vehicle_id: str):
        """
        Context manager yielding True when the lock was acquired.

            with locks.hold(vehicle_id) as acquired:
                if not acquired:
                    return skipped
        """
        holder = self.try_acquire(vehicle_id)
        try:
            yield holder is not None
        finally:
            if holder is not None:
                self.release(vehicle_id, holder)
