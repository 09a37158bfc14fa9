"""
Tests for the Reconciliation Service, advisory locks and the fleet sweep.

Test Coverage:
1. Full pass: corrected values written, raw readings preserved, vehicle mileage set
2. Pass record carries anchor and constants; trip results carry anomaly ids
3. Re-running on unchanged data is idempotent and adds no anomalies
4. Lock held -> pass skipped; expired lock reclaimed
5. Declaration change does not reclassify recorded anomalies
6. Parallel fleet sweep with per-vehicle outcomes
"""
from datetime import date, timedelta

import pytest

from usage_integrity.errors import NotFoundError
from usage_integrity.models.db_models import (
    MileageAnomalyDB, PassStatus, ReconciliationLockDB, ReconciliationPassDB, TripDB, VehicleDB, utcnow,
)
from usage_integrity.models.ssot import AnomalyCause, AnomalySeverity, DeclarationType
from usage_integrity.services.compliance import DeclarationService
from usage_integrity.services.reconciliation import (
    FleetSweep, ReconciliationService, VehicleLockManager,
)


AS_OF = date(2024, 2, 1)


@pytest.fixture
def service(db, config):
    return ReconciliationService(db, config)


# =============================================================================
# TEST: RECONCILIATION PASS
# =============================================================================

class TestReconcileVehicle:

    def test_reference_scenario_end_to_end(self, db, service, scenario):
        scenario()

        outcome = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        assert outcome.status == PassStatus.COMPLETED
        assert outcome.current_mileage == 51_100
        assert outcome.had_anchor is True

        trip_a = db.query(TripDB).filter(TripDB.id == "veh-1-trip-a").one()
        assert (trip_a.corrected_start_mileage, trip_a.corrected_end_mileage) == (50_225, 50_525)
        assert trip_a.is_estimated is True

        trip_b = db.query(TripDB).filter(TripDB.id == "veh-1-trip-b").one()
        assert (trip_b.corrected_start_mileage, trip_b.corrected_end_mileage) == (50_900, 51_100)
        assert trip_b.is_estimated is False

        vehicle = db.query(VehicleDB).filter(VehicleDB.id == "veh-1").one()
        assert vehicle.current_mileage == 51_100
        assert vehicle.current_mileage_updated_at is not None

    def test_raw_readings_are_preserved(self, db, service, fleet, add_trip):
        fleet("veh-1", anchor=(date(2024, 10, 14), 68_000))
        add_trip("veh-1", "trip-1", date(2024, 10, 20), date(2024, 10, 22), 67_500, 67_800)

        service.reconcile_vehicle("veh-1", as_of=date(2024, 11, 1))

        trip = db.query(TripDB).filter(TripDB.id == "trip-1").one()
        assert trip.recorded_start_mileage == 67_500
        assert trip.recorded_end_mileage == 67_800
        assert trip.had_backward_anomaly is True
        assert trip.corrected_start_mileage == 68_150

        anomaly = db.query(MileageAnomalyDB).filter(MileageAnomalyDB.trip_id == "trip-1").one()
        assert anomaly.cause == AnomalyCause.BACKWARD_MOVEMENT
        assert anomaly.severity.rank >= AnomalySeverity.CRITICAL.rank

    def test_pass_record_and_anomaly_ids(self, db, service, scenario):
        scenario()

        outcome = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        record = db.query(ReconciliationPassDB).one()
        assert record.id == outcome.pass_id
        assert record.anchor_mileage == 50_000
        assert record.anchor_date == date(2024, 1, 1)
        assert record.idle_rate_mpd == 25.0
        assert record.trip_rate_mpd == 150.0
        assert record.declaration_in_force == DeclarationType.RENTAL_ONLY
        assert record.final_mileage == 51_100
        assert record.anomalies_recorded == 1

        results = {r["trip_id"]: r for r in record.trip_results}
        assert results["veh-1-trip-a"]["anomaly_ids"] == []
        anomaly = db.query(MileageAnomalyDB).one()
        assert results["veh-1-trip-b"]["anomaly_ids"] == [anomaly.id]
        assert anomaly.cause == AnomalyCause.MISSING_DATA
        assert anomaly.reconciliation_pass_id == record.id

    def test_rerun_is_idempotent(self, db, service, scenario):
        scenario()

        first = service.reconcile_vehicle("veh-1", as_of=AS_OF)
        second = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        assert second.anomalies_recorded == 0
        assert [t["corrected_end_mileage"] for t in first.trips] == \
            [t["corrected_end_mileage"] for t in second.trips]
        assert [t["anomaly_ids"] for t in first.trips] == [t["anomaly_ids"] for t in second.trips]
        assert db.query(MileageAnomalyDB).count() == 1
        assert db.query(ReconciliationPassDB).count() == 2

    def test_no_anchor_uses_listed_mileage(self, db, service, fleet, add_trip):
        fleet("veh-1", listed_mileage=30_000)
        add_trip("veh-1", "trip-1", date(2024, 3, 1), date(2024, 3, 3))

        outcome = service.reconcile_vehicle("veh-1", as_of=date(2024, 4, 1))

        assert outcome.had_anchor is False
        assert outcome.current_mileage == 30_300
        assert outcome.trips[0]["is_estimated"] is True

    def test_trips_after_as_of_are_ignored(self, db, service, scenario):
        scenario()
        outcome = service.reconcile_vehicle("veh-1", as_of=date(2024, 1, 15))
        assert [t["trip_id"] for t in outcome.trips] == ["veh-1-trip-a"]
        assert outcome.current_mileage == 50_525

    def test_unknown_vehicle(self, service):
        with pytest.raises(NotFoundError):
            service.reconcile_vehicle("missing", as_of=AS_OF)

    def test_latest_output(self, service, scenario):
        scenario()
        service.reconcile_vehicle("veh-1", as_of=AS_OF)

        output = service.latest_output("veh-1")

        assert output["current_mileage"] == 51_100
        assert len(output["trips"]) == 2
        assert set(output["trips"][0]) >= {
            "corrected_start_mileage", "corrected_end_mileage", "is_estimated", "anomaly_ids",
        }


# =============================================================================
# TEST: DECLARATION CHANGES
# =============================================================================

class TestDeclarationChanges:

    def test_past_anomalies_keep_their_severity(self, db, service, scenario):
        scenario()
        service.reconcile_vehicle("veh-1", as_of=AS_OF)
        original = db.query(MileageAnomalyDB).one()
        assert original.severity == AnomalySeverity.VIOLATION

        DeclarationService(db).change_declaration("veh-1", DeclarationType.RENTAL_PLUS_PERSONAL)
        db.commit()
        outcome = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        # 375 mi is normal for rental + personal: nothing new, nothing rewritten
        assert outcome.anomalies_recorded == 0
        rows = db.query(MileageAnomalyDB).all()
        assert len(rows) == 1
        assert rows[0].severity == AnomalySeverity.VIOLATION
        assert rows[0].declaration_in_force == DeclarationType.RENTAL_ONLY


# =============================================================================
# TEST: ADVISORY LOCKS
# =============================================================================

class TestLocks:

    def test_lock_is_exclusive(self, engine):
        locks = VehicleLockManager(engine)
        holder = locks.try_acquire("veh-1")

        assert holder is not None
        assert locks.try_acquire("veh-1") is None
        assert locks.try_acquire("veh-2") is not None

        locks.release("veh-1", holder)
        assert locks.try_acquire("veh-1") is not None

    def test_held_lock_skips_pass(self, db, engine, service, scenario):
        scenario()
        VehicleLockManager(engine).try_acquire("veh-1", holder="other-worker")

        outcome = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        assert outcome.status == PassStatus.SKIPPED_LOCKED
        assert db.query(ReconciliationPassDB).count() == 0
        trip = db.query(TripDB).filter(TripDB.id == "veh-1-trip-a").one()
        assert trip.corrected_start_mileage is None

    def test_expired_lock_is_reclaimed(self, db, engine, service, scenario):
        scenario()
        now = utcnow()
        db.add(ReconciliationLockDB(
            vehicle_id="veh-1",
            holder="crashed-worker",
            acquired_at=now - timedelta(hours=2),
            expires_at=now - timedelta(hours=1),
        ))
        db.commit()

        outcome = service.reconcile_vehicle("veh-1", as_of=AS_OF)

        assert outcome.status == PassStatus.COMPLETED

    def test_lock_released_after_pass(self, db, engine, service, scenario):
        scenario()
        service.reconcile_vehicle("veh-1", as_of=AS_OF)
        assert db.query(ReconciliationLockDB).count() == 0


# =============================================================================
# TEST: FLEET SWEEP
# =============================================================================

class TestFleetSweep:

    def test_sweep_reconciles_every_vehicle(self, db, session_factory, config, scenario):
        scenario("veh-1")
        scenario("veh-2")
        scenario("veh-3")

        result = FleetSweep(session_factory, config).run(max_workers=2, as_of=AS_OF)

        assert result["vehicles"] == 3
        assert result["completed"] == 3
        assert result["skipped"] == 0
        assert result["failed"] == 0
        for vehicle in db.query(VehicleDB).all():
            db.refresh(vehicle)
            assert vehicle.current_mileage == 51_100

    def test_sweep_skips_locked_vehicle(self, engine, session_factory, config, scenario):
        scenario("veh-1")
        scenario("veh-2")
        VehicleLockManager(engine).try_acquire("veh-2", holder="on-demand-pass")

        result = FleetSweep(session_factory, config).run(max_workers=2, as_of=AS_OF)

        assert result["completed"] == 1
        assert result["skipped"] == 1

    def test_sweep_counts_failures(self, session_factory, config, scenario):
        scenario("veh-1")

        result = FleetSweep(session_factory, config).run(vehicle_ids=["veh-1", "missing"], as_of=AS_OF)

        assert result["completed"] == 1
        assert result["failed"] == 1
        assert "missing" in result["errors"]
