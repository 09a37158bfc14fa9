"""
Shared fixtures.

Each test gets its own SQLite file database so that the advisory lock, which
uses its own connections, sees the same data as the session under test.
"""
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from usage_integrity.config import EngineConfig
from usage_integrity.database import Base
from usage_integrity.models import db_models  # noqa: F401
from usage_integrity.models.ssot import InsuranceLevel, ServiceType
from usage_integrity.services.ingestion import IngestionService


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'integrity.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def fleet(db):
    """
    Factory for a committed host + vehicle, optionally with an anchor.

        vehicle = fleet("veh-1", insurance_level=InsuranceLevel.COMMERCIAL,
                        anchor=(date(2024, 1, 1), 50_000))
    """
    ingestion = IngestionService(db)

    def _make(
        vehicle_id="veh-1",
        host_id=None,
        insurance_level=InsuranceLevel.P2P,
        anchor=None,
        listed_mileage=None,
        p2p_deductible=None,
        commercial_deductible=None,
    ):
        host_id = host_id or f"host-{vehicle_id}"
        ingestion.upsert_host(
            host_id,
            name=f"Host {host_id}",
            insurance_level=insurance_level,
            p2p_deductible=p2p_deductible,
            commercial_deductible=commercial_deductible,
        )
        vehicle = ingestion.upsert_vehicle(
            vehicle_id, host_id, make="Toyota", model="Camry", year=2021, listed_mileage=listed_mileage
        )
        if anchor is not None:
            service_date, mileage = anchor
            ingestion.ingest_service_record(
                vehicle_id, service_date, mileage, service_type=ServiceType.OIL_CHANGE
            )
        db.commit()
        return vehicle

    return _make


@pytest.fixture
def add_trip(db):
    """Ingest and commit a trip."""
    ingestion = IngestionService(db)

    def _add(vehicle_id, trip_id, start, end, recorded_start=None, recorded_end=None, **kwargs):
        trip = ingestion.ingest_trip(
            vehicle_id, trip_id, start, end,
            recorded_start_mileage=recorded_start,
            recorded_end_mileage=recorded_end,
            **kwargs,
        )
        db.commit()
        return trip

    return _add


@pytest.fixture
def scenario(fleet, add_trip):
    """
    The reference two-trip scenario:
    anchor 50,000 mi on 2024-01-01, Trip A with no readings, Trip B recorded 50,900 -> 51,100.
    """
    def _build(vehicle_id="veh-1", insurance_level=InsuranceLevel.P2P):
        vehicle = fleet(vehicle_id, insurance_level=insurance_level, anchor=(date(2024, 1, 1), 50_000))
        add_trip(vehicle_id, f"{vehicle_id}-trip-a", date(2024, 1, 10), date(2024, 1, 12))
        add_trip(vehicle_id, f"{vehicle_id}-trip-b", date(2024, 1, 20), date(2024, 1, 21), 50_900, 51_100)
        return vehicle

    return _build
