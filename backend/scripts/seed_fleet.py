#!/usr/bin/env python3
"""
Fleet Seed Script
Registers a host and vehicle with an attested baseline mileage, so the
first reconciliation pass has an anchor.

Usage:
    python -m scripts.seed_fleet <host_id> <vehicle_id> <mileage> [insurance_level] [service_date]

Example:
    python -m scripts.seed_fleet host-42 veh-1001 48250 p2p 2024-06-01
"""
import sys
import os
from datetime import date

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from usage_integrity.database import SessionLocal, engine, Base
from usage_integrity.errors import IntegrityEngineError
from usage_integrity.models import db_models  # noqa: F401
from usage_integrity.models.ssot import InsuranceLevel, ServiceType
from usage_integrity.services.ingestion import IngestionService


def seed_vehicle(
    db: Session,
    host_id: str,
    vehicle_id: str,
    mileage: int,
    insurance_level: InsuranceLevel = InsuranceLevel.NONE,
    service_date: date = None,
):
    """Create (or update) the host and vehicle and record the baseline as an attestation."""
    ingestion = IngestionService(db)
    ingestion.upsert_host(host_id, name=host_id, insurance_level=insurance_level)
    vehicle = ingestion.upsert_vehicle(vehicle_id, host_id, listed_mileage=mileage)
    record = ingestion.ingest_service_record(
        vehicle_id,
        service_date or date.today(),
        mileage,
        service_type=ServiceType.MANUAL_ATTESTATION,
        performed_by="seed_fleet",
    )
    db.commit()
    return vehicle, record


def main():
    if len(sys.argv) not in (4, 5, 6):
        print(__doc__)
        sys.exit(1)

    host_id, vehicle_id = sys.argv[1], sys.argv[2]

    # Basic validation
    try:
        mileage = int(sys.argv[3])
        insurance_level = InsuranceLevel(sys.argv[4]) if len(sys.argv) > 4 else InsuranceLevel.NONE
        service_date = date.fromisoformat(sys.argv[5]) if len(sys.argv) > 5 else None
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Ensure tables exist
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        _, record = seed_vehicle(db, host_id, vehicle_id, mileage, insurance_level, service_date)
        print("Vehicle seeded successfully!")
        print(f"  Host: {host_id} ({insurance_level.value})")
        print(f"  Vehicle: {vehicle_id}")
        print(f"  Anchor: {mileage:,} mi on {record.service_date}")
    except (IntegrityEngineError, ValueError) as e:
        db.rollback()
        print(f"Error seeding vehicle: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
