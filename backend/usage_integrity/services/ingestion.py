"""
Data Ingestion

Write path used by the booking and fleet subsystems: hosts, vehicles, trips
and service records land here and nowhere else.

Raw odometer readings are write-once. A trip's recorded start or end can be
filled in when it was missing, and re-sending the same value is a no-op.
A different value for an existing reading raises ImmutableRecordError; the
Timeline Reconstructor decides what to believe, ingestion never does.
"""
import logging
from datetime import date
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import ImmutableRecordError, NotFoundError
from ..models.db_models import HostDB, ServiceRecordDB, TripDB, VehicleDB
from ..models.ssot import InsuranceLevel, ServiceType

logger = logging.getLogger(__name__)


class IngestionService:
    """Creates and updates the raw facts the engine reconciles."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # HOSTS & VEHICLES
    # =========================================================================

    def upsert_host(
        self,
        host_id: str,
        name: str,
        insurance_level: InsuranceLevel = InsuranceLevel.NONE,
        p2p_deductible=None,
        commercial_deductible=None,
        email: Optional[str] = None,
    ) -> HostDB:
        host = self.db.query(HostDB).filter(HostDB.id == host_id).first()
        if host is None:
            host = HostDB(id=host_id)
            self.db.add(host)

        host.name = name
        host.email = email
        host.insurance_level = InsuranceLevel(insurance_level)
        host.p2p_deductible = p2p_deductible
        host.commercial_deductible = commercial_deductible
        self.db.flush()
        return host

    def upsert_vehicle(
        self,
        vehicle_id: str,
        host_id: str,
        make: Optional[str] = None,
        model: Optional[str] = None,
        year: Optional[int] = None,
        vin: Optional[str] = None,
        listed_mileage: Optional[int] = None,
    ) -> VehicleDB:
        if self.db.query(HostDB).filter(HostDB.id == host_id).first() is None:
            raise NotFoundError(f"Host {host_id} not found")

        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first()
        if vehicle is None:
            vehicle = VehicleDB(id=vehicle_id)
            self.db.add(vehicle)

        vehicle.host_id = host_id
        vehicle.make = make
        vehicle.model = model
        vehicle.year = year
        vehicle.vin = vin
        vehicle.listed_mileage = listed_mileage
        self.db.flush()
        return vehicle

    def _vehicle(self, vehicle_id: str) -> VehicleDB:
        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first()
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")
        return vehicle

    # =========================================================================
    # TRIPS
    # =========================================================================

    def ingest_trip(
        self,
        vehicle_id: str,
        trip_id: str,
        start_date: date,
        end_date: date,
        recorded_start_mileage: Optional[int] = None,
        recorded_end_mileage: Optional[int] = None,
        guest_insurance_verified: Optional[bool] = None,
        guest_insurance_provider: Optional[str] = None,
        guest_insurance_deductible=None,
        deposit_held=None,
    ) -> TripDB:
        """
        Create a trip or update the mutable parts of an existing one.

        Raises:
            NotFoundError: unknown vehicle
            ValueError: end date before start date, or a trip moved between vehicles
            ImmutableRecordError: a different raw reading for one already stored
        """
        self._vehicle(vehicle_id)
        if end_date < start_date:
            raise ValueError(f"Trip {trip_id}: end date {end_date} is before start date {start_date}")

        trip = self.db.query(TripDB).filter(TripDB.id == trip_id).first()
        if trip is None:
            trip = TripDB(id=trip_id, vehicle_id=vehicle_id)
            self.db.add(trip)
        elif trip.vehicle_id != vehicle_id:
            raise ValueError(f"Trip {trip_id} belongs to vehicle {trip.vehicle_id}")

        trip.start_date = start_date
        trip.end_date = end_date
        self._set_reading(trip, "recorded_start_mileage", recorded_start_mileage)
        self._set_reading(trip, "recorded_end_mileage", recorded_end_mileage)

        # Booking facts are only written when supplied; a completion message carries none
        if guest_insurance_verified is not None:
            trip.guest_insurance_verified = guest_insurance_verified
        if guest_insurance_provider is not None:
            trip.guest_insurance_provider = guest_insurance_provider
        if guest_insurance_deductible is not None:
            trip.guest_insurance_deductible = guest_insurance_deductible
        if deposit_held is not None:
            trip.deposit_held = deposit_held

        self.db.flush()
        logger.info(
            f"Trip {trip_id} ingested for vehicle {vehicle_id} "
            f"({start_date} - {end_date}, start={trip.recorded_start_mileage}, end={trip.recorded_end_mileage})"
        )
        return trip

    @staticmethod
    def _set_reading(trip: TripDB, key: str, value: Optional[int]) -> None:
        if value is None:
            return
        current = getattr(trip, key)
        if current is None:
            setattr(trip, key, value)
        elif current != value:
            raise ImmutableRecordError(
                f"Trip {trip.id}: {key} is already recorded as {current}; refusing to overwrite with {value}"
            )

    # =========================================================================
    # SERVICE RECORDS
    # =========================================================================

    def ingest_service_record(
        self,
        vehicle_id: str,
        service_date: date,
        mileage_at_service: int,
        service_type: ServiceType = ServiceType.OTHER,
        next_service_due_date: Optional[date] = None,
        next_service_due_mileage: Optional[int] = None,
        performed_by: Optional[str] = None,
    ) -> ServiceRecordDB:
        """Append an attested mileage fact. Service records are never edited."""
        self._vehicle(vehicle_id)
        if mileage_at_service < 0:
            raise ValueError(f"mileage_at_service must be >= 0, got {mileage_at_service}")

        record = ServiceRecordDB(
            id=str(uuid4()),
            vehicle_id=vehicle_id,
            service_date=service_date,
            mileage_at_service=mileage_at_service,
            service_type=ServiceType(service_type),
            next_service_due_date=next_service_due_date,
            next_service_due_mileage=next_service_due_mileage,
            performed_by=performed_by,
        )
        self.db.add(record)
        self.db.flush()

        logger.info(
            f"Service record {record.id} ({record.service_type.value}) for vehicle {vehicle_id}: "
            f"{mileage_at_service:,} mi on {service_date}"
        )
        return record
