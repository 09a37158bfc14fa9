"""
Compliance Advisor

Summarizes a vehicle's recent mileage behavior against its declaration and
produces host-facing guidance.

AUTHORITY: ADVISORY
The advisor never changes a declaration. It reads reconciled trips and the
anomaly trail and returns a ComplianceAdvice; the host decides what to do
with it.
"""
import logging
from datetime import date
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...config import EngineConfig
from ...errors import NotFoundError
from ...models.db_models import ServiceRecordDB, TripDB, VehicleDB
from ...models.ssot import (
    AnomalySeverity, ComplianceAdvice, DeclarationPolicy, DeclarationType,
    ForensicSummary, ServiceMetrics,
)
from ..audit import AuditRecorder
from .declaration_service import DeclarationService

logger = logging.getLogger(__name__)


# Points removed from a perfect score per unresolved anomaly
SEVERITY_PENALTIES = {
    AnomalySeverity.WARNING: 5,
    AnomalySeverity.CRITICAL: 15,
    AnomalySeverity.VIOLATION: 30,
}


class ComplianceAdvisor:
    """
    Builds ComplianceAdvice for one vehicle over a trailing window.

    Usage:
        advisor = ComplianceAdvisor(db, config)
        advice = advisor.advise(vehicle_id)
    """

    def __init__(self, db: Session, config: EngineConfig):
        self.db = db
        self.config = config
        self.declarations = DeclarationService(db)

    def advise(self, vehicle_id: str, as_of: Optional[date] = None) -> ComplianceAdvice:
        vehicle = self.db.query(VehicleDB).filter(VehicleDB.id == vehicle_id).first()
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

        window_end = as_of or date.today()
        window_start = window_end - relativedelta(months=self.config.compliance_window_months)

        declaration = self.declarations.current_declaration(vehicle_id)
        policy = self.config.policy_for(declaration)

        trips = (
            self.db.query(TripDB)
            .filter(
                TripDB.vehicle_id == vehicle_id,
                TripDB.start_date >= window_start,
                TripDB.start_date <= window_end,
            )
            .all()
        )
        gaps = [t.idle_gap_miles for t in trips if t.gap_measured and t.idle_gap_miles is not None]
        forensics = self._forensics(gaps, policy)

        anomalies = AuditRecorder(self.db).current_anomalies(trip_ids=[t.id for t in trips])
        counts = {s.value: 0 for s in SEVERITY_PENALTIES}
        for a in anomalies:
            counts[a.severity.value] = counts.get(a.severity.value, 0) + 1
        score = max(0, 100 - sum(SEVERITY_PENALTIES.get(a.severity, 0) for a in anomalies))

        recommended, message = self._recommend(declaration, forensics)

        advice = ComplianceAdvice(
            vehicle_id=vehicle_id,
            declaration=declaration,
            window_start=window_start,
            window_end=window_end,
            average_gap=forensics.average_gap,
            compliance_score=score,
            anomaly_counts=counts,
            forensics=forensics,
            service=self._service_metrics(vehicle_id, window_end),
            recommended_declaration=recommended,
            recommendation=message,
        )

        logger.info(
            f"Compliance for vehicle {vehicle_id}: score {score}, "
            f"average gap {forensics.average_gap} mi over {forensics.total_gaps} gaps"
        )
        return advice

    # =========================================================================
    # COMPONENTS
    # =========================================================================

    @staticmethod
    def _forensics(gaps: List[int], policy: DeclarationPolicy) -> ForensicSummary:
        if not gaps:
            return ForensicSummary()
        return ForensicSummary(
            total_gaps=len(gaps),
            average_gap=round(sum(gaps) / len(gaps), 1),
            max_gap=max(gaps),
            unauthorized_mileage=sum(max(0, g - policy.max_normal_gap_miles) for g in gaps),
        )

    def _service_metrics(self, vehicle_id: str, as_of: date) -> ServiceMetrics:
        records = (
            self.db.query(ServiceRecordDB)
            .filter(ServiceRecordDB.vehicle_id == vehicle_id, ServiceRecordDB.service_date <= as_of)
            .order_by(ServiceRecordDB.service_date.desc())
            .all()
        )
        if not records:
            return ServiceMetrics()

        last = records[0]
        next_due = last.next_service_due_date or last.service_date + relativedelta(
            days=self.config.service_interval_days
        )
        return ServiceMetrics(
            service_count=len(records),
            last_service_date=last.service_date,
            days_since_last_service=(as_of - last.service_date).days,
            next_service_due_date=next_due,
            is_overdue=as_of > next_due,
        )

    def _recommend(
        self,
        declaration: DeclarationType,
        forensics: ForensicSummary,
    ) -> Tuple[Optional[DeclarationType], Optional[str]]:
        # No measured gaps, nothing to advise on
        if forensics.total_gaps == 0:
            return None, None

        average_gap = forensics.average_gap
        rental_only = self.config.policy_for(DeclarationType.RENTAL_ONLY)
        business = self.config.policy_for(DeclarationType.BUSINESS)

        if declaration == DeclarationType.RENTAL_ONLY and average_gap > rental_only.max_normal_gap_miles:
            return DeclarationType.RENTAL_PLUS_PERSONAL, (
                f"Your average gap between trips is {average_gap:g} mi, above the "
                f"{rental_only.max_normal_gap_miles} mi expected for Rental Only. "
                f"Consider switching to Rental + Personal so claims are not put at risk."
            )

        if declaration == DeclarationType.BUSINESS and average_gap > business.max_normal_gap_miles:
            return DeclarationType.RENTAL_PLUS_PERSONAL, (
                f"Your average gap between trips is {average_gap:g} mi, above the "
                f"{business.max_normal_gap_miles} mi expected for Business use. "
                f"Rental + Personal better matches this pattern."
            )

        if (
            declaration in (DeclarationType.RENTAL_PLUS_PERSONAL, DeclarationType.BUSINESS)
            and average_gap <= rental_only.max_normal_gap_miles
        ):
            return DeclarationType.RENTAL_ONLY, (
                f"Your average gap between trips is only {average_gap:g} mi. "
                f"You may qualify for Rental Only, which carries cheaper insurance."
            )

        return None, None

    @staticmethod
    def to_dict(advice: ComplianceAdvice) -> dict:
        svc = advice.service
        return {
            "vehicle_id": advice.vehicle_id,
            "declaration": advice.declaration.value,
            "window_start": advice.window_start.isoformat(),
            "window_end": advice.window_end.isoformat(),
            "average_gap": advice.average_gap,
            "compliance_score": advice.compliance_score,
            "anomaly_counts": advice.anomaly_counts,
            "forensics": {
                "total_gaps": advice.forensics.total_gaps,
                "average_gap": advice.forensics.average_gap,
                "max_gap": advice.forensics.max_gap,
                "unauthorized_mileage": advice.forensics.unauthorized_mileage,
            },
            "service": {
                "service_count": svc.service_count,
                "last_service_date": svc.last_service_date.isoformat() if svc.last_service_date else None,
                "days_since_last_service": svc.days_since_last_service,
                "next_service_due_date": svc.next_service_due_date.isoformat() if svc.next_service_due_date else None,
                "is_overdue": svc.is_overdue,
            },
            "recommended_declaration": advice.recommended_declaration.value if advice.recommended_declaration else None,
            "recommendation": advice.recommendation,
        }
