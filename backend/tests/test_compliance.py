"""
Tests for the Compliance Advisor and declaration history.

Test Coverage:
1. Forensics over the trailing window (average / max / unauthorized miles)
2. Score penalties per unresolved anomaly; resolved anomalies stop counting
3. Declaration recommendations in both directions
4. Service metrics and overdue detection
5. Declaration history is append-only and effective immediately
"""
from datetime import date

import pytest

from usage_integrity.errors import NotFoundError
from usage_integrity.models.db_models import DeclarationDB, MileageAnomalyDB
from usage_integrity.models.ssot import DeclarationType
from usage_integrity.services.audit import AuditRecorder
from usage_integrity.services.compliance import ComplianceAdvisor, DeclarationService
from usage_integrity.services.reconciliation import ReconciliationService


@pytest.fixture
def advisor(db, config):
    return ComplianceAdvisor(db, config)


@pytest.fixture
def reconciled(db, config, fleet, add_trip):
    """
    Anchor 10,000 on 2024-01-01, then two back-to-back trips with
    measured gaps of 30 and 20 miles (both WARNING under Rental Only).
    """
    def _build(declaration=None, readings=((10_030, 10_130), (10_150, 10_250))):
        fleet("veh-1", anchor=(date(2024, 1, 1), 10_000))
        if declaration is not None:
            DeclarationService(db).change_declaration("veh-1", declaration)
            db.commit()
        (s1, e1), (s2, e2) = readings
        add_trip("veh-1", "trip-1", date(2024, 1, 1), date(2024, 1, 2), s1, e1)
        add_trip("veh-1", "trip-2", date(2024, 1, 2), date(2024, 1, 3), s2, e2)
        ReconciliationService(db, config).reconcile_vehicle("veh-1", as_of=date(2024, 1, 31))

    return _build


# =============================================================================
# TEST: FORENSICS & SCORE
# =============================================================================

class TestComplianceAdvice:

    def test_rental_only_with_large_gaps(self, advisor, reconciled):
        reconciled()

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.declaration == DeclarationType.RENTAL_ONLY
        assert advice.window_start == date(2023, 12, 31)
        assert advice.average_gap == 25.0
        assert advice.forensics.total_gaps == 2
        assert advice.forensics.max_gap == 30
        assert advice.forensics.unauthorized_mileage == 20
        assert advice.anomaly_counts["WARNING"] == 2
        assert advice.compliance_score == 90
        assert advice.recommended_declaration == DeclarationType.RENTAL_PLUS_PERSONAL
        assert "25" in advice.recommendation

    def test_resolved_anomalies_do_not_count(self, db, advisor, reconciled):
        reconciled()
        recorder = AuditRecorder(db)
        for row in db.query(MileageAnomalyDB).all():
            recorder.resolve_anomaly(row.id, "ops@fleet")
        db.commit()

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.compliance_score == 100
        assert advice.anomaly_counts["WARNING"] == 0

    def test_trips_outside_window_are_ignored(self, advisor, reconciled):
        reconciled()

        advice = advisor.advise("veh-1", as_of=date(2024, 8, 1))

        assert advice.forensics.total_gaps == 0
        assert advice.average_gap == 0.0
        assert advice.compliance_score == 100
        assert advice.recommended_declaration is None

    def test_unknown_vehicle(self, advisor):
        with pytest.raises(NotFoundError):
            advisor.advise("missing")

    def test_to_dict(self, advisor, reconciled):
        reconciled()
        data = ComplianceAdvisor.to_dict(advisor.advise("veh-1", as_of=date(2024, 3, 31)))
        assert data["declaration"] == "RENTAL_ONLY"
        assert data["recommended_declaration"] == "RENTAL_PLUS_PERSONAL"
        assert data["service"]["last_service_date"] == "2024-01-01"


# =============================================================================
# TEST: RECOMMENDATIONS
# =============================================================================

class TestRecommendations:

    def test_personal_use_with_small_gaps_suggests_rental_only(self, advisor, reconciled):
        reconciled(
            declaration=DeclarationType.RENTAL_PLUS_PERSONAL,
            readings=((10_005, 10_105), (10_110, 10_210)),
        )

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.average_gap == 5.0
        assert advice.compliance_score == 100
        assert advice.recommended_declaration == DeclarationType.RENTAL_ONLY

    def test_business_with_heavy_gaps_suggests_personal(self, advisor, reconciled):
        reconciled(
            declaration=DeclarationType.BUSINESS,
            readings=((10_400, 10_500), (10_900, 11_000)),
        )

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.average_gap == 400.0
        assert advice.recommended_declaration == DeclarationType.RENTAL_PLUS_PERSONAL

    def test_business_within_pattern_gets_no_advice(self, advisor, reconciled):
        reconciled(
            declaration=DeclarationType.BUSINESS,
            readings=((10_100, 10_200), (10_300, 10_400)),
        )

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.recommended_declaration is None
        assert advice.compliance_score == 100

    @pytest.mark.parametrize("declaration", [DeclarationType.RENTAL_PLUS_PERSONAL, DeclarationType.BUSINESS])
    def test_no_measured_gaps_gets_no_advice(self, db, advisor, fleet, declaration):
        fleet("veh-1", anchor=(date(2024, 1, 1), 10_000))
        DeclarationService(db).change_declaration("veh-1", declaration)
        db.commit()

        advice = advisor.advise("veh-1", as_of=date(2024, 3, 31))

        assert advice.forensics.total_gaps == 0
        assert advice.recommended_declaration is None
        assert advice.recommendation is None


# =============================================================================
# TEST: SERVICE METRICS
# =============================================================================

class TestServiceMetrics:

    def test_recent_service_is_not_overdue(self, advisor, reconciled):
        reconciled()

        service = advisor.advise("veh-1", as_of=date(2024, 3, 31)).service

        assert service.service_count == 1
        assert service.last_service_date == date(2024, 1, 1)
        assert service.days_since_last_service == 90
        assert service.next_service_due_date == date(2024, 6, 29)
        assert service.is_overdue is False

    def test_service_overdue_after_interval(self, advisor, reconciled):
        reconciled()
        assert advisor.advise("veh-1", as_of=date(2024, 8, 1)).service.is_overdue is True

    def test_no_service_history(self, advisor, fleet):
        fleet("veh-1")
        service = advisor.advise("veh-1", as_of=date(2024, 3, 31)).service
        assert service.service_count == 0
        assert service.is_overdue is False


# =============================================================================
# TEST: DECLARATION HISTORY
# =============================================================================

class TestDeclarationService:

    def test_default_is_rental_only(self, db, fleet):
        fleet("veh-1")
        assert DeclarationService(db).current_declaration("veh-1") == DeclarationType.RENTAL_ONLY

    def test_changes_append_history(self, db, fleet):
        fleet("veh-1")
        service = DeclarationService(db)

        service.change_declaration("veh-1", DeclarationType.BUSINESS, changed_by="host")
        db.commit()
        service.change_declaration("veh-1", DeclarationType.RENTAL_PLUS_PERSONAL, changed_by="host")
        db.commit()

        assert service.current_declaration("veh-1") == DeclarationType.RENTAL_PLUS_PERSONAL
        assert [d.declaration_type for d in service.history("veh-1")] == [
            DeclarationType.BUSINESS, DeclarationType.RENTAL_PLUS_PERSONAL,
        ]
        assert db.query(DeclarationDB).count() == 2

    def test_unknown_vehicle(self, db):
        with pytest.raises(NotFoundError):
            DeclarationService(db).change_declaration("missing", DeclarationType.BUSINESS)
