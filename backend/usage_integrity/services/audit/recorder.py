"""
Audit Recorder

Append-only store for mileage anomalies and reconciliation passes.

Core Principles:
1. The recorder records what the engine concluded. It never decides.
2. Append-only - anomalies are never deleted and their severity, gap and
   endpoints are never rewritten.
3. A re-run that agrees with an existing anomaly adds nothing; a re-run that
   disagrees adds a NEW row next to the old one.
4. The only mutation is marking an anomaly resolved after human review.
"""
import hashlib
import json
from datetime import date, datetime, time
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...config import EngineConfig
from ...errors import ImmutableRecordError, NotFoundError
from ...models.db_models import (
    MileageAnomalyDB, PassStatus, ReconciliationPassDB, utcnow,
)
from ...models.ssot import (
    AnomalyFinding, AnomalySeverity, DeclarationPolicy, TimelineResult,
)


class AuditRecorder:
    """
    Core service for the append-only audit trail.

    Provides emit methods for:
    - Reconciliation passes
    - Mileage anomalies

    And read/resolve methods for admin tooling.
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # FINGERPRINTING
    # =========================================================================

    @staticmethod
    def fingerprint(vehicle_id: str, finding: AnomalyFinding, policy: DeclarationPolicy) -> str:
        """SHA-256 over the canonical content of a finding."""
        payload = {
            "vehicle_id": vehicle_id,
            "trip_id": finding.trip_id,
            "cause": finding.cause.value,
            "severity": finding.severity.value,
            "last_known_mileage": finding.last_known_mileage,
            "current_mileage": finding.current_mileage,
            "gap_miles": finding.gap_miles,
            "declaration": policy.declaration.value,
            "max_normal_gap_miles": policy.max_normal_gap_miles,
            "critical_gap_miles": policy.critical_gap_miles,
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    # =========================================================================
    # EMIT: ANOMALIES
    # =========================================================================

    def match_findings(
        self,
        vehicle_id: str,
        findings: List[AnomalyFinding],
        policy: DeclarationPolicy,
        host_id: Optional[str] = None,
        reconciliation_pass_id: Optional[str] = None,
        detected_at: Optional[datetime] = None,
    ) -> List[Tuple[MileageAnomalyDB, bool]]:
        """
        Pair each finding with its audit row without writing anything.

        Returns (row, is_new) per finding - the existing row when a previous
        pass reached the same conclusion, otherwise a new unsaved row.
        """
        detected_at = detected_at or utcnow()
        fingerprints = [self.fingerprint(vehicle_id, f, policy) for f in findings]

        existing: Dict[str, MileageAnomalyDB] = {}
        if fingerprints:
            rows = self.db.query(MileageAnomalyDB).filter(
                MileageAnomalyDB.vehicle_id == vehicle_id,
                MileageAnomalyDB.fingerprint.in_(fingerprints),
            ).order_by(MileageAnomalyDB.detected_at).all()
            for row in rows:
                existing.setdefault(row.fingerprint, row)

        matched = []
        for finding, fp in zip(findings, fingerprints):
            row = existing.get(fp)
            if row is not None:
                matched.append((row, False))
                continue

            row = MileageAnomalyDB(
                id=str(uuid4()),
                vehicle_id=vehicle_id,
                host_id=host_id,
                trip_id=finding.trip_id,
                reconciliation_pass_id=reconciliation_pass_id,
                detected_at=detected_at,
                last_known_mileage=finding.last_known_mileage,
                current_mileage=finding.current_mileage,
                gap_miles=finding.gap_miles,
                severity=finding.severity,
                cause=finding.cause,
                explanation=finding.explanation,
                declaration_in_force=policy.declaration,
                max_normal_gap_miles=policy.max_normal_gap_miles,
                critical_gap_miles=policy.critical_gap_miles,
                fingerprint=fp,
                resolved=False,
            )
            existing[fp] = row
            matched.append((row, True))

        return matched

    def persist_new(self, matched: List[Tuple[MileageAnomalyDB, bool]]) -> List[MileageAnomalyDB]:
        """Insert the new rows from match_findings()."""
        new_rows = [row for row, is_new in matched if is_new]
        for row in new_rows:
            self.db.add(row)
        self.db.flush()  # Get IDs without committing
        return new_rows

    def record_findings(
        self,
        vehicle_id: str,
        findings: List[AnomalyFinding],
        policy: DeclarationPolicy,
        host_id: Optional[str] = None,
        reconciliation_pass_id: Optional[str] = None,
        detected_at: Optional[datetime] = None,
    ) -> List[Tuple[MileageAnomalyDB, bool]]:
        """Match and persist in one step. Identical findings are not duplicated."""
        matched = self.match_findings(
            vehicle_id, findings, policy,
            host_id=host_id,
            reconciliation_pass_id=reconciliation_pass_id,
            detected_at=detected_at,
        )
        self.persist_new(matched)
        return matched

    # =========================================================================
    # EMIT: RECONCILIATION PASSES
    # =========================================================================

    def record_pass(
        self,
        pass_id: str,
        vehicle_id: str,
        range_start: date,
        timeline: TimelineResult,
        policy: DeclarationPolicy,
        config: EngineConfig,
        trip_results: List[dict],
        anomalies_recorded: int,
        started_at: datetime,
        completed_at: Optional[datetime] = None,
    ) -> ReconciliationPassDB:
        """Persist a completed reconciliation pass with the anchor and constants used."""
        anchor = timeline.anchor
        constants = config.constants_snapshot()

        record = ReconciliationPassDB(
            id=pass_id,
            vehicle_id=vehicle_id,
            status=PassStatus.COMPLETED,
            range_start=range_start,
            had_anchor=anchor.exists,
            anchor_service_record_id=anchor.service_record_id,
            anchor_date=anchor.anchor_date,
            anchor_mileage=anchor.mileage,
            baseline_mileage=timeline.baseline_mileage,
            idle_rate_mpd=constants["idle_rate_mpd"],
            trip_rate_mpd=constants["trip_rate_mpd"],
            tolerance_miles=constants["tolerance_miles"],
            max_plausible_trip_mpd=constants["max_plausible_trip_mpd"],
            declaration_in_force=policy.declaration,
            trips_processed=len(timeline.trips),
            final_mileage=timeline.final_mileage,
            anomalies_recorded=anomalies_recorded,
            trip_results=trip_results,
            started_at=started_at,
            completed_at=completed_at or utcnow(),
        )
        self.db.add(record)
        self.db.flush()
        return record

    # =========================================================================
    # RESOLUTION (the only mutation)
    # =========================================================================

    def resolve_anomaly(
        self,
        anomaly_id: str,
        resolved_by: str,
        note: Optional[str] = None,
    ) -> MileageAnomalyDB:
        """Mark an anomaly reviewed. Severity and gap are left untouched."""
        anomaly = self.db.query(MileageAnomalyDB).filter(MileageAnomalyDB.id == anomaly_id).first()
        if anomaly is None:
            raise NotFoundError(f"Anomaly {anomaly_id} not found")
        if anomaly.resolved:
            raise ImmutableRecordError(f"Anomaly {anomaly_id} was already resolved at {anomaly.resolved_at}")

        anomaly.resolved = True
        anomaly.resolved_at = utcnow()
        anomaly.resolved_by = resolved_by
        anomaly.resolution_note = note
        self.db.flush()
        return anomaly

    # =========================================================================
    # READ INTERFACE
    # =========================================================================

    def list_anomalies(
        self,
        vehicle_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        severity: Optional[AnomalySeverity] = None,
        min_severity: Optional[AnomalySeverity] = None,
        resolved: Optional[bool] = None,
        host_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[MileageAnomalyDB]:
        """List anomalies by vehicle / host / detection date range / severity."""
        query = self.db.query(MileageAnomalyDB)

        if vehicle_id:
            query = query.filter(MileageAnomalyDB.vehicle_id == vehicle_id)
        if host_id:
            query = query.filter(MileageAnomalyDB.host_id == host_id)
        if start_date:
            query = query.filter(MileageAnomalyDB.detected_at >= datetime.combine(start_date, time.min))
        if end_date:
            query = query.filter(MileageAnomalyDB.detected_at <= datetime.combine(end_date, time.max))
        if severity:
            query = query.filter(MileageAnomalyDB.severity == severity)
        if min_severity:
            allowed = [s for s in AnomalySeverity if s.rank >= min_severity.rank]
            query = query.filter(MileageAnomalyDB.severity.in_(allowed))
        if resolved is not None:
            query = query.filter(MileageAnomalyDB.resolved == resolved)

        return (
            query.order_by(MileageAnomalyDB.detected_at.desc(), MileageAnomalyDB.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def current_anomalies(
        self,
        vehicle_id: Optional[str] = None,
        trip_ids: Optional[List[str]] = None,
    ) -> List[MileageAnomalyDB]:
        """
        Unresolved anomalies that still stand, oldest first.

        Only the newest row per (trip, cause) stands. A re-run under a different
        declaration adds a row next to the old one and supersedes it; a re-run
        that finds nothing leaves the recorded row standing. A superseded row
        never counts, resolved or not.
        """
        query = self.db.query(MileageAnomalyDB)
        if vehicle_id:
            query = query.filter(MileageAnomalyDB.vehicle_id == vehicle_id)
        if trip_ids is not None:
            if not trip_ids:
                return []
            query = query.filter(MileageAnomalyDB.trip_id.in_(trip_ids))

        rows = query.order_by(MileageAnomalyDB.detected_at.desc(), MileageAnomalyDB.created_at.desc()).all()
        latest: Dict[Tuple[str, str], MileageAnomalyDB] = {}
        for row in rows:
            latest.setdefault((row.trip_id, row.cause.value), row)

        standing = [row for row in latest.values() if not row.resolved]
        return sorted(standing, key=lambda row: row.detected_at)

    def list_passes(self, vehicle_id: str, limit: int = 20) -> List[ReconciliationPassDB]:
        return (
            self.db.query(ReconciliationPassDB)
            .filter(ReconciliationPassDB.vehicle_id == vehicle_id)
            .order_by(ReconciliationPassDB.completed_at.desc())
            .limit(limit)
            .all()
        )

    def latest_pass(self, vehicle_id: str) -> Optional[ReconciliationPassDB]:
        passes = self.list_passes(vehicle_id, limit=1)
        return passes[0] if passes else None

    @staticmethod
    def anomaly_to_dict(anomaly: MileageAnomalyDB) -> dict:
        return {
            "id": anomaly.id,
            "vehicle_id": anomaly.vehicle_id,
            "host_id": anomaly.host_id,
            "trip_id": anomaly.trip_id,
            "reconciliation_pass_id": anomaly.reconciliation_pass_id,
            "detected_at": anomaly.detected_at.isoformat(),
            "last_known_mileage": anomaly.last_known_mileage,
            "current_mileage": anomaly.current_mileage,
            "gap_miles": anomaly.gap_miles,
            "severity": anomaly.severity.value,
            "cause": anomaly.cause.value,
            "explanation": anomaly.explanation,
            "declaration_in_force": anomaly.declaration_in_force.value,
            "resolved": anomaly.resolved,
            "resolved_at": anomaly.resolved_at.isoformat() if anomaly.resolved_at else None,
            "resolved_by": anomaly.resolved_by,
            "resolution_note": anomaly.resolution_note,
        }
