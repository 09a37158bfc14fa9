"""
Anomaly Classifier

Labels each reconstructed transition against the declaration in force at
evaluation time and against absolute plausibility bounds.

Severity bands (declared-usage gaps):
    gap <= max_normal            NORMAL     (no finding)
    gap <= critical              WARNING
    gap <= 2 x critical          CRITICAL
    gap >  2 x critical          VIOLATION

Data-integrity problems are independent of the declaration:
    backward start reading       at least CRITICAL
    end reading below start      CRITICAL
    implausible recorded miles   VIOLATION

Classification never touches earnings tiers or payouts.
"""
from __future__ import annotations
import logging
from typing import List

from ...config import EngineConfig
from ...models.ssot import (
    AnomalyCause, AnomalyFinding, AnomalySeverity, DeclarationPolicy,
    ReconstructedTrip, TimelineResult,
)

logger = logging.getLogger(__name__)


def classify_gap(gap_miles: int, policy: DeclarationPolicy) -> AnomalySeverity:
    """Band a gap against a declaration policy."""
    if gap_miles <= policy.max_normal_gap_miles:
        return AnomalySeverity.NORMAL
    if gap_miles <= policy.critical_gap_miles:
        return AnomalySeverity.WARNING
    if gap_miles <= policy.violation_gap_miles:
        return AnomalySeverity.CRITICAL
    return AnomalySeverity.VIOLATION


class AnomalyClassifier:
    """Turns a TimelineResult into non-NORMAL findings."""

    def __init__(self, config: EngineConfig):
        self.config = config

    def classify(self, timeline: TimelineResult, policy: DeclarationPolicy) -> List[AnomalyFinding]:
        findings: List[AnomalyFinding] = []
        for trip in timeline.trips:
            findings.extend(self.classify_trip(trip, policy))

        logger.info(
            f"Classified {len(timeline.trips)} trips under {policy.declaration.value}: "
            f"{len(findings)} findings"
        )
        return findings

    def classify_trip(self, trip: ReconstructedTrip, policy: DeclarationPolicy) -> List[AnomalyFinding]:
        findings = []

        if trip.had_backward_anomaly:
            findings.append(self._backward_start(trip, policy))

        if trip.had_reversed_reading:
            findings.append(self._reversed_reading(trip))

        if trip.trip_miles_recorded:
            implausible = self._implausible_distance(trip)
            if implausible:
                findings.append(implausible)

        if trip.gap_measured:
            gap = self._idle_gap(trip, policy)
            if gap:
                findings.append(gap)

        return findings

    # =========================================================================
    # DATA-INTEGRITY FINDINGS
    # =========================================================================

    def _backward_start(self, trip: ReconstructedTrip, policy: DeclarationPolicy) -> AnomalyFinding:
        shortfall = trip.expected_start_mileage - trip.recorded_start_mileage
        severity = AnomalySeverity.worst(AnomalySeverity.CRITICAL, classify_gap(shortfall, policy))

        if trip.recorded_start_mileage < trip.previous_mileage:
            detail = (
                f"which is below the last known mileage of {trip.previous_mileage:,} mi. "
                f"Odometer readings cannot move backward"
            )
        else:
            detail = (
                f"which is more than {self.config.tolerance_miles:,} mi below the expected "
                f"{trip.expected_start_mileage:,} mi after {trip.idle_days} idle day(s)"
            )

        return AnomalyFinding(
            trip_id=trip.trip_id,
            severity=severity,
            cause=AnomalyCause.BACKWARD_MOVEMENT,
            last_known_mileage=trip.expected_start_mileage,
            current_mileage=trip.recorded_start_mileage,
            gap_miles=shortfall,
            explanation=(
                f"Backward mileage: trip {trip.trip_id} recorded a start of "
                f"{trip.recorded_start_mileage:,} mi, {detail}. "
                f"Corrected start set to {trip.corrected_start_mileage:,} mi."
            ),
        )

    def _reversed_reading(self, trip: ReconstructedTrip) -> AnomalyFinding:
        return AnomalyFinding(
            trip_id=trip.trip_id,
            severity=AnomalySeverity.CRITICAL,
            cause=AnomalyCause.REVERSED_TRIP_READING,
            last_known_mileage=trip.recorded_start_mileage,
            current_mileage=trip.recorded_end_mileage,
            gap_miles=trip.recorded_start_mileage - trip.recorded_end_mileage,
            explanation=(
                f"Backward mileage within trip {trip.trip_id}: end reading "
                f"{trip.recorded_end_mileage:,} mi is below start reading "
                f"{trip.recorded_start_mileage:,} mi. Trip distance estimated as "
                f"{trip.trip_miles:,} mi over {trip.trip_days} day(s)."
            ),
        )

    def _implausible_distance(self, trip: ReconstructedTrip):
        limit = int(trip.trip_days * self.config.max_plausible_trip_mpd)
        if trip.trip_miles <= limit:
            return None

        return AnomalyFinding(
            trip_id=trip.trip_id,
            severity=AnomalySeverity.VIOLATION,
            cause=AnomalyCause.IMPLAUSIBLE_DISTANCE,
            last_known_mileage=trip.corrected_start_mileage,
            current_mileage=trip.corrected_end_mileage,
            gap_miles=trip.trip_miles,
            explanation=(
                f"Implausible distance: trip {trip.trip_id} recorded {trip.trip_miles:,} mi "
                f"over {trip.trip_days} day(s), above the physical limit of {limit:,} mi "
                f"({self.config.max_plausible_trip_mpd:,.0f} mi/day)."
            ),
        )

    # =========================================================================
    # DECLARED-USAGE FINDINGS
    # =========================================================================

    def _idle_gap(self, trip: ReconstructedTrip, policy: DeclarationPolicy):
        gap = max(0, trip.idle_gap_miles)
        severity = classify_gap(gap, policy)
        if severity == AnomalySeverity.NORMAL:
            return None

        threshold_text = (
            f"{policy.label or policy.declaration.value} allows {policy.max_normal_gap_miles:,} mi "
            f"(critical above {policy.critical_gap_miles:,} mi)"
        )

        if trip.previous_end_estimated:
            cause = AnomalyCause.MISSING_DATA
            explanation = (
                f"Gap against estimated mileage: {gap:,} mi between the estimated end of the "
                f"previous event ({trip.previous_mileage:,} mi) and the recorded start of trip "
                f"{trip.trip_id} ({trip.corrected_start_mileage:,} mi) over {trip.idle_days} day(s). "
                f"Missing odometer data on the previous event; {threshold_text}."
            )
        else:
            cause = AnomalyCause.EXCESSIVE_GAP
            explanation = (
                f"Excessive gap for declared usage: {gap:,} mi driven between "
                f"{trip.previous_mileage:,} mi and the start of trip {trip.trip_id} "
                f"({trip.corrected_start_mileage:,} mi) over {trip.idle_days} day(s); {threshold_text}."
            )

        return AnomalyFinding(
            trip_id=trip.trip_id,
            severity=severity,
            cause=cause,
            last_known_mileage=trip.previous_mileage,
            current_mileage=trip.corrected_start_mileage,
            gap_miles=gap,
            explanation=explanation,
        )
