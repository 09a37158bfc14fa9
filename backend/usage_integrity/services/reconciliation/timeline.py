"""
Timeline Reconstructor

Walks a vehicle's trips in chronological order from an anchor and produces
corrected start/end mileage for each trip.

Core rule: the corrected sequence is non-decreasing across the whole
timeline. Recorded readings are trusted when they are physically possible;
otherwise the rate-based estimate is substituted and the trip is flagged.

Pure computation - no database access, no clock. Same input, same output.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from ...config import EngineConfig
from ...models.ssot import Anchor, ReconstructedTrip, TimelineResult, TripSnapshot


def round_miles(value) -> int:
    """Round half-up to the nearest whole mile."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days


def reconstruct_timeline(
    anchor: Anchor,
    trips: Iterable[TripSnapshot],
    config: EngineConfig,
    fallback_mileage: Optional[int] = None,
) -> TimelineResult:
    """
    Reconstruct corrected mileage for trips occurring after the anchor.

    Args:
        anchor: Resolved anchor, possibly Anchor.none()
        trips: Trips ordered (or orderable) by start_date
        config: Rate constants and tolerance
        fallback_mileage: Unverified baseline used only when there is no anchor

    Returns:
        TimelineResult with one ReconstructedTrip per input trip
    """
    ordered: List[TripSnapshot] = sorted(trips, key=lambda t: (t.start_date, t.end_date, t.trip_id))

    if anchor.exists:
        current_mileage = anchor.mileage
        last_event_date = anchor.anchor_date
    else:
        current_mileage = fallback_mileage or 0
        last_event_date = ordered[0].start_date if ordered else None

    baseline_mileage = current_mileage
    baseline_date = last_event_date
    previous_end_estimated = not anchor.exists

    results: List[ReconstructedTrip] = []

    for trip in ordered:
        # a. Host usage between the last event and this trip
        idle_days = max(0, days_between(last_event_date, trip.start_date))
        host_usage_estimate = round_miles(idle_days * config.idle_rate_mpd)

        # b. Expected start
        expected_start = current_mileage + host_usage_estimate

        # c. Prefer the recorded start unless it is physically impossible
        recorded_start = trip.recorded_start_mileage
        start_accepted = (
            recorded_start is not None
            and recorded_start >= expected_start - config.tolerance_miles
            and recorded_start >= current_mileage
        )
        if start_accepted:
            corrected_start = recorded_start
            had_backward_anomaly = False
        else:
            corrected_start = expected_start
            had_backward_anomaly = recorded_start is not None and recorded_start < expected_start

        # d. Rental length, minimum one day
        trip_days = max(1, days_between(trip.start_date, trip.end_date))

        # e. Trip distance
        recorded_end = trip.recorded_end_mileage
        had_reversed_reading = (
            recorded_start is not None and recorded_end is not None and recorded_end < recorded_start
        )
        if recorded_start is not None and recorded_end is not None and not had_reversed_reading:
            trip_miles = recorded_end - recorded_start
            trip_miles_recorded = True
        else:
            trip_miles = round_miles(trip_days * config.trip_rate_mpd)
            trip_miles_recorded = False

        # f. Corrected end
        corrected_end = corrected_start + trip_miles

        is_estimated = (not anchor.exists) or (not start_accepted) or (not trip_miles_recorded)

        results.append(ReconstructedTrip(
            trip_id=trip.trip_id,
            corrected_start_mileage=corrected_start,
            corrected_end_mileage=corrected_end,
            is_estimated=is_estimated,
            had_backward_anomaly=had_backward_anomaly,
            previous_mileage=current_mileage,
            expected_start_mileage=expected_start,
            idle_days=idle_days,
            idle_gap_miles=corrected_start - current_mileage,
            # Without an anchor the first gap runs from an unverified baseline
            gap_measured=start_accepted and (anchor.exists or bool(results)),
            previous_end_estimated=previous_end_estimated,
            trip_days=trip_days,
            trip_miles=trip_miles,
            trip_miles_recorded=trip_miles_recorded,
            had_reversed_reading=had_reversed_reading,
            recorded_start_mileage=recorded_start,
            recorded_end_mileage=recorded_end,
        ))

        # g. Advance
        current_mileage = corrected_end
        last_event_date = trip.end_date
        previous_end_estimated = is_estimated

    return TimelineResult(
        anchor=anchor,
        baseline_date=baseline_date,
        baseline_mileage=baseline_mileage,
        trips=results,
        final_mileage=current_mileage,
    )
