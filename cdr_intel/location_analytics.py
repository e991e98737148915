"""
Location analytics over the sites recorded in a CDR batch.

- site aggregates: per-location volume, contacts, peak hour/day and
  voice/SMS mix
- location-change timeline: every move of a subscriber with the
  communication observed during the stay that followed
- mobility: subscribers ranked by how often their calls change site
"""

import logging
import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, List

from cdr_intel import config
from cdr_intel.models import (
    CallType, CDRRecord, CommunicationMix, DetailedRecord, LocationActivity,
    LocationAnalysisResult, LocationChangeResult, LocationMovementResult, MovementChange,
    PeakActivity,
)
from cdr_intel.utils import format_duration, iso

logger = logging.getLogger(__name__)

DAY_NAMES = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']
SAMPLE_NUMBERS = 5
UNKNOWN_NUMBER = 'Unknown'


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def mobility_level(total_changes: int) -> str:
    if total_changes > 15:
        return 'high'
    if total_changes > 8:
        return 'medium'
    return 'low'


def get_time_based_activity(timestamps: List[datetime]) -> Dict:
    """Peak hour and weekday of a set of timestamps.

    The activity score is the busiest hour's count plus the busiest day's
    count; ties go to the earliest hour / day (Sunday first).
    """
    hourly = [0] * 24
    daily = [0] * 7
    for ts in timestamps:
        hourly[ts.hour] += 1
        # weekday() is Monday-based
        daily[(ts.weekday() + 1) % 7] += 1

    peak_hour = hourly.index(max(hourly))
    peak_day = daily.index(max(daily))
    return {
        "peak_hour": f"{peak_hour}:00",
        "peak_day": DAY_NAMES[peak_day],
        "hourly_distribution": hourly,
        "activity_score": max(hourly) + max(daily),
    }


def analyze_location_patterns(records: List[CDRRecord]) -> List[Dict]:
    """Per-site activity for sites with enough interactions"""
    sites = {}
    for record in records:
        if not record.location or not (record.is_call or record.is_sms):
            continue

        site = sites.get(record.location)
        if site is None:
            site = sites[record.location] = {
                "calls": 0,
                "duration": 0,
                "numbers": {},
                "timestamps": [],
                "coordinates": record.coordinates,
                "voice": 0,
                "sms": 0,
            }

        site["calls"] += 1
        site["duration"] += record.duration
        site["numbers"].setdefault(record.called_number or record.caller_number, None)
        site["timestamps"].append(record.timestamp)
        if record.is_call:
            site["voice"] += 1
        else:
            site["sms"] += 1

    results = []
    for location, site in sites.items():
        if site["calls"] < config.LOCATION_MIN_INTERACTIONS:
            continue

        activity = get_time_based_activity(site["timestamps"])
        numbers = list(site["numbers"])
        results.append(LocationAnalysisResult(
            location=location,
            coordinates=site["coordinates"] or {"lat": 0.0, "lng": 0.0},
            calls=site["calls"],
            duration=site["duration"],
            numbers=numbers,
            time_range={
                "start": iso(min(site["timestamps"])),
                "end": iso(max(site["timestamps"])),
            },
            primary_number=numbers[0] if numbers else '',
            peak_activity=PeakActivity(
                hour=activity["peak_hour"],
                day=activity["peak_day"],
                score=activity["activity_score"],
            ),
            communication_mix=CommunicationMix(
                voice=site["voice"],
                sms=site["sms"],
                voice_percent=_round_half_up(site["voice"] / site["calls"] * 100),
                sms_percent=_round_half_up(site["sms"] / site["calls"] * 100),
            ),
            avg_duration=_round_half_up(site["duration"] / max(site["voice"], 1)),
            unique_contacts=len(numbers),
        ).dump())

    results.sort(key=lambda item: item["calls"], reverse=True)
    return results[:config.LOCATION_LIMIT]


def _timelines(records: List[CDRRecord], calls_only: bool = False) -> Dict[str, List[CDRRecord]]:
    """Located records per subscriber (caller), in chronological order"""
    timelines = defaultdict(list)
    for record in records:
        if not record.location or not record.caller_number:
            continue
        if calls_only and not record.is_call:
            continue
        timelines[record.caller_number].append(record)

    for timeline in timelines.values():
        timeline.sort(key=lambda r: r.timestamp)
    return timelines


def _stay_activity(stay: List[CDRRecord], start: datetime, end: datetime) -> LocationActivity:
    incoming_calls = {}
    outgoing_calls = {}
    incoming_sms = {}
    outgoing_sms = {}
    by_type = {
        CallType.CALL_INCOMING.value: incoming_calls,
        CallType.CALL_OUTGOING.value: outgoing_calls,
        CallType.SMS_RECEIVED.value: incoming_sms,
        CallType.SMS_SENT.value: outgoing_sms,
    }

    type_counts = Counter(record.call_type for record in stay)
    contact_counts = Counter()
    call_numbers = set()
    sms_numbers = set()
    total_duration = 0

    for record in stay:
        number = record.called_number or UNKNOWN_NUMBER
        by_type[record.call_type].setdefault(number, None)
        total_duration += record.duration

        if number != UNKNOWN_NUMBER:
            contact_counts[number] += 1
            if record.is_call:
                call_numbers.add(number)
            else:
                sms_numbers.add(number)

    # First number to reach the highest count wins
    top_number, top_count = '', 0
    for number, count in contact_counts.items():
        if count > top_count:
            top_number, top_count = number, count

    return LocationActivity(
        incoming_calls=type_counts[CallType.CALL_INCOMING.value],
        outgoing_calls=type_counts[CallType.CALL_OUTGOING.value],
        incoming_sms=type_counts[CallType.SMS_RECEIVED.value],
        outgoing_sms=type_counts[CallType.SMS_SENT.value],
        total_duration=total_duration,
        top_contacted_number=top_number,
        top_contact_count=top_count,
        stay_duration=format_duration(int((end - start).total_seconds())),
        unique_contacts=len(contact_counts),
        incoming_call_numbers=list(incoming_calls)[:SAMPLE_NUMBERS],
        outgoing_call_numbers=list(outgoing_calls)[:SAMPLE_NUMBERS],
        incoming_sms_numbers=list(incoming_sms)[:SAMPLE_NUMBERS],
        outgoing_sms_numbers=list(outgoing_sms)[:SAMPLE_NUMBERS],
        total_call_numbers=len(call_numbers),
        total_sms_numbers=len(sms_numbers),
        detailed_records=[
            DetailedRecord(
                timestamp=iso(r.timestamp),
                call_type=r.call_type,
                number=r.called_number,
                duration=r.duration,
            )
            for r in stay
        ],
    )


def analyze_detailed_location_timeline(records: List[CDRRecord]) -> List[Dict]:
    """Location changes per subscriber with the activity during each stay.

    A stay runs from the change until the next record at a different
    location, or until the subscriber's last record.
    """
    changes = []
    for subscriber, timeline in _timelines(records).items():
        current_location = timeline[0].location

        for i in range(1, len(timeline)):
            record = timeline[i]
            if record.location == current_location:
                continue

            end = timeline[-1].timestamp
            for later in timeline[i + 1:]:
                if later.location != record.location:
                    end = later.timestamp
                    break

            stay = [
                r for r in timeline[i:]
                if r.location == record.location and r.timestamp <= end
            ]

            changes.append((record.timestamp, LocationChangeResult(
                subscriber=subscriber,
                change_time=iso(record.timestamp),
                from_location=current_location or 'Unknown',
                to_location=record.location,
                coordinates=record.coordinates,
                activity_in_new_location=_stay_activity(stay, record.timestamp, end),
            ).dump()))

            current_location = record.location

    changes.sort(key=lambda change: change[0], reverse=True)
    return [change for _, change in changes[:config.LOCATION_TIMELINE_LIMIT]]


def analyze_movement_patterns(records: List[CDRRecord]) -> List[Dict]:
    """Subscribers whose calls move between sites, most mobile first"""
    results = []
    for number, timeline in _timelines(records, calls_only=True).items():
        changes = []
        previous_location = ''
        calls_after = 0
        duration_after = 0

        for record in timeline:
            if previous_location and previous_location != record.location:
                changes.append(MovementChange(
                    from_location=previous_location,
                    to_location=record.location,
                    timestamp=iso(record.timestamp),
                    calls_after=calls_after,
                    duration_after=duration_after,
                ))
                calls_after = 0
                duration_after = 0

            calls_after += 1
            duration_after += record.duration
            previous_location = record.location

        if changes:
            results.append(LocationMovementResult(
                number=number,
                changes=changes,
                total_changes=len(changes),
                mobility_level=mobility_level(len(changes)),
            ).dump())

    results.sort(key=lambda item: item["totalChanges"], reverse=True)
    logger.debug(f"{len(results)} subscribers changed location")
    return results[:config.MOVEMENT_LIMIT]
