from datetime import datetime, timedelta

import pytest

from cdr_intel.location_analytics import (
    analyze_detailed_location_timeline, analyze_location_patterns, analyze_movement_patterns,
    get_time_based_activity, mobility_level,
)
from cdr_intel.models import CallType

from .conftest import CONTACT_A, CONTACT_B, CONTACT_C, SUBSCRIBER, record

MONDAY = datetime(2024, 1, 15, 10, 0)


def at(location, minutes, **kwargs):
    return record(location=location, timestamp=MONDAY + timedelta(minutes=minutes), **kwargs)


# Site aggregates

def clifton_batch():
    return [
        at("Clifton", 0, called=CONTACT_A, duration=60, latitude=24.81, longitude=67.03),
        at("Clifton", 30, called=CONTACT_B, duration=120, latitude=24.81, longitude=67.03),
        at("Clifton", 28 * 60, called=CONTACT_A, call_type=CallType.SMS_SENT, duration=0),
        at("Saddar", 0, called=CONTACT_C),
        at("Saddar", 10, called=CONTACT_C),
    ]


def test_site_aggregate():
    [site] = analyze_location_patterns(clifton_batch())

    assert site == {
        "location": "Clifton",
        "coordinates": {"lat": 24.81, "lng": 67.03},
        "calls": 3,
        "duration": 180,
        "numbers": [CONTACT_A, CONTACT_B],
        "timeRange": {"start": "2024-01-15T10:00:00", "end": "2024-01-16T14:00:00"},
        "primaryNumber": CONTACT_A,
        "peakActivity": {"hour": "10:00", "day": "Mon", "score": 4},
        "communicationMix": {"voice": 2, "sms": 1, "voicePercent": 67, "smsPercent": 33},
        "avgDuration": 90,
        "uniqueContacts": 2,
    }


def test_sites_below_three_interactions_are_excluded():
    assert analyze_location_patterns(clifton_batch()[3:]) == []


def test_site_without_coordinates_reports_origin():
    batch = [at("Korangi", i) for i in range(3)]

    [site] = analyze_location_patterns(batch)

    assert site["coordinates"] == {"lat": 0.0, "lng": 0.0}
    assert site["avgDuration"] == 60


def test_sites_are_sorted_by_volume():
    batch = [at("Saddar", i) for i in range(3)] + [at("Clifton", i) for i in range(5)]

    assert [s["location"] for s in analyze_location_patterns(batch)] == ["Clifton", "Saddar"]


def test_time_based_activity_prefers_earliest_hour_on_ties():
    activity = get_time_based_activity([datetime(2024, 1, 14, 9), datetime(2024, 1, 15, 8)])

    assert activity["peak_hour"] == "8:00"
    assert activity["peak_day"] == "Sun"
    assert activity["activity_score"] == 2


# Location-change timeline

def test_location_change_with_stay_activity():
    batch = [
        at("Clifton", 0, called=CONTACT_A),
        at("Saddar", 60, called=CONTACT_A, duration=60, latitude=24.85, longitude=67.02),
        at("Saddar", 90, called=CONTACT_B, call_type=CallType.SMS_SENT, duration=0),
        at("Saddar", 120, called=CONTACT_C, call_type=CallType.CALL_INCOMING, duration=30),
        at("Gulshan", 210, called=CONTACT_A),
    ]

    latest, first = analyze_detailed_location_timeline(batch)

    assert (latest["fromLocation"], latest["toLocation"]) == ("Saddar", "Gulshan")
    assert latest["activityInNewLocation"]["stayDuration"] == "0m"
    assert latest["coordinates"] is None

    assert first["subscriber"] == SUBSCRIBER
    assert first["changeTime"] == "2024-01-15T11:00:00"
    assert (first["fromLocation"], first["toLocation"]) == ("Clifton", "Saddar")
    assert first["coordinates"] == {"lat": 24.85, "lng": 67.02}

    activity = first["activityInNewLocation"]
    assert activity["outgoingCalls"] == 1
    assert activity["outgoingSms"] == 1
    assert activity["incomingCalls"] == 1
    assert activity["incomingSms"] == 0
    assert activity["totalDuration"] == 90
    assert activity["stayDuration"] == "2h 30m"
    assert (activity["topContactedNumber"], activity["topContactCount"]) == (CONTACT_A, 1)
    assert activity["uniqueContacts"] == 3
    assert activity["outgoingCallNumbers"] == [CONTACT_A]
    assert activity["outgoingSmsNumbers"] == [CONTACT_B]
    assert activity["incomingCallNumbers"] == [CONTACT_C]
    assert (activity["totalCallNumbers"], activity["totalSmsNumbers"]) == (2, 1)
    assert [r["number"] for r in activity["detailedRecords"]] == [CONTACT_A, CONTACT_B, CONTACT_C]
    assert activity["detailedRecords"][1]["callType"] == CallType.SMS_SENT.value


def test_stay_number_samples_are_capped_at_five():
    batch = [at("Clifton", 0)] + [at("Saddar", i + 1, called=f"92311{i:07d}") for i in range(7)]

    [change] = analyze_detailed_location_timeline(batch)

    activity = change["activityInNewLocation"]
    assert len(activity["outgoingCallNumbers"]) == 5
    assert activity["totalCallNumbers"] == 7
    assert len(activity["detailedRecords"]) == 7


def test_unknown_counterpart_is_listed_but_not_counted():
    batch = [at("Clifton", 0), at("Saddar", 5, called="")]

    [change] = analyze_detailed_location_timeline(batch)

    activity = change["activityInNewLocation"]
    assert activity["outgoingCallNumbers"] == ["Unknown"]
    assert activity["uniqueContacts"] == 0
    assert activity["topContactedNumber"] == ""


def test_timeline_keeps_the_twenty_latest_changes():
    batch = [at("Clifton" if i % 2 else "Saddar", i) for i in range(25)]

    changes = analyze_detailed_location_timeline(batch)

    assert len(changes) == 20
    assert changes[0]["changeTime"] == "2024-01-15T10:24:00"
    assert changes[0]["changeTime"] > changes[-1]["changeTime"]


def test_records_without_location_are_ignored():
    batch = [at("Clifton", 0), at("", 5), at("Clifton", 10)]
    assert analyze_detailed_location_timeline(batch) == []


# Mobility

@pytest.mark.parametrize("changes,level", [(16, "high"), (15, "medium"), (9, "medium"), (8, "low"), (1, "low")])
def test_mobility_level(changes, level):
    assert mobility_level(changes) == level


def test_movement_counts_calls_before_each_move():
    batch = [
        at("Clifton", 0, duration=60),
        at("Clifton", 10, duration=30),
        at("Saddar", 20, duration=10),
    ]

    [movement] = analyze_movement_patterns(batch)

    assert movement == {
        "number": SUBSCRIBER,
        "changes": [{
            "fromLocation": "Clifton",
            "toLocation": "Saddar",
            "timestamp": "2024-01-15T10:20:00",
            "callsAfter": 2,
            "durationAfter": 90,
        }],
        "totalChanges": 1,
        "mobilityLevel": "low",
    }


def test_movement_ignores_sms():
    batch = [
        at("Clifton", 0),
        at("Saddar", 5, call_type=CallType.SMS_SENT),
        at("Clifton", 10),
    ]
    assert analyze_movement_patterns(batch) == []


def test_most_mobile_subscriber_first():
    busy = [at("Clifton" if i % 2 else "Saddar", i, caller=CONTACT_B) for i in range(17)]
    quiet = [at("Clifton", 0), at("Saddar", 1)]

    movements = analyze_movement_patterns(quiet + busy)

    assert [m["number"] for m in movements] == [CONTACT_B, SUBSCRIBER]
    assert movements[0]["totalChanges"] == 16
    assert movements[0]["mobilityLevel"] == "high"


def test_location_analytics_on_empty_batch():
    assert analyze_location_patterns([]) == []
    assert analyze_detailed_location_timeline([]) == []
    assert analyze_movement_patterns([]) == []
