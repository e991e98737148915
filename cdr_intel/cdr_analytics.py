"""
Batch-level CDR analytics
Number profiles, file/daily statistics, date and number drill-downs, and the
bundle of every analytical view computed for an upload
"""

import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

from cdr_intel import config
from cdr_intel.analytics import (
    analyze_incoming_calls, analyze_incoming_sms, analyze_outgoing_calls, analyze_outgoing_sms,
    analyze_top_numbers, top_talk_time,
)
from cdr_intel.device_analytics import analyze_imei_changes
from cdr_intel.location_analytics import (
    analyze_detailed_location_timeline, analyze_location_patterns, analyze_movement_patterns,
)
from cdr_intel.models import (
    AnalysisType, CallType, CDRRecord, DailyStats, DaySummary, FileStats, NumberProfile,
)
from cdr_intel.utils import iso


def _record_dict(record: CDRRecord) -> Dict:
    return record.model_dump(by_alias=True, mode='json')


def _day_label(day: str) -> str:
    """'2024-01-15' -> 'Monday, January 15'"""
    parsed = datetime.strptime(day, '%Y-%m-%d')
    return f"{parsed.strftime('%A, %B')} {parsed.day}"


def _summary(day: Dict) -> DaySummary:
    return DaySummary(
        date=day["date"],
        label=_day_label(day["date"]),
        calls=day["calls"],
        sms=day["sms"],
        duration=day["duration"],
        total=day["total"],
    )


def analyze_specific_number(records: List[CDRRecord], target_number: str) -> Optional[Dict]:
    """Day-by-day activity of one number, as caller or called party.

    Returns None when the number does not appear in the records.
    """
    number_records = [
        r for r in records
        if r.caller_number == target_number or r.called_number == target_number
    ]
    if not number_records:
        return None

    days = {}
    for record in number_records:
        key = record.timestamp.date().isoformat()
        day = days.setdefault(key, {"date": key, "calls": 0, "sms": 0, "duration": 0, "records": []})
        day["records"].append(record)
        if record.is_call:
            day["calls"] += 1
            day["duration"] += record.duration
        elif record.is_sms:
            day["sms"] += 1

    breakdown = []
    for day in days.values():
        day_records = sorted(day["records"], key=lambda r: r.timestamp)
        breakdown.append({
            "date": day["date"],
            "calls": day["calls"],
            "sms": day["sms"],
            "duration": day["duration"],
            "total": day["calls"] + day["sms"],
            "records": [
                {
                    "timestamp": iso(r.timestamp),
                    "callType": r.call_type,
                    "duration": r.duration,
                    "callerNumber": r.caller_number,
                    "calledNumber": r.called_number,
                    "location": r.location,
                }
                for r in day_records
            ],
        })
    # Most recent day first
    breakdown.sort(key=lambda day: day["date"], reverse=True)

    total_calls = sum(day["calls"] for day in breakdown)
    total_sms = sum(day["sms"] for day in breakdown)
    total_duration = sum(day["duration"] for day in breakdown)
    active_days = [day for day in breakdown if day["total"] > 0]

    most_active = least_active = None
    for day in active_days:
        if most_active is None or day["total"] > most_active["total"]:
            most_active = day
        if least_active is None or day["total"] < least_active["total"]:
            least_active = day

    return NumberProfile(
        number=target_number,
        total_days=len(active_days),
        total_calls=total_calls,
        total_sms=total_sms,
        total_duration=total_duration,
        avg_per_day=(total_calls + total_sms) / len(active_days) if active_days else 0,
        most_active_day=_summary(most_active) if most_active else None,
        least_active_day=_summary(least_active) if least_active else None,
        daily_breakdown=breakdown[:config.NUMBER_PROFILE_DAYS],
    ).dump()


def generate_daily_breakdown(records: List[CDRRecord]) -> List[Dict]:
    """Incoming/outgoing call and SMS counts per calendar day, oldest first"""
    daily = defaultdict(lambda: {"incoming_calls": 0, "outgoing_calls": 0, "incoming_sms": 0, "outgoing_sms": 0})
    fields = {
        CallType.CALL_INCOMING.value: "incoming_calls",
        CallType.CALL_OUTGOING.value: "outgoing_calls",
        CallType.SMS_RECEIVED.value: "incoming_sms",
        CallType.SMS_SENT.value: "outgoing_sms",
    }

    for record in records:
        daily[record.timestamp.date().isoformat()][fields[record.call_type]] += 1

    return [DailyStats(date=day, **stats).dump() for day, stats in sorted(daily.items())]


def generate_file_stats(records: List[CDRRecord], processing_time: float = 0.0) -> Dict:
    """Whole-batch summary; processing_time is in seconds"""
    timestamps = [r.timestamp for r in records]
    days = 0
    if timestamps:
        days = math.ceil((max(timestamps) - min(timestamps)) / timedelta(days=1))

    return FileStats(
        total_records=len(records),
        unique_numbers=len({r.caller_number for r in records}),
        date_range=f"{days} Days",
        date_range_days=days,
        processing_time=f"{processing_time:.1f}s",
        total_calls=sum(1 for r in records if r.is_call),
        total_sms=sum(1 for r in records if r.is_sms),
        total_duration=sum(r.duration for r in records if r.is_call),
        daily_breakdown=generate_daily_breakdown(records),
    ).dump()


def analyze_date(records: List[CDRRecord], day: Union[date, str]) -> Dict:
    """Every activity on one calendar day, grouped by type and as a timeline"""
    if isinstance(day, datetime):
        day = day.date()
    elif isinstance(day, str):
        day = date.fromisoformat(day)

    day_records = sorted((r for r in records if r.timestamp.date() == day), key=lambda r: r.timestamp)

    def of_type(call_type: CallType) -> List[Dict]:
        return [_record_dict(r) for r in day_records if r.call_type == call_type.value]

    return {
        "date": day.isoformat(),
        "activities": {
            "outgoingCalls": of_type(CallType.CALL_OUTGOING),
            "incomingCalls": of_type(CallType.CALL_INCOMING),
            "outgoingSMS": of_type(CallType.SMS_SENT),
            "incomingSMS": of_type(CallType.SMS_RECEIVED),
            "totalActivities": len(day_records),
        },
        "timeline": [
            {
                "time": iso(r.timestamp),
                "type": r.call_type,
                "caller": r.caller_number,
                "called": r.called_number,
                "duration": r.duration,
                "location": r.location,
                "imei": r.imei,
            }
            for r in day_records
        ],
    }


def number_details(records: List[CDRRecord], number: str, call_type: Optional[str] = None) -> Dict:
    """All records involving a number, oldest first, with the other party resolved.

    For outgoing calls and sent SMS the other party is the called number,
    otherwise it is the caller.
    """
    matching = [r for r in records if r.caller_number == number or r.called_number == number]
    if call_type:
        call_type = CallType(call_type).value
        matching = [r for r in matching if r.call_type == call_type]
    matching.sort(key=lambda r: r.timestamp)

    details = []
    for r in matching:
        if r.call_type in (CallType.CALL_OUTGOING.value, CallType.SMS_SENT.value):
            other_party = r.called_number
        else:
            other_party = r.caller_number
        details.append({
            "callType": r.call_type,
            "otherParty": other_party,
            "direction": 'outgoing' if r.caller_number == number else 'incoming',
            "duration": r.duration,
            "timestamp": iso(r.timestamp),
            "location": r.location,
            "imei": r.imei,
            "coordinates": r.coordinates,
        })

    return {"number": number, "totalRecords": len(details), "records": details}


def generate_all_analytics(records: List[CDRRecord], processing_time: float = 0.0) -> Dict[str, object]:
    """
    Generate every analytical view of a batch at once
    Keys are the AnalysisType values under which the store caches each result
    """
    return {
        AnalysisType.FILE_STATS.value: generate_file_stats(records, processing_time),
        AnalysisType.TOP_CALL_NUMBERS.value: analyze_top_numbers(records, 'calls'),
        AnalysisType.TOP_TALK_TIME_NUMBERS.value: analyze_top_numbers(records, 'duration'),
        AnalysisType.TOP_OUTGOING_TALK_TIME.value: top_talk_time(records, CallType.CALL_OUTGOING),
        AnalysisType.TOP_INCOMING_TALK_TIME.value: top_talk_time(records, CallType.CALL_INCOMING),
        AnalysisType.TOP_SMS_SENT_NUMBERS.value: analyze_top_numbers(records, 'sms_sent'),
        AnalysisType.TOP_SMS_RECEIVED_NUMBERS.value: analyze_top_numbers(records, 'sms_received'),
        AnalysisType.TOP_OUTGOING_CALLS.value: analyze_outgoing_calls(records),
        AnalysisType.TOP_INCOMING_CALLS.value: analyze_incoming_calls(records),
        AnalysisType.TOP_OUTGOING_SMS.value: analyze_outgoing_sms(records),
        AnalysisType.TOP_INCOMING_SMS.value: analyze_incoming_sms(records),
        AnalysisType.LOCATION_ANALYSIS.value: analyze_location_patterns(records),
        AnalysisType.MOVEMENT_PATTERNS.value: analyze_movement_patterns(records),
        AnalysisType.DETAILED_LOCATION_TIMELINE.value: analyze_detailed_location_timeline(records),
        AnalysisType.IMEI_CHANGES.value: analyze_imei_changes(records),
    }
