"""
Ranking analytics: counterpart leaderboards per interaction type, combined
top-N views and talk-time leaders.
"""

from collections import defaultdict
from typing import Dict, List

from cdr_intel import config
from cdr_intel.models import CallType, CDRRecord, TopNumbersResult
from cdr_intel.utils import format_duration

TOP_NUMBER_KINDS = ('calls', 'duration', 'sms_sent', 'sms_received')


def _ranked(items: List[Dict]) -> List[Dict]:
    """Sort by value descending (stable) and number the positions from 1"""
    ordered = sorted(items, key=lambda item: item["value"], reverse=True)
    return [
        TopNumbersResult(rank=index + 1, **item).dump()
        for index, item in enumerate(ordered)
    ]


def _count_counterparts(records: List[CDRRecord], call_type: CallType) -> List[Dict]:
    counts = defaultdict(int)
    for record in records:
        if record.call_type != call_type.value or not record.called_number:
            continue
        counts[record.called_number] += 1

    return _ranked([
        {"number": number, "value": count, "display_value": str(count)}
        for number, count in counts.items()
    ])


def analyze_outgoing_calls(records: List[CDRRecord]) -> List[Dict]:
    """Numbers the subscriber called, by number of calls"""
    return _count_counterparts(records, CallType.CALL_OUTGOING)


def analyze_incoming_calls(records: List[CDRRecord]) -> List[Dict]:
    """Numbers that called the subscriber, by number of calls"""
    return _count_counterparts(records, CallType.CALL_INCOMING)


def analyze_outgoing_sms(records: List[CDRRecord]) -> List[Dict]:
    return _count_counterparts(records, CallType.SMS_SENT)


def analyze_incoming_sms(records: List[CDRRecord]) -> List[Dict]:
    return _count_counterparts(records, CallType.SMS_RECEIVED)


def analyze_top_numbers(records: List[CDRRecord], kind: str) -> List[Dict]:
    """Top numbers by calls, talk time or SMS, counted from the counterpart's side.

    Each record is attributed to its called number, or to the caller when the
    called number is missing. An SMS the subscriber sent is one the counterpart
    received, so ``sms_sent`` and ``sms_received`` swap here.
    """
    if kind not in TOP_NUMBER_KINDS:
        raise ValueError(f"Unknown ranking kind: {kind}")

    stats = defaultdict(lambda: {"calls": 0, "duration": 0, "sms_sent": 0, "sms_received": 0})
    for record in records:
        number = record.called_number or record.caller_number
        if not number:
            continue

        entry = stats[number]
        if record.is_call:
            entry["calls"] += 1
            entry["duration"] += record.duration
        elif record.call_type == CallType.SMS_SENT.value:
            entry["sms_received"] += 1
        elif record.call_type == CallType.SMS_RECEIVED.value:
            entry["sms_sent"] += 1

    items = []
    for number, entry in stats.items():
        value = entry[kind]
        display_value = format_duration(value) if kind == 'duration' else str(value)
        items.append({"number": number, "value": value, "display_value": display_value})

    ordered = sorted(items, key=lambda item: item["value"], reverse=True)[:config.TOP_NUMBERS_LIMIT]
    return _ranked(ordered)


def top_talk_time(records: List[CDRRecord], call_type: CallType) -> List[Dict]:
    """Outgoing or incoming call leaders re-scored by total talk time.

    The talk time of a number sums the duration of every call where it is
    either party. Ranks keep their position from the call-count ranking.
    """
    call_type = CallType(call_type)
    if call_type == CallType.CALL_OUTGOING:
        ranking = analyze_outgoing_calls(records)
    elif call_type == CallType.CALL_INCOMING:
        ranking = analyze_incoming_calls(records)
    else:
        raise ValueError(f"Talk time is only defined for calls, not {call_type.value}")

    talk_time = defaultdict(int)
    for record in records:
        if not record.is_call:
            continue
        talk_time[record.caller_number] += record.duration
        if record.called_number and record.called_number != record.caller_number:
            talk_time[record.called_number] += record.duration

    rescored = []
    for item in ranking:
        seconds = talk_time.get(item["number"], 0)
        rescored.append({**item, "value": seconds, "displayValue": format_duration(seconds)})

    return sorted(rescored, key=lambda item: item["value"], reverse=True)
