import logging
from typing import Dict, List

from cdr_intel import config
from cdr_intel.models import CallType, CDRRecord, IMEIChange, IMEIChangeResult
from cdr_intel.utils import iso

logger = logging.getLogger(__name__)


def analyze_imei_changes(records: List[CDRRecord]) -> List[Dict]:
    """Detect device (IMEI) swaps per number.

    Records with an IMEI are grouped by counterpart number (called number,
    else caller). Each distinct IMEI accumulates the activity seen with it;
    ordered by first use, every adjacent pair of IMEIs is one change carrying
    the counters of the newer device.
    """
    devices: Dict[str, Dict[str, Dict]] = {}

    for record in records:
        if not record.imei:
            continue
        number = record.called_number or record.caller_number
        if not number:
            continue

        usage = devices.setdefault(number, {}).get(record.imei)
        if usage is None:
            usage = devices[number][record.imei] = {
                "first_seen": record.timestamp,
                "calls": 0,
                "duration": 0,
                "sms_sent": 0,
                "sms_received": 0,
            }
        usage["first_seen"] = min(usage["first_seen"], record.timestamp)

        if record.is_call:
            usage["calls"] += 1
            usage["duration"] += record.duration
        elif record.call_type == CallType.SMS_SENT.value:
            usage["sms_sent"] += 1
        elif record.call_type == CallType.SMS_RECEIVED.value:
            usage["sms_received"] += 1

    results = []
    for number, usages in devices.items():
        if len(usages) < 2:
            continue

        ordered = sorted(usages.items(), key=lambda item: item[1]["first_seen"])
        changes = []
        for (old_imei, _), (new_imei, usage) in zip(ordered, ordered[1:]):
            changes.append(IMEIChange(
                timestamp=iso(usage["first_seen"]),
                old_imei=old_imei,
                new_imei=new_imei,
                calls_after=usage["calls"],
                duration_after=usage["duration"],
                sms_after={"sent": usage["sms_sent"], "received": usage["sms_received"]},
            ))

        results.append(IMEIChangeResult(number=number, changes=changes, total_changes=len(changes)).dump())

    results.sort(key=lambda item: item["totalChanges"], reverse=True)
    logger.debug(f"{len(results)} numbers used more than one IMEI")
    return results[:config.IMEI_CHANGE_LIMIT]
