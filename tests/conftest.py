import random
from datetime import datetime

import pytest

from cdr_intel.models import CallType, CDRRecord

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0)

SUBSCRIBER = "923001234567"
CONTACT_A = "923009876543"
CONTACT_B = "923331112233"
CONTACT_C = "923214445566"


def record(caller=SUBSCRIBER, called=CONTACT_A, call_type=CallType.CALL_OUTGOING, duration=60,
           timestamp=datetime(2024, 1, 15, 10, 0), location="", latitude=None, longitude=None,
           imei="", upload_id="batch-1"):
    return CDRRecord(
        caller_number=caller,
        called_number=called,
        call_type=call_type,
        duration=duration,
        timestamp=timestamp,
        location=location,
        latitude=latitude,
        longitude=longitude,
        imei=imei,
        upload_id=upload_id,
    )


@pytest.fixture
def make_record():
    return record


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def now():
    return lambda: FIXED_NOW
