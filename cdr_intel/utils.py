import math
import numbers
import re
import warnings
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pandas as pd

# Day zero of spreadsheet serial date numbering (serial 25569 == 1970-01-01)
EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_SERIAL_MIN = 40000
EXCEL_SERIAL_MAX = 50000

_NUMBER_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')

# Common datetime formats, month-first before day-first
DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
]


def utcnow() -> datetime:
    """Current UTC wall-clock time as a naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clean_value(value):
    """Clean and normalize data values"""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        value = value.strip()
        if value.lower() in ['nan', 'none', 'null', 'nat', '']:
            return None
    return value


def is_number(value) -> bool:
    """True for real numbers and numeric text"""
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Real):
        return not math.isnan(value)
    if isinstance(value, str):
        return bool(_NUMBER_PATTERN.match(value.strip()))
    return False


def to_number(value) -> Optional[float]:
    if not is_number(value):
        return None
    number = float(value)
    if math.isinf(number):
        return None
    return number


def cell_text(value) -> str:
    """Render a cell as text; integral floats lose their trailing .0"""
    value = clean_value(value)
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value).strip()


def parse_datetime(value) -> Optional[datetime]:
    """Parse various datetime formats"""
    value = clean_value(value)
    if value is None:
        return None

    if isinstance(value, pd.Timestamp):
        return _naive_utc(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if not isinstance(value, str):
        return None

    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    # Anything else goes through the pandas/dateutil parser
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(value, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return _naive_utc(parsed)


def _naive_utc(ts: pd.Timestamp) -> datetime:
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts.to_pydatetime()


def is_excel_serial(value) -> bool:
    number = to_number(value)
    return number is not None and EXCEL_SERIAL_MIN < number < EXCEL_SERIAL_MAX


def excel_serial_to_datetime(serial: float) -> datetime:
    """Convert a spreadsheet day-count serial to a naive datetime"""
    return EXCEL_EPOCH + timedelta(days=float(serial))


def day_fraction_to_time(fraction: float) -> time:
    """Spreadsheet time cells are stored as a fraction of one day"""
    seconds = int(round(fraction * 86400)) % 86400
    return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)


def to_seconds(value) -> int:
    """Duration in whole seconds from numbers or HH:MM:SS / MM:SS text"""
    value = clean_value(value)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, numbers.Real):
        return max(int(value), 0)
    if isinstance(value, time):
        return value.hour * 3600 + value.minute * 60 + value.second
    s = str(value).strip().strip("'")
    if s.isdigit():
        return int(s)
    parts = s.split(":")
    try:
        if len(parts) == 3:
            h, m, ss = map(int, parts)
            return max(h * 3600 + m * 60 + ss, 0)
        if len(parts) == 2:
            m, ss = map(int, parts)
            return max(m * 60 + ss, 0)
    except ValueError:
        pass
    # Leading integer part, the rest is ignored ("12.7", "45 sec")
    match = re.match(r'^\s*(\d+)', s)
    return int(match.group(1)) if match else 0


def format_duration(seconds: int) -> str:
    """Render seconds as "{h}h {m}m", or "{m}m" under one hour"""
    seconds = int(seconds or 0)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def iso(value: datetime) -> str:
    return value.isoformat()


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision, which MongoDB dates cannot hold"""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)
