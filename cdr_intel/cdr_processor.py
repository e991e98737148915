import csv
import io
import logging
import random
import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from cdr_intel import config
from cdr_intel.cdr_analytics import generate_all_analytics
from cdr_intel.logger import PerformanceLogger
from cdr_intel.models import (
    A_PARTY, B_PARTY, CALL_TYPE, DATE, DATE_AND_TIME, DURATION, IMEI, LATITUDE, LONGITUDE,
    SITE_LOCATION, TIME, CallType, CDRRecord, ProcessingStatus,
)
from cdr_intel.normalizer import normalize
from cdr_intel.utils import (
    cell_text, clean_value, day_fraction_to_time, excel_serial_to_datetime, is_number, parse_datetime, to_number,
    to_seconds, truncate_to_millis, utcnow,
)

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 20
HEADER_KEYWORDS = ['number', 'party', 'time', 'date', 'duration', 'call', 'msisdn', 'imei',
                   'imsi', 'cell', 'tower', 'location', 'site', 'type']
FOOTER_KEYWORDS = ('total', 'page', 'summary', 'disclaimer', 'note:', 'note :')

XLSX_MAGIC = b'PK\x03\x04'
XLS_MAGIC = b'\xd0\xcf\x11\xe0'


class IngestionError(Exception):
    """A file could not be turned into a record set"""


class SpreadsheetReadError(IngestionError):
    pass


class EmptyFileError(IngestionError):
    pass


class FileTooLargeError(IngestionError):
    pass


# Spreadsheet reading

def _is_excel(file_bytes: bytes, filename: Optional[str]) -> bool:
    if filename:
        name = filename.lower()
        if name.endswith(('.xlsx', '.xls')):
            return True
        if name.endswith('.csv'):
            return False
    return file_bytes.startswith(XLSX_MAGIC) or file_bytes.startswith(XLS_MAGIC)


def _looks_like_header(value) -> bool:
    value = clean_value(value)
    if value is None or is_number(value) or isinstance(value, (datetime, pd.Timestamp)):
        return False
    text = str(value).strip()
    if text.startswith('Unnamed'):
        return False
    # Separator rows made of dashes, underscores or equals signs
    return text.replace('-', '').replace('_', '').replace('=', '').strip() != ''


def detect_header_row(preview: pd.DataFrame) -> int:
    """Index of the row that most looks like a CDR header among the first rows"""
    header_row = 0
    best_score = 0

    for idx in range(min(HEADER_SCAN_ROWS, len(preview))):
        row = preview.iloc[idx]
        if sum(1 for val in row.values if clean_value(val) is not None) < 3:
            continue

        score = 0
        valid_names = 0
        for val in row.values:
            if not _looks_like_header(val):
                continue
            valid_names += 1
            val_lower = str(val).lower()
            if any(keyword in val_lower for keyword in HEADER_KEYWORDS):
                score += 2
            else:
                score += 1

        # Require at least 3 valid column names
        if valid_names >= 3 and score > best_score:
            best_score = score
            header_row = idx

    return header_row


def _is_footer(row: Dict) -> bool:
    """Trailing "Total: ..." / "Page 3 of 9" style lines under the data"""
    filled = [cell_text(v) for v in row.values() if clean_value(v) is not None]
    if len(filled) > 2:
        return False
    return filled[0].lower().startswith(FOOTER_KEYWORDS)


def _read_excel(file_bytes: bytes) -> pd.DataFrame:
    preview = pd.read_excel(io.BytesIO(file_bytes), sheet_name=0, header=None, nrows=HEADER_SCAN_ROWS)
    header_row = detect_header_row(preview)
    if header_row:
        logger.info(f"Detected header at row {header_row + 1}")
    return pd.read_excel(io.BytesIO(file_bytes), sheet_name=0, header=header_row)


def _read_csv(file_bytes: bytes) -> pd.DataFrame:
    text = file_bytes.decode('utf-8-sig', errors='ignore')
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise EmptyFileError("File contains no data")

    preview = pd.DataFrame(list(csv.reader(lines[:HEADER_SCAN_ROWS])))
    header_row = detect_header_row(preview)
    if header_row:
        logger.info(f"Detected header at row {header_row + 1}")

    # Metadata lines above the header may have a different field count
    return pd.read_csv(
        io.StringIO('\n'.join(lines)), engine='python', header=0, skiprows=header_row,
        dtype=str, keep_default_na=False, on_bad_lines='skip',
    )


def read_spreadsheet(file_bytes: bytes, filename: Optional[str] = None) -> Tuple[List[str], List[Dict]]:
    """Read the first sheet of a workbook or a CSV file into raw rows.

    Returns the column labels in file order and one dict per non-empty data row.
    """
    try:
        if _is_excel(file_bytes, filename):
            df = _read_excel(file_bytes)
        else:
            df = _read_csv(file_bytes)
    except IngestionError:
        raise
    except pd.errors.EmptyDataError as e:
        raise EmptyFileError(f"File contains no data: {e}") from e
    except Exception as e:
        raise SpreadsheetReadError(f"Unable to read spreadsheet: {e}") from e

    # Clean up column names
    df.columns = [
        str(col).strip() if pd.notna(col) and not str(col).startswith('Unnamed') else f'Column_{i}'
        for i, col in enumerate(df.columns)
    ]
    df = df.loc[:, ~pd.Index(df.columns).duplicated()]

    rows = []
    for row in df.to_dict(orient='records'):
        # Skip empty rows and footers
        if all(clean_value(v) is None for v in row.values()) or _is_footer(row):
            continue
        rows.append(row)

    logger.info(f"Read {len(rows)} rows with columns: {list(df.columns)}")
    return list(df.columns), rows


# Record parsing

def classify_call_type(value) -> CallType:
    """Resolve free-form call type text to one of the four categories"""
    text = cell_text(value).lower() or 'call'
    tokens = [t for t in re.split(r'[^a-z]+', text) if t]

    if 'sms' in text or 'message' in text:
        if 'outgoing' in text or 'sent' in text or 'out' in text:
            return CallType.SMS_SENT
        # Un-directed SMS counts as received
        return CallType.SMS_RECEIVED

    if 'outgoing' in text or 'sent' in text:
        return CallType.CALL_OUTGOING
    if 'incoming' in text or 'received' in text:
        return CallType.CALL_INCOMING

    if text in ('inc', 'incoming'):
        return CallType.CALL_INCOMING
    if text in ('out', 'outgoing'):
        return CallType.CALL_OUTGOING

    if 'out' in tokens or 'outbound' in tokens or text.startswith('out') or text.endswith('out'):
        return CallType.CALL_OUTGOING
    if 'in' in tokens or 'inbound' in tokens or text.startswith('in') or text.endswith('in'):
        return CallType.CALL_INCOMING

    if 'mt' in tokens or 'terminat' in text:
        return CallType.CALL_INCOMING
    if 'mo' in tokens or 'originat' in text:
        return CallType.CALL_OUTGOING

    # Voice, bare "call" and anything unrecognised
    return CallType.CALL_OUTGOING


def _plausible(value: Optional[datetime]) -> bool:
    return value is not None and config.MIN_PLAUSIBLE_YEAR < value.year <= config.MAX_PLAUSIBLE_YEAR


def _date_rewrites(text: str) -> List[str]:
    """Alternative readings of an ambiguous date: day-first orders and 2-digit years"""
    candidates = []
    match = re.match(r'^(\d{1,4})[/\-.](\d{1,2})[/\-.](\d{1,4})(.*)$', text.strip())
    if not match:
        return candidates
    first, second, third, rest = match.groups()
    rest = rest.strip()

    if len(third) == 2:
        third = f"20{third}"
    if len(first) == 4:
        # year-month-day and year-day-month
        orders = [(first, second, third), (first, third, second)]
    else:
        # day-month-year, then month-day-year
        orders = [(third, second, first), (third, first, second)]

    for year, month, day in orders:
        candidate = f"{year}-{int(month):02d}-{int(day):02d}"
        candidates.append(f"{candidate} {rest}" if rest else candidate)
    return candidates


def _parse_text_timestamp(text: str) -> Optional[datetime]:
    parsed = parse_datetime(text)
    if parsed is not None and parsed.year > config.MIN_PLAUSIBLE_YEAR:
        return parsed
    for candidate in _date_rewrites(text):
        parsed = parse_datetime(candidate)
        if _plausible(parsed):
            return parsed
    return None


def _shift_serial(value: datetime) -> datetime:
    return value - timedelta(hours=config.SERIAL_DATE_OFFSET_HOURS)


def _serial_timestamp(value) -> Optional[datetime]:
    try:
        converted = excel_serial_to_datetime(float(value))
    except (OverflowError, ValueError):
        return None
    return _shift_serial(converted)


def _date_text(value) -> Optional[str]:
    if is_number(value):
        try:
            return excel_serial_to_datetime(float(value)).strftime('%Y-%m-%d')
        except (OverflowError, ValueError):
            return None
    parsed = parse_datetime(value)
    if parsed is not None:
        return parsed.strftime('%Y-%m-%d')
    return cell_text(value)


def _time_text(value) -> str:
    if is_number(value):
        return day_fraction_to_time(float(value)).strftime('%H:%M:%S')
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.strftime('%H:%M:%S')
    return cell_text(value)


def _random_recent(rng: random.Random, now: Callable[[], datetime]) -> datetime:
    return now() - timedelta(seconds=rng.random() * 30 * 86400)


def _random_time_of_day(rng: random.Random, day: datetime) -> datetime:
    return day.replace(hour=rng.randrange(24), minute=rng.randrange(60),
                       second=rng.randrange(60), microsecond=0)


def resolve_timestamp(row: Dict, rng: random.Random, now: Callable[[], datetime]) -> Tuple[datetime, bool]:
    """Timestamp for a canonical row, and whether it had to be synthesized"""
    date_and_time = clean_value(row.get(DATE_AND_TIME))
    date_value = clean_value(row.get(DATE))
    time_value = clean_value(row.get(TIME))

    if date_and_time is not None:
        if isinstance(date_and_time, (datetime, pd.Timestamp)):
            # Workbook date cells are stored as serials; the reader decodes them
            return _shift_serial(parse_datetime(date_and_time)), False
        if is_number(date_and_time):
            resolved = _serial_timestamp(date_and_time)
        else:
            resolved = _parse_text_timestamp(cell_text(date_and_time))
        if resolved is not None:
            return resolved, False
        return _random_recent(rng, now), True

    if date_value is not None:
        day = _date_text(date_value)
        if time_value is not None and day:
            time_text = _time_text(time_value)
            resolved = parse_datetime(f"{day} {time_text}")
            if resolved is not None:
                return resolved, False
            return _random_time_of_day(rng, now()), True
        resolved = parse_datetime(day) if day else None
        if resolved is None:
            return _random_time_of_day(rng, now()), True
        # Date-only source: the time of day is made up
        return _random_time_of_day(rng, resolved), True

    return _random_recent(rng, now), True


def split_location(row: Dict) -> Tuple[str, Optional[float], Optional[float]]:
    """Site name and coordinates from "name|lat|lng" or separate columns"""
    location = ""
    latitude = longitude = None

    site = cell_text(row.get(SITE_LOCATION))
    if site:
        parts = site.split('|')
        if len(parts) >= 3:
            location = parts[0].strip()
            latitude = to_number(parts[1].strip())
            longitude = to_number(parts[2].strip())
        else:
            location = site

    if latitude is None or longitude is None:
        latitude = to_number(clean_value(row.get(LATITUDE)))
        longitude = to_number(clean_value(row.get(LONGITUDE)))
        if latitude is None or longitude is None:
            latitude = longitude = None

    return location, latitude, longitude


def parse_records(rows: List[Dict], upload_id: str, rng: Optional[random.Random] = None,
                  now: Optional[Callable[[], datetime]] = None) -> List[CDRRecord]:
    """Turn canonical rows into CDR records; rows without a caller are dropped"""
    rng = rng or random.Random()
    now = now or utcnow

    records = []
    stats = {"dropped": 0, "synthetic_timestamps": 0, "without_location": 0}

    for row in rows:
        caller = cell_text(row.get(A_PARTY))
        if not caller:
            stats["dropped"] += 1
            continue

        timestamp, synthetic = resolve_timestamp(row, rng, now)
        if synthetic:
            stats["synthetic_timestamps"] += 1

        location, latitude, longitude = split_location(row)
        if not location:
            stats["without_location"] += 1

        records.append(CDRRecord(
            caller_number=caller,
            called_number=cell_text(row.get(B_PARTY)),
            imei=cell_text(row.get(IMEI)),
            call_type=classify_call_type(row.get(CALL_TYPE)),
            duration=to_seconds(row.get(DURATION)),
            timestamp=truncate_to_millis(timestamp),
            location=location,
            latitude=latitude,
            longitude=longitude,
            upload_id=upload_id,
        ))

    logger.info(
        f"Parsed {len(records)} records ({stats['dropped']} rows dropped without caller, "
        f"{stats['synthetic_timestamps']} synthetic timestamps, "
        f"{stats['without_location']} without location)"
    )
    return records


def parse_file(file_bytes: bytes, upload_id: str, filename: Optional[str] = None,
               rng: Optional[random.Random] = None,
               now: Optional[Callable[[], datetime]] = None) -> List[CDRRecord]:
    """Read, normalize and parse one uploaded file"""
    if len(file_bytes) > config.MAX_FILE_SIZE_BYTES:
        raise FileTooLargeError(f"File exceeds the {config.MAX_FILE_SIZE_MB} MB upload limit")

    columns, rows = read_spreadsheet(file_bytes, filename)
    if not rows:
        raise EmptyFileError("File contains no data rows")

    records = parse_records(normalize(rows, columns), upload_id, rng=rng, now=now)
    if not records:
        raise EmptyFileError("No valid CDR records found in the file")
    return records


async def _mark_failed(store, upload_id: str, filename: str, error: Exception) -> None:
    await store.update_batch(upload_id, processing_status=ProcessingStatus.FAILED.value, error=str(error))
    logger.error(f"Ingestion of {filename} failed: {error}")


async def ingest(file_bytes: bytes, store, filename: Optional[str] = None,
                 original_name: Optional[str] = None, rng: Optional[random.Random] = None,
                 now: Optional[Callable[[], datetime]] = None) -> Tuple[str, List[CDRRecord]]:
    """Create a batch in the store and fill it with the file's records.

    On any failure the batch is marked failed and the error propagates.
    Files that cannot be parsed leave no records behind.
    """
    filename = filename or "upload"
    upload_id = await store.create_batch(filename, original_name or filename)

    try:
        records = parse_file(file_bytes, upload_id, filename, rng=rng, now=now)
        await store.append_records(upload_id, records)
    except Exception as e:
        await _mark_failed(store, upload_id, filename, e)
        raise

    return upload_id, records


async def process_cdr_file(file_bytes: bytes, store, filename: Optional[str] = None,
                           original_name: Optional[str] = None, rng: Optional[random.Random] = None,
                           now: Optional[Callable[[], datetime]] = None) -> Dict:
    """Ingest a file, run every analyzer and cache the results in the store"""
    with PerformanceLogger(f"ingest {filename or 'upload'}", logger) as perf:
        upload_id, records = await ingest(file_bytes, store, filename, original_name, rng=rng, now=now)

    try:
        analysis = generate_all_analytics(records, processing_time=perf.elapsed)
        for analysis_type, result in analysis.items():
            await store.put_result(upload_id, analysis_type, result)
    except Exception as e:
        await _mark_failed(store, upload_id, filename or "upload", e)
        raise

    file_stats = analysis["fileStats"]
    await store.update_batch(
        upload_id,
        processing_status=ProcessingStatus.COMPLETED.value,
        total_records=file_stats["totalRecords"],
        unique_numbers=file_stats["uniqueNumbers"],
    )
    logger.info(f"Batch {upload_id}: {len(records)} records analysed")

    return {
        "upload_id": upload_id,
        "records_inserted": len(records),
        "analysis": analysis,
    }
