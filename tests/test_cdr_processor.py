import asyncio
import random
from datetime import datetime, timedelta

import pytest

from cdr_intel import config
from cdr_intel.analytics import analyze_outgoing_calls
from cdr_intel.cdr_processor import (
    EmptyFileError, FileTooLargeError, SpreadsheetReadError, classify_call_type, ingest, parse_file,
    parse_records, process_cdr_file, read_spreadsheet, resolve_timestamp, split_location,
)
from cdr_intel.models import (
    A_PARTY, B_PARTY, CALL_TYPE, DATE, DATE_AND_TIME, DURATION, IMEI, LATITUDE, LONGITUDE,
    SITE_LOCATION, TIME, CallType, ProcessingStatus,
)
from cdr_intel.samples import to_csv_bytes, to_excel_bytes
from cdr_intel.storage import MemoryStore

from .conftest import CONTACT_A, CONTACT_B, FIXED_NOW, SUBSCRIBER


class RecordingStore(MemoryStore):
    """Memory store that remembers the last batch it created"""

    last_batch = None

    async def create_batch(self, filename, original_name=None):
        self.last_batch = await super().create_batch(filename, original_name)
        return self.last_batch


def in_fallback_window(ts):
    return FIXED_NOW - timedelta(days=30) <= ts <= FIXED_NOW


# Call type classification

@pytest.mark.parametrize("text,expected", [
    ("SMS Outgoing", CallType.SMS_SENT),
    ("Incoming SMS", CallType.SMS_RECEIVED),
    ("MT", CallType.CALL_INCOMING),
    ("MO", CallType.CALL_OUTGOING),
    ("Voice", CallType.CALL_OUTGOING),
    ("XYZ", CallType.CALL_OUTGOING),
    ("Outgoing Call", CallType.CALL_OUTGOING),
    ("Incoming Call", CallType.CALL_INCOMING),
    ("Call Received", CallType.CALL_INCOMING),
    ("Message Sent", CallType.SMS_SENT),
    ("SMS", CallType.SMS_RECEIVED),
    ("inc", CallType.CALL_INCOMING),
    ("OUT", CallType.CALL_OUTGOING),
    ("Voice In", CallType.CALL_INCOMING),
    ("Mobile Terminated", CallType.CALL_INCOMING),
    ("Mobile Originated", CallType.CALL_OUTGOING),
    (None, CallType.CALL_OUTGOING),
])
def test_classify_call_type(text, expected):
    assert classify_call_type(text) == expected


# Location decomposition

def test_split_location_with_coordinates():
    assert split_location({SITE_LOCATION: "Tower A|24.86|67.01"}) == ("Tower A", 24.86, 67.01)


def test_split_location_without_pipes():
    assert split_location({SITE_LOCATION: "Tower B"}) == ("Tower B", None, None)


def test_split_location_falls_back_to_coordinate_columns():
    row = {SITE_LOCATION: "Tower C", LATITUDE: "24.9", LONGITUDE: 67.1}
    assert split_location(row) == ("Tower C", 24.9, 67.1)


def test_split_location_needs_both_coordinates():
    assert split_location({SITE_LOCATION: "Tower D|abc|67.0"}) == ("Tower D", None, None)
    assert split_location({LATITUDE: 24.9}) == ("", None, None)


# Timestamp resolution

def test_text_timestamp(rng, now):
    row = {DATE_AND_TIME: "2024-01-15 10:30:00"}
    assert resolve_timestamp(row, rng, now) == (datetime(2024, 1, 15, 10, 30), False)


def test_day_first_text_timestamp(rng, now):
    ts, synthetic = resolve_timestamp({DATE_AND_TIME: "15-01-2024 10:00"}, rng, now)
    assert ts == datetime(2024, 1, 15, 10, 0)
    assert not synthetic


@pytest.mark.parametrize("serial", [45306.5, "45306.5"])
def test_serial_timestamp_is_shifted_back_five_hours(serial, rng, now):
    ts, synthetic = resolve_timestamp({DATE_AND_TIME: serial}, rng, now)
    assert ts == datetime(2024, 1, 15, 7, 0)
    assert not synthetic


def test_serial_offset_is_configurable(rng, now, monkeypatch):
    monkeypatch.setattr(config, "SERIAL_DATE_OFFSET_HOURS", 0)
    ts, _ = resolve_timestamp({DATE_AND_TIME: 45306.5}, rng, now)
    assert ts == datetime(2024, 1, 15, 12, 0)


def test_datetime_cell_gets_the_serial_shift(rng, now):
    value = datetime(2024, 3, 2, 18, 45, 10)
    assert resolve_timestamp({DATE_AND_TIME: value}, rng, now) == (datetime(2024, 3, 2, 13, 45, 10), False)


def test_workbook_date_cell_matches_serial_cell(rng, now):
    def parsed(cell):
        row = {"A-Party": SUBSCRIBER, "B-Party": CONTACT_A, "Call Type": "Outgoing", "Date And Time": cell}
        [record] = parse_file(to_excel_bytes([row]), "batch-1", "calls.xlsx", rng=rng, now=now)
        return record.timestamp

    date_cell = parsed(datetime(2024, 1, 15, 12, 0))
    serial_cell = parsed(45306.5)

    assert date_cell == serial_cell == datetime(2024, 1, 15, 7, 0)


def test_implausible_year_falls_back_to_recent_random_time(rng, now):
    ts, synthetic = resolve_timestamp({DATE_AND_TIME: "01/01/2005 10:00"}, rng, now)
    assert synthetic
    assert in_fallback_window(ts)


def test_unparsable_timestamp_falls_back(rng, now):
    ts, synthetic = resolve_timestamp({DATE_AND_TIME: "yesterday-ish"}, rng, now)
    assert synthetic
    assert in_fallback_window(ts)


def test_separate_date_and_time(rng, now):
    row = {DATE: "2024-01-15", TIME: "08:15:00"}
    assert resolve_timestamp(row, rng, now) == (datetime(2024, 1, 15, 8, 15), False)


def test_serial_date_and_day_fraction_time(rng, now):
    row = {DATE: 45306, TIME: 0.25}
    assert resolve_timestamp(row, rng, now) == (datetime(2024, 1, 15, 6, 0), False)


def test_date_only_gets_a_synthetic_time_of_day(rng, now):
    ts, synthetic = resolve_timestamp({DATE: "2024-01-15"}, rng, now)
    assert synthetic
    assert ts.date() == datetime(2024, 1, 15).date()


def test_missing_timestamp_is_synthesized_deterministically(now):
    first, synthetic = resolve_timestamp({}, random.Random(7), now)
    second, _ = resolve_timestamp({}, random.Random(7), now)
    assert synthetic
    assert first == second
    assert in_fallback_window(first)


# Record parsing

def test_parse_records_builds_canonical_records(rng, now):
    rows = [{
        A_PARTY: " 923001234567 ",
        B_PARTY: 923009876543.0,
        IMEI: 356938035643809.0,
        CALL_TYPE: "Outgoing",
        DURATION: "00:02:05",
        DATE_AND_TIME: "2024-01-15 10:00:00",
        SITE_LOCATION: "Tower A|24.86|67.01",
        "Remarks": "ignored",
    }]

    [record] = parse_records(rows, "batch-9", rng=rng, now=now)

    assert record.caller_number == SUBSCRIBER
    assert record.called_number == CONTACT_A
    assert record.imei == "356938035643809"
    assert record.call_type == CallType.CALL_OUTGOING.value
    assert record.duration == 125
    assert record.timestamp == datetime(2024, 1, 15, 10, 0)
    assert (record.location, record.latitude, record.longitude) == ("Tower A", 24.86, 67.01)
    assert record.upload_id == "batch-9"


def test_rows_without_caller_are_dropped(rng, now):
    rows = [
        {A_PARTY: "   ", B_PARTY: CONTACT_A},
        {A_PARTY: None, B_PARTY: CONTACT_A},
        {B_PARTY: CONTACT_A},
        {A_PARTY: SUBSCRIBER},
    ]

    records = parse_records(rows, "batch-1", rng=rng, now=now)

    assert [r.caller_number for r in records] == [SUBSCRIBER]


def test_row_with_only_a_caller_gets_defaults(rng, now):
    [record] = parse_records([{A_PARTY: SUBSCRIBER}], "batch-1", rng=rng, now=now)

    assert record.called_number == ""
    assert record.imei == ""
    assert record.call_type == CallType.CALL_OUTGOING.value
    assert record.duration == 0
    assert record.location == ""
    assert record.latitude is None and record.longitude is None
    assert in_fallback_window(record.timestamp)


def test_timestamps_keep_millisecond_precision(rng, now):
    rows = [{A_PARTY: SUBSCRIBER, DATE_AND_TIME: "2024-01-15 10:00:00.123456"}]

    [record] = parse_records(rows, "batch-1", rng=rng, now=now)

    assert record.timestamp == datetime(2024, 1, 15, 10, 0, 0, 123000)


# Spreadsheet reading

def test_header_row_is_found_below_a_title_block():
    rows = [{"A-Party": SUBSCRIBER, "B-Party": CONTACT_A, "Call Type": "Outgoing", "Duration": 60}]

    columns, raw = read_spreadsheet(to_excel_bytes(rows, title="CDR Export for 923001234567"), "calls.xlsx")

    assert columns == ["A-Party", "B-Party", "Call Type", "Duration"]
    assert len(raw) == 1
    assert raw[0]["B-Party"] == CONTACT_A


def test_csv_with_metadata_line_and_footer():
    content = (
        "CDR export for 923001234567\n"
        "\n"
        "A-Party,B-Party,Call Type,Duration,Date And Time\n"
        "923001234567,923009876543,Outgoing,60,2024-01-15 10:00:00\n"
        "923001234567,923331112233,Incoming,30,2024-01-15 11:00:00\n"
        "Total: 2,\n"
    ).encode("utf-8")

    columns, raw = read_spreadsheet(content, "calls.csv")

    assert columns == ["A-Party", "B-Party", "Call Type", "Duration", "Date And Time"]
    assert [row["B-Party"] for row in raw] == [CONTACT_A, CONTACT_B]


def test_unreadable_workbook_raises():
    with pytest.raises(SpreadsheetReadError):
        read_spreadsheet(b"definitely not a workbook", "calls.xlsx")


# Ingestion

def end_to_end_rows():
    # Exact headers (Aparty, Call Type, Date And Time) mixed with inferred ones
    return [
        {"Aparty": SUBSCRIBER, "Called Number": CONTACT_A, "Call Type": "outgoing",
         "Call Duration": 60, "Date And Time": "2024-01-15 09:00:00"},
        {"Aparty": SUBSCRIBER, "Called Number": CONTACT_A, "Call Type": "outgoing",
         "Call Duration": 30, "Date And Time": "2024-01-15 10:00:00"},
        {"Aparty": SUBSCRIBER, "Called Number": CONTACT_B, "Call Type": "Incoming",
         "Call Duration": 45, "Date And Time": "2024-01-15 11:00:00"},
        {"Aparty": None, "Called Number": CONTACT_A, "Call Type": "outgoing",
         "Call Duration": 15, "Date And Time": "2024-01-15 12:00:00"},
        {"Aparty": "923214445566", "Called Number": "923458889900", "Call Type": "SMS Outgoing",
         "Call Duration": 0, "Date And Time": "2024-01-15 13:00:00"},
    ]


def test_end_to_end_batch(rng, now):
    store = MemoryStore()
    file_bytes = to_excel_bytes(end_to_end_rows())

    async def run():
        batch_id, records = await ingest(file_bytes, store, "calls.xlsx", rng=rng, now=now)
        return batch_id, records, await store.get_records(batch_id)

    batch_id, records, stored = asyncio.run(run())

    assert len(records) == 4
    assert stored == records
    assert all(r.upload_id == batch_id for r in records)

    ranking = analyze_outgoing_calls(records)
    assert ranking[0] == {"rank": 1, "number": CONTACT_A, "value": 2, "displayValue": "2"}


def test_csv_upload_is_parsed(rng, now):
    store = MemoryStore()
    _, records = asyncio.run(ingest(to_csv_bytes(end_to_end_rows()), store, "calls.csv", rng=rng, now=now))

    assert len(records) == 4
    assert records[0].duration == 60


def test_structural_failure_marks_batch_failed():
    store = RecordingStore()

    async def run():
        with pytest.raises(SpreadsheetReadError):
            await ingest(b"garbage", store, "calls.xlsx")
        return await store.get_batch(store.last_batch), await store.get_records(store.last_batch)

    batch, records = asyncio.run(run())

    assert batch.processing_status == ProcessingStatus.FAILED.value
    assert batch.error
    assert records == []


def test_file_without_valid_records_is_rejected():
    store = RecordingStore()
    file_bytes = to_excel_bytes([{"A-Party": None, "B-Party": CONTACT_A, "Call Type": "Outgoing"}] * 3)

    async def run():
        with pytest.raises(EmptyFileError):
            await ingest(file_bytes, store, "calls.xlsx")
        return await store.get_batch(store.last_batch)

    assert asyncio.run(run()).processing_status == ProcessingStatus.FAILED.value


def test_header_only_csv_is_empty():
    store = MemoryStore()
    with pytest.raises(EmptyFileError):
        asyncio.run(ingest(b"A-Party,B-Party,Call Type\n", store, "calls.csv"))


def test_oversized_file_is_rejected(monkeypatch):
    monkeypatch.setattr(config, "MAX_FILE_SIZE_BYTES", 10)
    with pytest.raises(FileTooLargeError):
        asyncio.run(ingest(b"A-Party,B-Party\n923001234567,923009876543\n", MemoryStore(), "calls.csv"))


def test_process_cdr_file_caches_every_analysis(rng, now):
    store = MemoryStore()
    file_bytes = to_excel_bytes(end_to_end_rows())

    async def run():
        result = await process_cdr_file(file_bytes, store, "calls.xlsx", rng=rng, now=now)
        upload_id = result["upload_id"]
        return (
            result,
            await store.get_batch(upload_id),
            await store.get_result(upload_id, "topOutgoingCalls"),
            await store.get_complete_analysis(upload_id),
        )

    result, batch, cached, complete = asyncio.run(run())

    assert result["records_inserted"] == 4
    assert batch.processing_status == ProcessingStatus.COMPLETED.value
    assert batch.total_records == 4
    assert batch.unique_numbers == 2
    assert cached == result["analysis"]["topOutgoingCalls"]
    assert complete["fileStats"]["totalRecords"] == 4
    assert complete["totalCalls"] == 3
    assert complete["totalSms"] == 1


class BrokenRecordStore(RecordingStore):
    async def append_records(self, batch_id, records):
        raise RuntimeError("record collection unavailable")


class BrokenResultStore(RecordingStore):
    async def put_result(self, batch_id, analysis_type, result):
        raise RuntimeError("result collection unavailable")


@pytest.mark.parametrize("store_class", [BrokenRecordStore, BrokenResultStore])
def test_storage_failure_after_parsing_marks_batch_failed(store_class, rng, now):
    store = store_class()
    file_bytes = to_excel_bytes(end_to_end_rows())

    async def run():
        with pytest.raises(RuntimeError):
            await process_cdr_file(file_bytes, store, "calls.xlsx", rng=rng, now=now)
        return await store.get_batch(store.last_batch)

    batch = asyncio.run(run())

    assert batch.processing_status == ProcessingStatus.FAILED.value
    assert "unavailable" in batch.error
