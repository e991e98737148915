"""
Generate sample CDR workbooks in several vendor header styles
Used by the test-suite and the ``samples`` command of the CLI runner
"""

import io
import logging
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

# Sample data
SAMPLE_NUMBERS = ["923001234567", "923009876543", "923331112233", "923214445566", "923458889900"]
SAMPLE_SITES = [
    ("Clifton Block 5", 24.8138, 67.0300),
    ("Saddar Market", 24.8556, 67.0214),
    ("Gulshan Chowrangi", 24.9246, 67.0910),
    ("Korangi Industrial", 24.8293, 67.1245),
]
SAMPLE_IMEIS = ["356938035643809", "490154203237518", "353918057320764"]

CALL_TYPE_LABELS = {
    "standard": ["Outgoing Call", "Incoming Call", "SMS Outgoing", "Incoming SMS"],
    "vendor": ["MO", "MT", "SMS Sent", "SMS Received"],
    "unlabelled": ["outgoing", "Incoming", "sms out", "sms in"],
}


def generate_records(record_count: int = 50, rng: Optional[random.Random] = None,
                     base_time: Optional[datetime] = None) -> List[Dict]:
    """Synthetic CDR rows; one subscriber calling the other sample numbers"""
    rng = rng or random.Random()
    base_time = base_time or datetime(2024, 1, 1)
    subscriber = SAMPLE_NUMBERS[0]

    records = []
    for _ in range(record_count):
        start_time = base_time + timedelta(
            hours=rng.randint(0, 168),
            minutes=rng.randint(0, 59)
        )
        kind = rng.randrange(4)
        site, lat, lng = rng.choice(SAMPLE_SITES)
        records.append({
            "caller": subscriber,
            "called": rng.choice(SAMPLE_NUMBERS[1:]),
            "kind": kind,
            "duration": rng.randint(10, 3600) if kind < 2 else 0,
            "time": start_time,
            "site": site,
            "lat": lat,
            "lng": lng,
            "imei": rng.choice(SAMPLE_IMEIS),
        })

    records.sort(key=lambda r: r["time"])
    return records


def standard_rows(records: List[Dict]) -> List[Dict]:
    """Canonical headers, combined "name|lat|lng" site column"""
    labels = CALL_TYPE_LABELS["standard"]
    return [{
        "A-Party": r["caller"],
        "B-Party": r["called"],
        "IMEI": r["imei"],
        "Call Type": labels[r["kind"]],
        "Duration": r["duration"],
        "Date And Time": r["time"].strftime('%Y-%m-%d %H:%M:%S'),
        "SiteLocation": f"{r['site']}|{r['lat']}|{r['lng']}",
    } for r in records]


def vendor_rows(records: List[Dict]) -> List[Dict]:
    """Known vendor spellings, HH:MM:SS durations and separate coordinates"""
    labels = CALL_TYPE_LABELS["vendor"]
    rows = []
    for r in records:
        seconds = r["duration"]
        rows.append({
            "Aparty": r["caller"],
            "Customer Msisdn": r["called"],
            "Imei": r["imei"],
            "CallType": labels[r["kind"]],
            "Duration": f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}",
            "DateTime": r["time"].strftime('%Y/%m/%d %H:%M:%S'),
            "Cell ID": f"410-01-{SAMPLE_SITES.index((r['site'], r['lat'], r['lng'])) + 100}",
            "Location": r["site"],
            "Latitude": r["lat"],
            "Longitude": r["lng"],
        })
    return rows


def unlabelled_rows(records: List[Dict]) -> List[Dict]:
    """Headers no lookup table knows; columns are recognised from their values"""
    labels = CALL_TYPE_LABELS["unlabelled"]
    return [{
        "Caller Number": r["caller"],
        "Called Number": r["called"],
        "Device IMEI": r["imei"],
        "Event Type": labels[r["kind"]],
        "Call Duration": r["duration"],
        "Date": r["time"].strftime('%Y-%m-%d'),
        "Time": r["time"].strftime('%H:%M:%S'),
        "Site Name": f"{r['site']}|{r['lat']}|{r['lng']}",
    } for r in records]


FORMATS = {
    "standard": standard_rows,
    "vendor": vendor_rows,
    "unlabelled": unlabelled_rows,
}


def to_excel_bytes(rows: List[Dict], title: Optional[str] = None) -> bytes:
    """Workbook bytes for the rows, optionally under a one-line title block"""
    buffer = io.BytesIO()
    df = pd.DataFrame(rows)
    if title:
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            pd.DataFrame([[title]]).to_excel(writer, index=False, header=False)
            df.to_excel(writer, index=False, startrow=2)
    else:
        df.to_excel(buffer, index=False, engine='openpyxl')
    return buffer.getvalue()


def to_csv_bytes(rows: List[Dict]) -> bytes:
    return pd.DataFrame(rows).to_csv(index=False).encode('utf-8')


def generate_sample(fmt: str = "standard", record_count: int = 50,
                    rng: Optional[random.Random] = None) -> bytes:
    """Workbook bytes of one sample format"""
    if fmt not in FORMATS:
        raise ValueError(f"Unknown sample format: {fmt}")
    return to_excel_bytes(FORMATS[fmt](generate_records(record_count, rng)))


def write_samples(output_dir: str = "samples", record_count: int = 50, seed: Optional[int] = None) -> List[Path]:
    """Write one workbook per sample format"""
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    rng = random.Random(seed)

    paths = []
    for fmt in FORMATS:
        path = Path(output_dir) / f"sample_{fmt}.xlsx"
        path.write_bytes(generate_sample(fmt, record_count, rng))
        logger.info(f"Generated {fmt} format: {path}")
        paths.append(path)
    return paths
