"""
Schema normalization for vendor CDR exports.

Column headers are mapped onto the canonical vocabulary in two tiers:

1. exact header lookup against known vendor spellings (``EXACT_HEADER_MAPPING``),
   case-sensitive first, then case-insensitive;
2. pattern inference for the columns still unmapped, combining header hints
   with the shape of the first sample values.

A canonical name claimed by the first tier is never reassigned by the second.
Columns that match nothing keep their original label.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cdr_intel.models import (
    A_PARTY, B_PARTY, CALL_TYPE, DATE_AND_TIME, DURATION, EXACT_HEADER_MAPPING,
    IMEI, SITE_LOCATION,
)
from cdr_intel.utils import cell_text, clean_value, is_excel_serial, is_number, parse_datetime

logger = logging.getLogger(__name__)

SAMPLE_ROWS = 10
SAMPLE_VALUES = 5

PHONE_PATTERN = re.compile(r'^[0-9+\-\s()]{8,20}$')
IMEI_PATTERN = re.compile(r'^[0-9E\+\-\.]{12,20}$')

A_PARTY_TOKENS = {'a', 'aparty', 'anumber', 'caller', 'calling', 'source', 'from', 'originating'}
A_PARTY_WORDS = ['caller', 'source', 'from']
B_PARTY_TOKENS = {'b', 'bparty', 'bnumber', 'called', 'dest', 'to'}
B_PARTY_WORDS = ['called', 'dest', 'customer', 'msisdn', 'subscriber']
MSISDN_WORDS = ['msisdn', 'customer', 'subscriber']


class ColumnProfile:
    """Header hints and value shape of a single column"""

    def __init__(self, header: str, samples: Sequence):
        self.header = header
        self.name = str(header).lower().strip()
        self.tokens = {t for t in re.split(r'[^a-z0-9]+', self.name) if t}
        self.values = [v for v in (clean_value(s) for s in samples) if v is not None][:SAMPLE_VALUES]
        self.texts = [cell_text(v) for v in self.values]

    def mentions(self, *words: str) -> bool:
        return any(word in self.name for word in words)

    # Value shapes

    @property
    def has_phone_numbers(self) -> bool:
        return any(PHONE_PATTERN.match(t) for t in self.texts)

    @property
    def is_phone_header(self) -> bool:
        return bool(PHONE_PATTERN.match(self.name))

    @property
    def is_msisdn_header(self) -> bool:
        return self.mentions(*MSISDN_WORDS)

    @property
    def is_phone_like(self) -> bool:
        return self.has_phone_numbers or self.is_phone_header or self.is_msisdn_header

    @property
    def has_dates(self) -> bool:
        for value in self.values:
            if is_number(value):
                if is_excel_serial(value):
                    return True
                continue
            if parse_datetime(value) is not None:
                return True
        return False

    @property
    def has_imeis(self) -> bool:
        return any(
            len(t) >= 12 and re.search(r'[0-9]', t) and ('E+' in t or IMEI_PATTERN.match(t))
            for t in self.texts
        )

    @property
    def has_call_types(self) -> bool:
        return any(
            any(word in t.lower() for word in ('call', 'sms', 'incoming', 'outgoing'))
            for t in self.texts
        )

    @property
    def has_durations(self) -> bool:
        return all(is_number(v) and float(v) >= 0 for v in self.values)

    @property
    def has_locations(self) -> bool:
        return any('|' in t or len(t) > 10 for t in self.texts)

    # Header hints

    @property
    def a_party_hint(self) -> bool:
        return bool(self.tokens & A_PARTY_TOKENS) or self.mentions(*A_PARTY_WORDS)

    @property
    def b_party_hint(self) -> bool:
        return bool(self.tokens & B_PARTY_TOKENS) or self.mentions(*B_PARTY_WORDS)


def _is_a_party(col: ColumnProfile) -> bool:
    if not col.is_phone_like:
        return False
    # A bare phone-number header defaults to the A-party
    return col.a_party_hint or (col.is_phone_header and not col.b_party_hint)


def _is_b_party(col: ColumnProfile) -> bool:
    return col.is_phone_like and not col.a_party_hint and col.b_party_hint


def _is_date_and_time(col: ColumnProfile) -> bool:
    return col.mentions('date', 'time') and col.has_dates


def _is_imei(col: ColumnProfile) -> bool:
    return col.mentions('imei', 'device') and col.has_imeis


def _is_call_type(col: ColumnProfile) -> bool:
    return col.mentions('type', 'call') and col.has_call_types


def _is_duration(col: ColumnProfile) -> bool:
    return col.mentions('duration', 'time') and col.has_durations


def _is_site_location(col: ColumnProfile) -> bool:
    return col.mentions('location', 'site', 'cell') and col.has_locations


# Ordered (canonical name, matcher) rules of the inference tier
INFERENCE_RULES: List[Tuple[str, Callable[[ColumnProfile], bool]]] = [
    (A_PARTY, _is_a_party),
    (B_PARTY, _is_b_party),
    (DATE_AND_TIME, _is_date_and_time),
    (IMEI, _is_imei),
    (CALL_TYPE, _is_call_type),
    (DURATION, _is_duration),
    (SITE_LOCATION, _is_site_location),
]

_EXACT = {alias: canonical for canonical, aliases in EXACT_HEADER_MAPPING.items() for alias in aliases}
_EXACT_FOLDED = {}
for _alias, _canonical in _EXACT.items():
    _EXACT_FOLDED.setdefault(_alias.lower().strip(), _canonical)


def exact_match(header) -> Optional[str]:
    """Canonical name for a known header spelling"""
    header = str(header)
    if header in _EXACT:
        return _EXACT[header]
    return _EXACT_FOLDED.get(header.lower().strip())


def infer_column(header, samples: Sequence) -> Optional[str]:
    """Canonical name inferred from header hints and sample values"""
    profile = ColumnProfile(header, samples)
    for canonical, matcher in INFERENCE_RULES:
        if matcher(profile):
            return canonical
    return None


def build_column_mapping(columns: Sequence, rows: Sequence[Dict]) -> Dict:
    """Map original column labels to canonical names"""
    mapping = {}
    claimed = set()

    # First pass: exact mapping (absolute priority)
    for column in columns:
        canonical = exact_match(column)
        if canonical and canonical not in claimed:
            mapping[column] = canonical
            claimed.add(canonical)
            logger.debug(f"Exact match: '{column}' -> '{canonical}'")

    # Second pass: pattern inference for unmapped columns only
    sample = rows[:SAMPLE_ROWS]
    for column in columns:
        if column in mapping:
            continue
        canonical = infer_column(column, [row.get(column) for row in sample])
        if canonical and canonical not in claimed:
            mapping[column] = canonical
            claimed.add(canonical)
            logger.debug(f"Auto-detected: '{column}' -> '{canonical}' (based on data pattern)")

    return mapping


def normalize(rows: List[Dict], columns: Optional[Sequence] = None) -> List[Dict]:
    """Rewrite raw row keys onto the canonical vocabulary"""
    if not rows:
        return []

    if columns is None:
        columns = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

    mapping = build_column_mapping(columns, rows)
    logger.info(f"Column mapping: {mapping}")

    targets = set(mapping.values())
    normalized = []
    for row in rows:
        normalized_row = {}
        for key, value in row.items():
            if key in mapping:
                normalized_row[mapping[key]] = value
            elif key not in targets:
                normalized_row[key] = value
            # An unmapped column named like a claimed canonical field is dropped
        normalized.append(normalized_row)
    return normalized
