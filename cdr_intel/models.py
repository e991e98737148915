from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

from cdr_intel.utils import utcnow


class CallType(str, Enum):
    CALL_OUTGOING = "call_outgoing"
    CALL_INCOMING = "call_incoming"
    SMS_SENT = "sms_sent"
    SMS_RECEIVED = "sms_received"

    @property
    def is_call(self) -> bool:
        return self in (CallType.CALL_OUTGOING, CallType.CALL_INCOMING)

    @property
    def is_sms(self) -> bool:
        return self in (CallType.SMS_SENT, CallType.SMS_RECEIVED)


class ProcessingStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisType(str, Enum):
    FILE_STATS = "fileStats"
    TOP_CALL_NUMBERS = "topCallNumbers"
    TOP_TALK_TIME_NUMBERS = "topTalkTimeNumbers"
    TOP_OUTGOING_TALK_TIME = "topOutgoingTalkTime"
    TOP_INCOMING_TALK_TIME = "topIncomingTalkTime"
    TOP_SMS_SENT_NUMBERS = "topSmsSentNumbers"
    TOP_SMS_RECEIVED_NUMBERS = "topSmsReceivedNumbers"
    TOP_OUTGOING_CALLS = "topOutgoingCalls"
    TOP_INCOMING_CALLS = "topIncomingCalls"
    TOP_OUTGOING_SMS = "topOutgoingSMS"
    TOP_INCOMING_SMS = "topIncomingSMS"
    LOCATION_ANALYSIS = "locationAnalysis"
    MOVEMENT_PATTERNS = "movementPatterns"
    DETAILED_LOCATION_TIMELINE = "detailedLocationTimeline"
    IMEI_CHANGES = "imeiChanges"


class CDRRecord(BaseModel):
    """CDR Record Model - Canonical Normalized Schema"""
    model_config = ConfigDict(
        frozen=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    # Parties
    caller_number: str = Field(..., min_length=1)  # A-party
    called_number: str = ""  # B-party

    # Device identifier
    imei: str = ""

    # Call metadata
    call_type: CallType = CallType.CALL_OUTGOING
    duration: int = Field(0, ge=0)  # seconds
    timestamp: datetime

    # Location data
    location: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Ingestion batch
    upload_id: str = ""

    @property
    def is_call(self) -> bool:
        return CallType(self.call_type).is_call

    @property
    def is_sms(self) -> bool:
        return CallType(self.call_type).is_sms

    @property
    def coordinates(self) -> Optional[Dict[str, float]]:
        if self.latitude and self.longitude:
            return {"lat": self.latitude, "lng": self.longitude}
        return None


class FileUpload(BaseModel):
    """Batch descriptor kept by the record store"""
    model_config = ConfigDict(use_enum_values=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    filename: str
    original_name: str
    total_records: int = 0
    unique_numbers: int = 0
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# Analysis result shapes. Analyzers emit these as camelCase dicts via dump().

class ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> Dict:
        return self.model_dump(by_alias=True)


class TopNumbersResult(ResultModel):
    rank: int
    number: str
    value: int
    display_value: str


class PeakActivity(ResultModel):
    hour: str
    day: str
    score: int


class CommunicationMix(ResultModel):
    voice: int
    sms: int
    voice_percent: int
    sms_percent: int


class LocationAnalysisResult(ResultModel):
    location: str
    coordinates: Dict[str, float]
    calls: int
    duration: int
    numbers: List[str]
    time_range: Dict[str, str]
    primary_number: str
    peak_activity: PeakActivity
    communication_mix: CommunicationMix
    avg_duration: int
    unique_contacts: int


class DetailedRecord(ResultModel):
    timestamp: str
    call_type: str
    number: str
    duration: int


class LocationActivity(ResultModel):
    incoming_calls: int = 0
    outgoing_calls: int = 0
    incoming_sms: int = 0
    outgoing_sms: int = 0
    total_duration: int = 0
    top_contacted_number: str = ""
    top_contact_count: int = 0
    stay_duration: str = "0m"
    unique_contacts: int = 0
    incoming_call_numbers: List[str] = []
    outgoing_call_numbers: List[str] = []
    incoming_sms_numbers: List[str] = []
    outgoing_sms_numbers: List[str] = []
    total_call_numbers: int = 0
    total_sms_numbers: int = 0
    detailed_records: List[DetailedRecord] = []


class LocationChangeResult(ResultModel):
    subscriber: str
    change_time: str
    from_location: str
    to_location: str
    coordinates: Optional[Dict[str, float]] = None
    activity_in_new_location: LocationActivity


class MovementChange(ResultModel):
    from_location: str
    to_location: str
    timestamp: str
    calls_after: int
    duration_after: int


class LocationMovementResult(ResultModel):
    number: str
    changes: List[MovementChange]
    total_changes: int
    mobility_level: str


class IMEIChange(ResultModel):
    timestamp: str
    old_imei: str = Field(..., alias="oldIMEI")
    new_imei: str = Field(..., alias="newIMEI")
    calls_after: int
    duration_after: int
    sms_after: Dict[str, int]


class IMEIChangeResult(ResultModel):
    number: str
    changes: List[IMEIChange]
    total_changes: int


class DaySummary(ResultModel):
    date: str
    label: str
    calls: int
    sms: int
    duration: int
    total: int


class NumberProfile(ResultModel):
    number: str
    total_days: int
    total_calls: int
    total_sms: int
    total_duration: int
    avg_per_day: float
    most_active_day: Optional[DaySummary] = None
    least_active_day: Optional[DaySummary] = None
    daily_breakdown: List[Dict]


class DailyStats(ResultModel):
    date: str
    incoming_calls: int = 0
    outgoing_calls: int = 0
    incoming_sms: int = 0
    outgoing_sms: int = 0


class FileStats(ResultModel):
    total_records: int
    unique_numbers: int
    date_range: str
    date_range_days: int
    processing_time: str
    total_calls: int = 0
    total_sms: int = 0
    total_duration: int = 0
    daily_breakdown: List[DailyStats]


# Canonical column vocabulary
A_PARTY = "A-Party"
B_PARTY = "B-Party"
IMEI = "IMEI"
IMSI = "IMSI"
CALL_TYPE = "Call Type"
DURATION = "Duration"
DATE_AND_TIME = "Date And Time"
DATE = "Date"
TIME = "Time"
CELL_ID = "Cell ID"
SITE_LOCATION = "SiteLocation"
LATITUDE = "Latitude"
LONGITUDE = "Longitude"

# Known vendor header spellings. Matched before any value-based inference.
EXACT_HEADER_MAPPING = {
    A_PARTY: ["A-Party", "Aparty", "aparty", "A_Party", "AParty", "A Party", "a_party"],
    B_PARTY: ["B-Party", "BParty", "bparty", "B_Party", "B Party", "b_party",
              "Customer Msisdn", "customer msisdn", "Customer MSISDN",
              "Msisdn", "msisdn", "MSISDN",
              "Customer Number", "customer number"],
    CALL_TYPE: ["Call Type", "CallType", "calltype", "call_type"],
    DATE_AND_TIME: ["Date And Time", "Datetime", "datetime", "DateTime", "Date Time", "date_time"],
    DATE: ["Date", "date"],
    TIME: ["Time", "time"],
    IMEI: ["IMEI", "Imei", "imei"],
    IMSI: ["IMSI", "Imsi", "imsi"],
    DURATION: ["Duration", "duration"],
    CELL_ID: ["Cell ID", "cellid", "CellID", "cell_id"],
    SITE_LOCATION: ["SiteLocation", "Location", "location", "Site Location", "site_location"],
    LATITUDE: ["Latitude", "latitude", "Lat", "lat"],
    LONGITUDE: ["Longitude", "longitude", "Lng", "lng", "Lon", "lon"],
}
