import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Store
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "cdr_intelligence")
CDR_STORE = os.getenv("CDR_STORE", "memory").lower()

# Logging
LOG_LEVEL = os.getenv("CDR_LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("CDR_LOG_DIR", "")

# File Uploads
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", 50))
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

# Numeric spreadsheet timestamps are authored in a single local zone (UTC+5);
# this shift is subtracted to get back to UTC.
SERIAL_DATE_OFFSET_HOURS = float(os.getenv("CDR_SERIAL_DATE_OFFSET_HOURS", 5))

# Analysis limits
TOP_NUMBERS_LIMIT = 200
LOCATION_LIMIT = 30
LOCATION_MIN_INTERACTIONS = 3
LOCATION_TIMELINE_LIMIT = 20
MOVEMENT_LIMIT = 50
IMEI_CHANGE_LIMIT = 50
NUMBER_PROFILE_DAYS = 90

# Text timestamps outside this year window are treated as misparsed
MIN_PLAUSIBLE_YEAR = 2010
MAX_PLAUSIBLE_YEAR = int(os.getenv("CDR_MAX_PLAUSIBLE_YEAR", 2024))
