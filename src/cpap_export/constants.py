"""
Constants for CPAP/oximetry session export.

Byte offsets and device values follow the on-card formats written by
ResMed AirSense/AirCurve machines and the SpO2 Assistant oximeter software.
"""

from pathlib import Path

# ============================================================================
# EDF / EDF+ Container
# ============================================================================

EDF_HEADER_SIZE = 256
EDF_SIGNAL_HEADER_SIZE = 256
EDF_BYTES_PER_SAMPLE = 2

# Reserved field values (bytes 192-236 of the main header)
EDF_PLUS_CONTINUOUS = "EDF+C"
EDF_PLUS_DISCONTINUOUS = "EDF+D"

EDF_ANNOTATIONS_LABEL = "EDF Annotations"

# TAL delimiters used inside the EDF Annotations signal
TAL_SEPARATOR = 0x14
TAL_DURATION = 0x15
TAL_END = 0x00

# Identification fields written into exported files
ANONYMOUS_PATIENT_ID = "X X X X"
RECORDING_ID_TEMPLATE = "Startdate {date} X X X"

# ============================================================================
# ResMed
# ============================================================================

RESMED_SUMMARY_FILE = "STR.edf"
RESMED_SESSION_SUFFIX = "_brp.edf"
RESMED_FILE_SUFFIX = ".edf"

# Every ResMed EDF file observed so far uses 60 second data records
RESMED_RECORD_DURATION = 60.0

# Housekeeping channels that never carry physiological data
RESMED_HOUSEKEEPING_LABELS = ("EDF Annotations", "Crc16", "")

# Sensors that keep a channel slot even when nothing is plugged in
RESMED_OPTIONAL_SENSORS = ("spo2", "pulse")

# ============================================================================
# SpO2 Assistant (.spo2 flat export)
# ============================================================================

SPO2_FILE_SUFFIX = ".spo2"

SPO2_DATE_OFFSET = 200  # six u32: year, month, day, hour, minute, second
SPO2_SAMPLE_COUNT_OFFSET = 224  # u32
SPO2_PAYLOAD_OFFSET = 228

SPO2_NO_READING = (0x7F, 0xFF)

SPO2_SAMPLE_INTERVAL = 1.0  # seconds between oximeter readings
SPO2_RECORD_DURATION = 30.0

# Decode in chunks so progress is reported periodically, not per sample
SPO2_PROGRESS_INTERVAL = 500

# ============================================================================
# Default Settings
# ============================================================================

DEFAULT_CONFIG_DIR = Path.home() / ".cpap_export"
DEFAULT_CONFIG_FILE = "config.toml"

# Logging configuration
DEFAULT_LOG_DIR = DEFAULT_CONFIG_DIR / "logs"
DEFAULT_LOG_FILE = "cpap_export.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

# Output naming (matches the download name of the web front-end)
EXPORT_FILENAME_FORMAT = "%Y-%m-%d_%H-%M-%S"
EXPORT_FILE_EXTENSION = ".edf"

# Time calculations
SECONDS_PER_HOUR = 3600
MILLISECONDS_PER_SECOND = 1000
