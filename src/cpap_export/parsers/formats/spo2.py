"""
SpO2 Assistant flat oximetry export (.spo2).

Layout (all integers little-endian):
- u16 at offset 0: offset h of the header block
- six u32 at h+200..h+220: year, month, day, hour, minute, second
- u32 at h+224: sample count
- payload from h+228: one record per 1 Hz sample

Record size is derived from the file size rather than assumed, since some
exports pad each record. The SpO2/pulse byte pair sits at the end of the
record. The pair (0x7F, 0xFF) marks a missing reading.
"""

import logging
import struct

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import numpy as np

from cpap_export.constants import (
    SPO2_DATE_OFFSET,
    SPO2_NO_READING,
    SPO2_PAYLOAD_OFFSET,
    SPO2_PROGRESS_INTERVAL,
    SPO2_SAMPLE_COUNT_OFFSET,
    SPO2_SAMPLE_INTERVAL,
)
from cpap_export.parsers.formats.types import EDFHeader, EDFSignalInfo

logger = logging.getLogger(__name__)


def oximetry_signals(samples_per_record: int) -> list[EDFSignalInfo]:
    """Fixed channel table of an SpO2 Assistant recording."""
    return [
        EDFSignalInfo(
            label="SpO2",
            transducer="PPG oximeter",
            physical_dimension="%",
            physical_min=0,
            physical_max=100,
            digital_min=0,
            digital_max=255,
            samples_per_record=samples_per_record,
            signal_index=0,
        ),
        EDFSignalInfo(
            label="Pulse",
            transducer="PPG pulse sensor",
            physical_dimension="bpm",
            physical_min=0,
            physical_max=250,
            digital_min=0,
            digital_max=255,
            samples_per_record=samples_per_record,
            signal_index=1,
        ),
    ]


def _parse_layout(data: bytes) -> tuple[int, datetime, int] | None:
    """Return (header offset, start time, sample count), or None if absent."""
    if len(data) < 2:
        return None

    (header_offset,) = struct.unpack_from("<H", data, 0)
    if header_offset + SPO2_PAYLOAD_OFFSET > len(data):
        return None

    year, month, day, hour, minute, second = struct.unpack_from(
        "<6I", data, header_offset + SPO2_DATE_OFFSET
    )
    (samples,) = struct.unpack_from(
        "<I", data, header_offset + SPO2_SAMPLE_COUNT_OFFSET
    )

    try:
        start = datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None

    return header_offset, start, samples


def _build_header(start: datetime, samples: int) -> EDFHeader:
    return EDFHeader(
        start_datetime=start,
        num_data_records=samples,
        record_duration=SPO2_SAMPLE_INTERVAL,
        num_signals=2,
        signals=oximetry_signals(1),
    )


def read_spo2_header(file_path: Path) -> EDFHeader | None:
    """
    Decode the header of a .spo2 export.

    The header describes one 1-second record per oximeter sample, so the
    recording ends `sample count` seconds after its (naive, local) start.
    """
    try:
        data = Path(file_path).read_bytes()
    except OSError as e:
        logger.warning(f"Could not read {file_path}: {e}")
        return None

    layout = _parse_layout(data)
    if layout is None:
        logger.warning(f"{Path(file_path).name}: no SpO2 Assistant header found")
        return None

    _, start, samples = layout
    return _build_header(start, samples)


def decode_spo2(
    file_path: Path,
    on_progress: Callable[[int], None] | None = None,
) -> tuple[EDFHeader, np.ndarray, np.ndarray] | None:
    """
    Decode SpO2 and pulse samples from a .spo2 export.

    Samples are decoded in chunks of SPO2_PROGRESS_INTERVAL and progress is
    reported once per chunk. A file truncated mid-payload yields fewer
    samples than its header declares.

    Returns:
        (header, spo2 values, pulse values), or None if the header is absent
    """
    data = Path(file_path).read_bytes()
    layout = _parse_layout(data)
    if layout is None:
        return None

    header_offset, start, samples = layout
    header = _build_header(start, samples)

    if samples == 0:
        return header, np.zeros(0), np.zeros(0)

    payload_start = header_offset + SPO2_PAYLOAD_OFFSET
    stride = max((len(data) - payload_start) // samples, 2)
    first_pair = payload_start + stride - 2

    remaining = len(data) - first_pair - 2
    available = remaining // stride + 1 if remaining >= 0 else 0
    count = min(samples, available)
    if count < samples:
        logger.warning(
            f"{Path(file_path).name}: header declares {samples} samples but only "
            f"{count} are present"
        )

    raw = np.frombuffer(data, dtype=np.uint8)
    spo2 = np.zeros(count, dtype=np.float64)
    pulse = np.zeros(count, dtype=np.float64)

    for lo in range(0, count, SPO2_PROGRESS_INTERVAL):
        hi = min(lo + SPO2_PROGRESS_INTERVAL, count)
        positions = first_pair + np.arange(lo, hi) * stride
        spo2_chunk = raw[positions]
        pulse_chunk = raw[positions + 1]

        missing = (spo2_chunk == SPO2_NO_READING[0]) & (
            pulse_chunk == SPO2_NO_READING[1]
        )
        spo2[lo:hi] = np.where(missing, 0, spo2_chunk)
        pulse[lo:hi] = np.where(missing, 0, pulse_chunk)

        if on_progress:
            on_progress(round(hi * 100 / samples))

    logger.debug(
        f"Decoded {count} oximetry samples from {Path(file_path).name} "
        f"({stride} bytes per record)"
    )
    return header, spo2, pulse
