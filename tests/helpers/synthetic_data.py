"""
Synthetic test data generators for reconciliation and oximetry tests.

Provides in-memory FileRecords (no files on disk) and flat .spo2 exports.
"""

import struct

from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from cpap_export.merge.reconciler import FileRecord
from cpap_export.parsers.formats.types import EDFAnnotation, EDFHeader, EDFSignalInfo

T0 = datetime(2024, 12, 8, 1, 39, 39)


def make_signal(label: str, samples_per_record: int, **overrides) -> EDFSignalInfo:
    """Channel descriptor with an identity digital->physical mapping."""
    fields = {
        "label": label,
        "physical_min": -32768,
        "physical_max": 32767,
        "digital_min": -32768,
        "digital_max": 32767,
        "samples_per_record": samples_per_record,
    }
    fields.update(overrides)
    return EDFSignalInfo(**fields)


def make_record(
    name: str,
    start: datetime,
    num_records: int,
    channels: dict[str, int],
    record_duration: float = 60.0,
    values: dict[str, np.ndarray] | None = None,
    annotations: list[EDFAnnotation] | None = None,
    end: datetime | None = None,
) -> FileRecord:
    """
    FileRecord with one channel per (label, samples_per_record) entry.

    Sample values default to the channel's global sample index counted from
    T0 (sample k sits at T0 + k / rate), so any duplicated or missing sample
    after a merge shows up as a break in an arithmetic sequence.
    """
    values = values or {}
    signals = []
    arrays = []
    offset_s = (start - T0).total_seconds()

    for label, spr in channels.items():
        signals.append(make_signal(label, spr))
        if label in values:
            arrays.append(np.asarray(values[label], dtype=np.float64))
        else:
            rate = spr / record_duration
            first = round(offset_s * rate)
            arrays.append(np.arange(first, first + num_records * spr, dtype=np.float64))

    header = EDFHeader(
        start_datetime=start,
        num_data_records=num_records,
        record_duration=record_duration,
        num_signals=len(signals),
        signals=signals,
    )
    return FileRecord(
        name=name,
        header=header,
        values=arrays,
        annotations=annotations or [],
        start=start,
        end=end or start + timedelta(seconds=num_records * record_duration),
    )


def build_spo2_bytes(
    start: datetime,
    pairs: list[tuple[int, int]],
    header_offset: int = 16,
    bytes_per_record: int = 2,
    declared_samples: int | None = None,
) -> bytes:
    """
    Flat SpO2 Assistant export.

    Each (spo2, pulse) pair is written at the end of a `bytes_per_record`
    sized record; the leading filler bytes are 0xAA.
    """
    header = bytearray(header_offset + 228)
    struct.pack_into("<H", header, 0, header_offset)
    struct.pack_into(
        "<6I",
        header,
        header_offset + 200,
        start.year,
        start.month,
        start.day,
        start.hour,
        start.minute,
        start.second,
    )
    samples = len(pairs) if declared_samples is None else declared_samples
    struct.pack_into("<I", header, header_offset + 224, samples)

    payload = bytearray()
    for spo2, pulse in pairs:
        payload += b"\xaa" * (bytes_per_record - 2)
        payload += bytes([spo2, pulse])

    return bytes(header + payload)


def write_spo2_file(path: Path, *args, **kwargs) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_spo2_bytes(*args, **kwargs))
    return path
