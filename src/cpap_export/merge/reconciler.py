"""
Multi-file session reconciliation.

A session is recorded as several EDF files, each with its own clock origin,
sampling rates and channel subset. Reconciliation turns them into one
record-aligned dataset:

1. Decode every session file into a FileRecord (profile-specific decoder).
2. Index the records by absolute [start, end] and keep those overlapping
   the session bounds.
3. Align: the common time window of all candidates, truncated to a whole
   number of records measured from its start.
4. For each canonical label keep the highest-resolution channel (first
   inserted wins ties) and cut the window out of it.
5. Retime annotations that fall inside the window.

All times inside the engine are integer milliseconds since the Unix epoch,
computed from naive local datetimes.
"""

import logging
import math

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from pydantic import BaseModel, ConfigDict, Field

from cpap_export.constants import (
    ANONYMOUS_PATIENT_ID,
    EDF_PLUS_CONTINUOUS,
    MILLISECONDS_PER_SECOND,
    RECORDING_ID_TEMPLATE,
    SPO2_SAMPLE_INTERVAL,
)
from cpap_export.merge.interval_index import IntervalIndex
from cpap_export.merge.labels import canonicalize_labels, filter_signals
from cpap_export.merge.postprocess import drop_unfitted_sensors
from cpap_export.parsers.base import (
    InvalidFileError,
    NoOverlappingDataError,
    RecordDurationMismatchError,
)
from cpap_export.parsers.formats.edf import read_edf_file, read_edf_header
from cpap_export.parsers.formats.spo2 import decode_spo2, oximetry_signals
from cpap_export.parsers.formats.types import (
    EDFAnnotation,
    EDFFile,
    EDFHeader,
    EDFSignalInfo,
)
from cpap_export.parsers.types import DeviceProfile, ProgressCallback, Session

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the epoch for a naive datetime."""
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


class FileRecord(BaseModel):
    """One decoded session file, owned by a single reconciliation call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(description="Path relative to the session directory")
    header: EDFHeader = Field(description="Header with canonical data signals")
    values: list[np.ndarray] = Field(description="Physical values per signal")
    annotations: list[EDFAnnotation] = Field(default_factory=list)
    start: datetime = Field(description="File start")
    end: datetime = Field(description="File end after quirk policies")

    @property
    def start_ms(self) -> int:
        return to_epoch_ms(self.start)

    @property
    def end_ms(self) -> int:
        return to_epoch_ms(self.end)

    @property
    def duration(self) -> float:
        """Span in seconds."""
        return (self.end - self.start).total_seconds()

    @property
    def record_duration_ms(self) -> int:
        return round(self.header.record_duration * MILLISECONDS_PER_SECOND)


class FileDecoder(ABC):
    """Turns one session file into a FileRecord."""

    def __init__(self, profile: DeviceProfile):
        self.profile = profile

    @abstractmethod
    def decode(
        self,
        name: str,
        path: Path,
        session: Session,
        on_progress: ProgressCallback | None = None,
    ) -> FileRecord | None:
        """
        Decode a file, or return None to skip it.

        Raises:
            ParserError: If the file makes the whole session unusable
        """
        pass


class EDFFileDecoder(FileDecoder):
    """Decoder for EDF/EDF+ session files (ResMed)."""

    def __init__(
        self,
        profile: DeviceProfile,
        read_header=read_edf_header,
        read_file=read_edf_file,
    ):
        super().__init__(profile)
        self._read_header = read_header
        self._read_file = read_file

    def decode(
        self,
        name: str,
        path: Path,
        session: Session,
        on_progress: ProgressCallback | None = None,
    ) -> FileRecord | None:
        header = self._read_header(path)
        if header is None:
            logger.warning(f"Skipping {name}: unreadable EDF header")
            return None

        expected = self.profile.record_duration
        if header.record_duration != 0 and header.record_duration != expected:
            raise RecordDurationMismatchError(name, header.record_duration, expected)

        if header.num_data_records <= 0:
            logger.info(f"Skipping {name}: no data records")
            return None

        # Annotation-only files declare 0; the end stays as declared
        end = header.end_datetime()
        for end_time_policy in self.profile.end_time_policies:
            end = end_time_policy(header, end, session)

        if header.record_duration == 0:
            header = header.model_copy(update={"record_duration": expected})

        edf = self._read_file(path, header)
        if edf is None:
            logger.warning(f"Skipping {name}: could not decode samples")
            return None

        signals, values = filter_signals(
            edf.header.signals,
            edf.values,
            disallowed_labels=self.profile.housekeeping_labels,
        )
        signals = canonicalize_labels(signals, self.profile.synonyms)

        annotations = edf.annotations
        for annotation_policy in self.profile.annotation_policies:
            annotations = annotation_policy(annotations)

        logger.debug(
            f"Decoded {name}: {len(signals)} signal(s), {len(annotations)} "
            f"annotation(s), {header.start_datetime} -> {end}"
        )
        return FileRecord(
            name=name,
            header=header.model_copy(
                update={"signals": signals, "num_signals": len(signals)}
            ),
            values=values,
            annotations=annotations,
            start=header.start_datetime,
            end=end,
        )


class OximetryFileDecoder(FileDecoder):
    """Decoder for SpO2 Assistant .spo2 exports."""

    def decode(
        self,
        name: str,
        path: Path,
        session: Session,
        on_progress: ProgressCallback | None = None,
    ) -> FileRecord | None:
        decoded = decode_spo2(path, on_progress)
        if decoded is None:
            raise InvalidFileError(f"Invalid SpO2 file header: {name}")

        header, spo2, pulse = decoded
        if header.num_data_records <= 0:
            logger.info(f"Skipping {name}: no samples")
            return None

        samples_per_record = round(self.profile.record_duration / SPO2_SAMPLE_INTERVAL)
        signals = oximetry_signals(samples_per_record)

        return FileRecord(
            name=name,
            header=EDFHeader(
                start_datetime=header.start_datetime,
                num_data_records=math.ceil(header.num_data_records / samples_per_record),
                record_duration=self.profile.record_duration,
                num_signals=len(signals),
                signals=signals,
            ),
            values=[spo2, pulse],
            start=header.start_datetime,
            end=header.end_datetime(),
        )


def find_common_time_range(
    records: list[FileRecord], record_duration: float
) -> tuple[int, int]:
    """
    Aligned window shared by all records, in epoch milliseconds.

    start = latest start; end = earliest end, truncated down to a whole
    number of records measured from start.

    Raises:
        NoOverlappingDataError: If there are no records or the window is empty
    """
    if not records:
        raise NoOverlappingDataError("No session files overlap the session window")

    start = max(record.start_ms for record in records)
    raw_end = min(record.end_ms for record in records)
    if raw_end < start:
        raise NoOverlappingDataError(
            f"Session files share no common time range "
            f"({from_epoch_ms(start)} is after {from_epoch_ms(raw_end)})"
        )

    record_duration_ms = round(record_duration * MILLISECONDS_PER_SECOND)
    end = raw_end - (raw_end - start) % record_duration_ms
    if end <= start:
        raise NoOverlappingDataError(
            f"Common time range of session files is shorter than one "
            f"{record_duration}s record"
        )

    return start, end


def select_best_channels(records: list[FileRecord]) -> list[tuple[FileRecord, int]]:
    """
    Pick one source channel per label: highest samples_per_record wins,
    ties go to the first inserted. Result is in first-seen label order.
    """
    best: dict[str, tuple[FileRecord, int]] = {}
    for record in records:
        for index, signal in enumerate(record.header.signals):
            current = best.get(signal.label)
            if current is None:
                best[signal.label] = (record, index)
                continue
            current_record, current_index = current
            current_spr = current_record.header.signals[current_index].samples_per_record
            if signal.samples_per_record > current_spr:
                best[signal.label] = (record, index)
    return list(best.values())


def extract_samples(
    record: FileRecord, index: int, window_start: int, window_end: int
) -> np.ndarray:
    """
    Cut [window_start, window_end] out of one channel, without resampling.

    start index = floor(offset * spr / record_ms), end index = ceil(...),
    evaluated in integer arithmetic.
    """
    samples_per_record = record.header.signals[index].samples_per_record
    record_duration_ms = record.record_duration_ms

    start_offset = (window_start - record.start_ms) * samples_per_record
    end_offset = (window_end - record.start_ms) * samples_per_record
    start_idx = start_offset // record_duration_ms
    end_idx = -(-end_offset // record_duration_ms)

    return record.values[index][max(start_idx, 0) : max(end_idx, 0)]


def merge_signals(
    records: list[FileRecord], window_start: int, window_end: int
) -> tuple[list[EDFSignalInfo], list[np.ndarray]]:
    """Selected channel descriptors and their windowed sample arrays."""
    signals = []
    values = []
    for record, index in select_best_channels(records):
        signal = record.header.signals[index]
        signals.append(signal.model_copy(update={"signal_index": len(signals)}))
        values.append(extract_samples(record, index, window_start, window_end))
        logger.debug(
            f"Channel '{signal.label}' sourced from {record.name} "
            f"({signal.samples_per_record} samples/record)"
        )
    return signals, values


def retime_annotations(
    records: list[FileRecord], window_start: int, window_end: int
) -> list[EDFAnnotation]:
    """
    Annotations whose absolute time lies within the window, with onsets
    re-expressed relative to the window start.
    """
    annotations = []
    for record in records:
        shift = (record.start_ms - window_start) / MILLISECONDS_PER_SECOND
        for annotation in record.annotations:
            absolute = record.start_ms + annotation.onset_time * MILLISECONDS_PER_SECOND
            if window_start <= absolute <= window_end:
                annotations.append(
                    annotation.model_copy(
                        update={"onset_time": annotation.onset_time + shift}
                    )
                )
    return annotations


def conform_to_record_grid(
    signal: EDFSignalInfo, values: np.ndarray, num_data_records: int
) -> np.ndarray:
    """
    Pad or truncate a channel to exactly num_data_records * samples_per_record.

    Window-edge rounding can leave a channel a sample long or short; strict
    EDF consumers reject that. Padding is 0 clipped into the physical range.
    """
    expected = num_data_records * signal.samples_per_record
    values = np.asarray(values, dtype=np.float64)

    if len(values) > expected:
        return values[:expected]
    if len(values) < expected:
        fill = min(max(0.0, signal.physical_min), signal.physical_max)
        logger.debug(
            f"Padding '{signal.label}' with {expected - len(values)} sample(s)"
        )
        return np.concatenate([values, np.full(expected - len(values), fill)])
    return values


def _scaled_progress(
    on_progress: ProgressCallback | None, position: int, total: int
) -> ProgressCallback | None:
    """Map one file's 0..100 progress onto its share of the whole session."""
    if on_progress is None:
        return None

    def report(percent: int) -> None:
        on_progress(round((position * 100 + percent) / total))

    return report


class SessionReconciler:
    """
    Reconciles one session's files into a single EDF+ dataset.

    Usage:
        reconciler = SessionReconciler(RESMED_PROFILE, EDFFileDecoder(RESMED_PROFILE))
        edf_file = reconciler.reconcile(session)
    """

    def __init__(self, profile: DeviceProfile, decoder: FileDecoder):
        self.profile = profile
        self.decoder = decoder

    def _decode_all(
        self, session: Session, on_progress: ProgressCallback | None
    ) -> IntervalIndex[FileRecord]:
        index: IntervalIndex[FileRecord] = IntervalIndex()
        total = len(session.files)

        for position, (name, path) in enumerate(session.files.items()):
            record = self.decoder.decode(
                name, path, session, _scaled_progress(on_progress, position, total)
            )

            if record is not None:
                if record.end < record.start:
                    logger.warning(
                        f"Skipping {name}: end {record.end} precedes start {record.start}"
                    )
                else:
                    index.insert(record.start_ms, record.end_ms, record)

            if on_progress:
                on_progress(round((position + 1) * 100 / total))

        return index

    def reconcile(
        self, session: Session, on_progress: ProgressCallback | None = None
    ) -> EDFFile:
        """
        Merge a session's files.

        Raises:
            RecordDurationMismatchError: If a file declares a foreign record duration
            NoOverlappingDataError: If no usable common time window exists
            InvalidFileError: If a single-file session cannot be decoded
        """
        index = self._decode_all(session, on_progress)
        candidates = index.search(to_epoch_ms(session.start), to_epoch_ms(session.end))
        logger.debug(
            f"{len(candidates)} of {len(index)} decoded file(s) overlap "
            f"{session.start} -> {session.end}"
        )

        window_start, window_end = find_common_time_range(
            candidates, self.profile.record_duration
        )
        signals, values = merge_signals(candidates, window_start, window_end)
        annotations = retime_annotations(candidates, window_start, window_end)

        record_duration_ms = round(self.profile.record_duration * MILLISECONDS_PER_SECOND)
        num_data_records = math.ceil((window_end - window_start) / record_duration_ms)
        values = [
            conform_to_record_grid(signal, data, num_data_records)
            for signal, data in zip(signals, values)
        ]

        start = from_epoch_ms(window_start)
        header = EDFHeader(
            patient_info=ANONYMOUS_PATIENT_ID,
            recording_info=RECORDING_ID_TEMPLATE.format(
                date=start.strftime("%d-%b-%Y").upper()
            ),
            start_datetime=start,
            num_data_records=num_data_records,
            record_duration=self.profile.record_duration,
            num_signals=len(signals),
            reserved=EDF_PLUS_CONTINUOUS,
            is_edf_plus=True,
            signals=signals,
        )

        merged = drop_unfitted_sensors(
            EDFFile(header=header, values=values, annotations=annotations),
            self.profile.optional_sensors,
        )
        logger.info(
            f"Reconciled session {session.start}: {len(merged.header.signals)} "
            f"channel(s), {num_data_records} record(s), "
            f"{len(merged.annotations)} annotation(s)"
        )
        return merged
