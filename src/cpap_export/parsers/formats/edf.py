"""
EDF/EDF+ File Format Reader and Writer

Generic reader for European Data Format (EDF) and EDF+ files as written by
ResMed machines, plus an EDF+ writer for exported sessions.

Two decoding paths exist:
- EDFReader: pyedflib-backed, for regular EDF and continuous EDF+C files.
- EDFDiscontinuousReader: direct byte parsing, for discontinuous EDF+D files
  which pyedflib refuses to open.

Header-only decoding (read_edf_header) never touches pyedflib. It parses the
fixed header and signal table directly and looks up the time-keeping
annotation of the final data record, so session boundaries can be found
without materializing any samples.
"""

import logging

from datetime import datetime
from pathlib import Path

import numpy as np
import pyedflib

from cpap_export.constants import (
    EDF_ANNOTATIONS_LABEL,
    EDF_BYTES_PER_SAMPLE,
    EDF_HEADER_SIZE,
    EDF_SIGNAL_HEADER_SIZE,
    TAL_DURATION,
    TAL_END,
    TAL_SEPARATOR,
)
from cpap_export.parsers.formats.types import (
    EDFAnnotation,
    EDFFile,
    EDFHeader,
    EDFSignalInfo,
)

logger = logging.getLogger(__name__)

# Signal table field widths, in file order
_SIGNAL_FIELDS = (
    ("label", 16),
    ("transducer", 80),
    ("physical_dimension", 8),
    ("physical_min", 8),
    ("physical_max", 8),
    ("digital_min", 8),
    ("digital_max", 8),
    ("prefiltering", 80),
    ("samples_per_record", 8),
    ("reserved", 32),
)


def _ascii(field: bytes) -> str:
    return field.decode("ascii", errors="ignore").strip()


def _is_annotation_label(label: str) -> bool:
    return label.startswith(EDF_ANNOTATIONS_LABEL)


def _parse_start_datetime(date_str: str, time_str: str) -> datetime:
    """Parse the dd.mm.yy / hh.mm.ss start fields (years 85-99 are 19xx)."""
    day, month, year = (int(part) for part in date_str.split("."))
    hour, minute, second = (int(part) for part in time_str.split("."))
    year += 1900 if year >= 85 else 2000
    return datetime(year, month, day, hour, minute, second)


def _parse_signal_table(table: bytes, num_signals: int) -> list[EDFSignalInfo]:
    """Decode the per-signal header block (num_signals * 256 bytes)."""
    columns: dict[str, list[str]] = {}
    pos = 0
    for name, width in _SIGNAL_FIELDS:
        columns[name] = [
            _ascii(table[pos + i * width : pos + (i + 1) * width])
            for i in range(num_signals)
        ]
        pos += width * num_signals

    signals = []
    for i in range(num_signals):
        signals.append(
            EDFSignalInfo(
                label=columns["label"][i],
                transducer=columns["transducer"][i],
                physical_dimension=columns["physical_dimension"][i],
                physical_min=float(columns["physical_min"][i]),
                physical_max=float(columns["physical_max"][i]),
                digital_min=int(columns["digital_min"][i]),
                digital_max=int(columns["digital_max"][i]),
                prefiltering=columns["prefiltering"][i],
                samples_per_record=int(columns["samples_per_record"][i]),
                reserved=columns["reserved"][i],
                signal_index=i,
            )
        )
    return signals


def _record_layout(header: EDFHeader) -> tuple[int, int]:
    """Return (data offset, bytes per data record) for a parsed header."""
    data_offset = EDF_HEADER_SIZE + header.num_signals * EDF_SIGNAL_HEADER_SIZE
    record_size = sum(s.samples_per_record for s in header.signals) * (
        EDF_BYTES_PER_SAMPLE
    )
    return data_offset, record_size


def _annotation_slot(header: EDFHeader) -> tuple[int, int] | None:
    """Byte offset and size of the first annotation signal inside a record."""
    pos = 0
    for signal in header.signals:
        size = signal.samples_per_record * EDF_BYTES_PER_SAMPLE
        if _is_annotation_label(signal.label):
            return pos, size
        pos += size
    return None


def _parse_tal_onset(data: bytes) -> float | None:
    """Onset of the leading time-stamped annotation list in a record."""
    head = data.split(bytes([TAL_SEPARATOR]), 1)[0]
    head = head.split(bytes([TAL_DURATION]), 1)[0]
    if not head or head[:1] not in (b"+", b"-"):
        return None
    try:
        return float(head.decode("ascii"))
    except ValueError:
        return None


def _parse_annotation_bytes(data: bytes) -> list[EDFAnnotation]:
    """
    Parse annotation bytes using EDF+ delimiter format.

    Format: +onset\\x15duration\\x14Text\\x14Text\\x14\\x00
    - Onset: required, starts with + or -, seconds from recording start
    - Duration: optional, follows \\x15
    - Text: zero or more texts separated by \\x14. A TAL without text is
      the record's time-keeping stamp and yields no annotation.
    - \\x00 terminates each TAL; trailing \\x00 bytes are padding
    """
    annotations = []

    for tal in data.split(bytes([TAL_END])):
        if not tal or tal[:1] not in (b"+", b"-"):
            continue

        parts = tal.split(bytes([TAL_SEPARATOR]))
        onset_str, _, duration_str = parts[0].partition(bytes([TAL_DURATION]))

        try:
            onset = float(onset_str.decode("ascii"))
        except ValueError:
            continue

        duration = None
        if duration_str:
            try:
                duration = float(duration_str.decode("ascii")) or None
            except ValueError:
                duration = None

        for text in parts[1:]:
            decoded = text.decode("utf-8", errors="ignore").strip()
            if decoded:
                annotations.append(
                    EDFAnnotation(onset_time=onset, duration=duration, description=decoded)
                )

    return annotations


def read_record_onset(file_path: Path, header: EDFHeader, index: int) -> float | None:
    """
    Read the time-keeping onset of one data record.

    EDF+ stores the true start of every record as the first TAL in its
    annotation signal. Returns None for plain EDF, for records past the end
    of a truncated file, or when the stamp cannot be parsed.
    """
    slot = _annotation_slot(header)
    if slot is None or index < 0:
        return None

    data_offset, record_size = _record_layout(header)
    slot_offset, slot_size = slot

    with open(file_path, "rb") as f:
        f.seek(data_offset + index * record_size + slot_offset)
        data = f.read(slot_size)

    if len(data) < slot_size:
        return None
    return _parse_tal_onset(data)


def read_edf_header(file_path: Path) -> EDFHeader | None:
    """
    Decode an EDF header without reading any samples.

    Returns None when the header is truncated or malformed; callers treat
    such files as corrupt and skip them. Files with zero or unknown (-1)
    record counts decode successfully so callers can decide what to do.
    """
    try:
        with open(file_path, "rb") as f:
            main = f.read(EDF_HEADER_SIZE)
            if len(main) < EDF_HEADER_SIZE:
                logger.warning(f"{file_path.name}: header truncated ({len(main)} bytes)")
                return None

            num_signals = int(_ascii(main[252:256]))
            table = f.read(num_signals * EDF_SIGNAL_HEADER_SIZE)
            if len(table) < num_signals * EDF_SIGNAL_HEADER_SIZE:
                logger.warning(f"{file_path.name}: signal table truncated")
                return None

        reserved = _ascii(main[192:236])
        header = EDFHeader(
            version=_ascii(main[0:8]),
            patient_info=_ascii(main[8:88]),
            recording_info=_ascii(main[88:168]),
            start_datetime=_parse_start_datetime(
                _ascii(main[168:176]), _ascii(main[176:184])
            ),
            num_data_records=int(_ascii(main[236:244])),
            record_duration=float(_ascii(main[244:252])),
            num_signals=num_signals,
            reserved=reserved,
            is_edf_plus=reserved.startswith("EDF+"),
            signals=_parse_signal_table(table, num_signals),
        )
    except (OSError, ValueError) as e:
        logger.warning(f"Could not decode EDF header of {file_path.name}: {e}")
        return None

    if header.num_data_records > 0:
        header.last_record_onset = read_record_onset(
            file_path, header, header.num_data_records - 1
        )

    return header


class EDFReader:
    """
    High-level EDF/EDF+ file reader backed by pyedflib.

    Usage:
        with EDFReader("data.edf") as edf:
            signals = edf.read_all_signals()
            annotations = edf.read_annotations()
    """

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self._edf_file: pyedflib.EdfReader | None = None
        self._signals: list[EDFSignalInfo] | None = None

    def __enter__(self) -> "EDFReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        """Open the EDF file."""
        if self._edf_file is not None:
            return

        if not self.file_path.exists():
            raise FileNotFoundError(f"EDF file not found: {self.file_path}")

        try:
            self._edf_file = pyedflib.EdfReader(str(self.file_path))
            logger.debug(f"Opened EDF file: {self.file_path.name}")
        except Exception as e:
            error_msg = str(e).lower()

            if "discontinuous" in error_msg:
                raise ValueError(
                    f"Failed to open EDF file: {self.file_path.name} is a discontinuous "
                    f"EDF+ file (EDF+D format); use EDFDiscontinuousReader instead."
                ) from e

            if (
                "number of datarecords" in error_msg
                or "not edf(+) or bdf(+) compliant" in error_msg
            ):
                raise ValueError(
                    f"Failed to open EDF file: {self.file_path.name} is not EDF(+) "
                    f"compliant. This usually indicates a corrupted or truncated file "
                    f"(e.g., SD card removed during recording). Error: {e}"
                ) from e

            raise ValueError(f"Failed to open EDF file: {e}") from e

    def close(self) -> None:
        """Close the EDF file."""
        if self._edf_file is not None:
            self._edf_file.close()
            self._edf_file = None
            logger.debug(f"Closed EDF file: {self.file_path.name}")

    def _handle(self) -> pyedflib.EdfReader:
        if self._edf_file is None:
            self.open()
        assert self._edf_file is not None
        return self._edf_file

    def get_signal_info(self) -> list[EDFSignalInfo]:
        """
        Get information about all data signals in the file.

        pyedflib already hides EDF+ annotation signals; indices here are
        pyedflib signal indices.
        """
        if self._signals is not None:
            return self._signals

        edf = self._handle()
        self._signals = []

        for i in range(edf.signals_in_file):
            label = edf.getLabel(i).strip()
            if _is_annotation_label(label):
                continue

            self._signals.append(
                EDFSignalInfo(
                    label=label,
                    transducer=edf.getTransducer(i).strip(),
                    physical_dimension=edf.getPhysicalDimension(i).strip(),
                    physical_min=edf.getPhysicalMinimum(i),
                    physical_max=edf.getPhysicalMaximum(i),
                    digital_min=edf.getDigitalMinimum(i),
                    digital_max=edf.getDigitalMaximum(i),
                    prefiltering=edf.getPrefilter(i).strip(),
                    samples_per_record=edf.samples_in_datarecord(i),
                    signal_index=i,
                )
            )

        logger.debug(f"Found {len(self._signals)} signals in {self.file_path.name}")
        return self._signals

    def read_signal(self, signal: EDFSignalInfo) -> np.ndarray:
        """
        Read physical values for one signal.

        Note:
            pyedflib's C library may print "read 0, less than X requested!!!"
            for ResMed files that mix annotation and data signals. These are
            harmless.
        """
        data = self._handle().readSignal(signal.signal_index)
        return np.asarray(data, dtype=np.float64)

    def read_all_signals(self) -> list[tuple[EDFSignalInfo, np.ndarray]]:
        """Read every data signal, in file order. Labels may repeat."""
        return [(signal, self.read_signal(signal)) for signal in self.get_signal_info()]

    def read_annotations(self) -> list[EDFAnnotation]:
        """Read EDF+ annotations (empty for plain EDF)."""
        edf = self._handle()
        if edf.filetype != pyedflib.FILETYPE_EDFPLUS:
            return []

        onsets, durations, texts = edf.readAnnotations()
        annotations = [
            EDFAnnotation(
                onset_time=float(onset),
                duration=float(duration) if duration > 0 else None,
                description=str(text),
            )
            for onset, duration, text in zip(onsets, durations, texts)
        ]
        logger.debug(
            f"Read {len(annotations)} annotations from {self.file_path.name}"
        )
        return annotations

    def __repr__(self) -> str:
        return f"<EDFReader file='{self.file_path.name}'>"


class EDFDiscontinuousReader:
    """
    Reader for discontinuous EDF+ (EDF+D) files using direct byte parsing.

    EDF+D files occur when there are gaps in recording (e.g., CPAP mask
    removal). pyedflib cannot open them, so samples are decoded straight
    from the data records with numpy and annotations are parsed from the
    TALs of every record.
    """

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self._header: EDFHeader | None = None
        self._raw: bytes | None = None

    def __enter__(self) -> "EDFDiscontinuousReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        """Read the header and file contents."""
        if self._raw is not None:
            return

        header = read_edf_header(self.file_path)
        if header is None:
            raise ValueError(f"Failed to open EDF+ file: {self.file_path.name}")

        self._header = header
        self._raw = self.file_path.read_bytes()
        logger.debug(f"Opened discontinuous EDF file: {self.file_path.name}")

    def close(self) -> None:
        self._raw = None
        self._header = None

    def _records(self) -> np.ndarray:
        """Complete data records as an (n_records, samples_per_record) int16 matrix."""
        header = self.get_header()
        assert self._raw is not None

        data_offset, record_size = _record_layout(header)
        samples_per_record = record_size // EDF_BYTES_PER_SAMPLE
        if samples_per_record == 0:
            return np.zeros((0, 0), dtype="<i2")

        available = max(len(self._raw) - data_offset, 0) // record_size
        n_records = min(max(header.num_data_records, 0), available)
        if n_records < header.num_data_records:
            logger.warning(
                f"{self.file_path.name}: header declares {header.num_data_records} "
                f"records but only {n_records} are present"
            )

        body = np.frombuffer(
            self._raw,
            dtype="<i2",
            count=n_records * samples_per_record,
            offset=data_offset,
        )
        return body.reshape(n_records, samples_per_record)

    def get_header(self) -> EDFHeader:
        if self._header is None:
            self.open()
        assert self._header is not None
        return self._header

    def read_all_signals(self) -> list[tuple[EDFSignalInfo, np.ndarray]]:
        """Decode every data signal to physical values, in file order."""
        records = self._records()
        result = []
        column = 0

        for signal in self.get_header().signals:
            width = signal.samples_per_record
            if not _is_annotation_label(signal.label):
                digital = records[:, column : column + width].reshape(-1)
                result.append((signal, signal.digital_to_physical(digital)))
            column += width

        return result

    def read_annotations(self) -> list[EDFAnnotation]:
        """Parse annotations from every record's annotation signal."""
        header = self.get_header()
        slot = _annotation_slot(header)
        if slot is None:
            return []

        records = self._records()
        start = slot[0] // EDF_BYTES_PER_SAMPLE
        width = slot[1] // EDF_BYTES_PER_SAMPLE

        annotations: list[EDFAnnotation] = []
        for record in records:
            annotations.extend(
                _parse_annotation_bytes(record[start : start + width].tobytes())
            )

        logger.debug(
            f"Parsed {len(annotations)} annotations from {self.file_path.name} "
            f"using direct parsing"
        )
        return annotations

    def __repr__(self) -> str:
        return f"<EDFDiscontinuousReader file='{self.file_path.name}'>"


def read_edf_file(file_path: Path, header: EDFHeader | None = None) -> EDFFile | None:
    """
    Fully decode an EDF file: header, physical samples and annotations.

    The returned header is the directly-parsed one (reserved field and final
    record onset included) with its signal table restricted to data signals.

    Returns None when the file cannot be decoded or holds no data records.
    """
    if header is None:
        header = read_edf_header(file_path)
    if header is None or header.num_data_records <= 0:
        return None

    reader_cls = EDFDiscontinuousReader if header.is_discontinuous else EDFReader
    try:
        with reader_cls(file_path) as edf:
            pairs = edf.read_all_signals()
            annotations = edf.read_annotations()
    except ValueError as e:
        logger.warning(str(e))
        return None

    signals = [signal for signal, _ in pairs]
    return EDFFile(
        header=header.model_copy(
            update={"signals": signals, "num_signals": len(signals)}
        ),
        values=[values for _, values in pairs],
        annotations=annotations,
    )


def write_edf_file(file_path: Path, edf_file: EDFFile) -> Path:
    """
    Encode a dataset as an EDF+ file with pyedflib.

    Every value array must hold exactly num_data_records * samples_per_record
    samples. Patient and recording identification are left blank, which
    pyedflib writes as the anonymous "X X X X" / "Startdate ... X X X" forms.

    Returns:
        The path written
    """
    header = edf_file.header
    if not header.signals:
        raise ValueError("Cannot write an EDF file without signals")

    signal_headers = [
        {
            "label": signal.label,
            "dimension": signal.physical_dimension,
            "sample_frequency": signal.samples_per_record / header.record_duration,
            "physical_min": signal.physical_min,
            "physical_max": signal.physical_max,
            "digital_min": signal.digital_min,
            "digital_max": signal.digital_max,
            "transducer": signal.transducer,
            "prefilter": signal.prefiltering,
        }
        for signal in header.signals
    ]

    file_path = Path(file_path)
    writer = pyedflib.EdfWriter(
        str(file_path), len(signal_headers), file_type=pyedflib.FILETYPE_EDFPLUS
    )
    try:
        writer.setDatarecordDuration(header.record_duration)
        writer.setSignalHeaders(signal_headers)
        writer.setStartdatetime(header.start_datetime)
        writer.writeSamples(
            [np.ascontiguousarray(values, dtype=np.float64) for values in edf_file.values]
        )
        for annotation in edf_file.annotations:
            writer.writeAnnotation(
                annotation.onset_time,
                annotation.duration if annotation.duration is not None else -1,
                annotation.description,
            )
    finally:
        writer.close()

    logger.info(
        f"Wrote {file_path.name}: {len(signal_headers)} signal(s), "
        f"{header.num_data_records} record(s), {len(edf_file.annotations)} annotation(s)"
    )
    return file_path
