"""EDF format type definitions."""

from datetime import datetime, timedelta

import numpy as np

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cpap_export.constants import EDF_PLUS_DISCONTINUOUS


class EDFSignalInfo(BaseModel):
    """Information about a single EDF signal/channel."""

    label: str = Field(description="Signal name")
    transducer: str = Field(default="", description="Transducer type")
    physical_dimension: str = Field(
        default="", description="Units (e.g., 'cmH2O', 'L/s')"
    )
    physical_min: float = Field(description="Physical minimum value")
    physical_max: float = Field(description="Physical maximum value")
    digital_min: int = Field(description="Digital minimum value")
    digital_max: int = Field(description="Digital maximum value")
    prefiltering: str = Field(default="", description="Prefiltering info")
    samples_per_record: int = Field(ge=0, description="Samples per data record")
    reserved: str = Field(default="", description="Per-signal reserved field")
    signal_index: int = Field(default=0, ge=0, description="Signal index in file")

    @model_validator(mode="after")
    def check_ranges(self) -> "EDFSignalInfo":
        """Reject descriptors whose digital->physical mapping is undefined."""
        if self.digital_max <= self.digital_min:
            raise ValueError(
                f"Signal '{self.label}': digital_max ({self.digital_max}) must exceed "
                f"digital_min ({self.digital_min})"
            )
        if self.physical_max <= self.physical_min:
            raise ValueError(
                f"Signal '{self.label}': physical_max ({self.physical_max}) must exceed "
                f"physical_min ({self.physical_min})"
            )
        return self

    @property
    def gain(self) -> float:
        """Digital->physical gain."""
        return (self.physical_max - self.physical_min) / (
            self.digital_max - self.digital_min
        )

    @property
    def offset(self) -> float:
        """Digital->physical offset."""
        return self.physical_min - self.digital_min * self.gain

    def digital_to_physical(self, digital: np.ndarray) -> np.ndarray:
        """Scale raw samples to physical units."""
        return np.asarray(digital, dtype=np.float64) * self.gain + self.offset


class EDFAnnotation(BaseModel):
    """An EDF+ annotation (event marker with optional duration)."""

    onset_time: float = Field(description="Seconds from recording start")
    duration: float | None = Field(default=None, description="Duration (seconds)")
    description: str = Field(default="", description="Annotation text")


class EDFHeader(BaseModel):
    """EDF file header information."""

    version: str = Field(default="0", description="EDF version")
    patient_info: str = Field(default="", description="Patient identification")
    recording_info: str = Field(default="", description="Recording identification")
    start_datetime: datetime = Field(description="Recording start time")
    num_data_records: int = Field(description="Number of data records (-1 = unknown)")
    record_duration: float = Field(ge=0, description="Record duration (seconds)")
    num_signals: int = Field(ge=0, description="Number of signals")
    reserved: str = Field(default="", description="Reserved field (EDF+C / EDF+D)")
    is_edf_plus: bool = Field(default=False, description="EDF+ format flag")
    signals: list[EDFSignalInfo] = Field(
        default_factory=list, description="Signal table"
    )
    last_record_onset: float | None = Field(
        default=None, description="Onset of the final data record (seconds)"
    )

    @property
    def is_discontinuous(self) -> bool:
        """True for EDF+D files, whose records need not be contiguous."""
        return self.reserved.startswith(EDF_PLUS_DISCONTINUOUS)

    def record_onset(self, index: int) -> float:
        """Nominal onset of a data record, assuming contiguous records."""
        return index * self.record_duration

    def end_datetime(self) -> datetime:
        """
        End of the recording: start + (last record onset + record duration).

        Uses the decoded onset of the final record when available, which keeps
        the end time honest for files with gaps between records.
        """
        last_onset = self.last_record_onset
        if last_onset is None:
            last_onset = self.record_onset(max(self.num_data_records - 1, 0))
        return self.start_datetime + timedelta(
            seconds=last_onset + self.record_duration
        )


class EDFFile(BaseModel):
    """
    A complete EDF+ dataset: header, one physical sample array per signal,
    and annotations.

    This is the shape handed to the encoder. `values[i]` belongs to
    `header.signals[i]`.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    header: EDFHeader = Field(description="Header and signal table")
    values: list[np.ndarray] = Field(
        default_factory=list, description="Physical values per signal"
    )
    annotations: list[EDFAnnotation] = Field(
        default_factory=list, description="EDF+ annotations"
    )

    @model_validator(mode="after")
    def check_signal_alignment(self) -> "EDFFile":
        """Signal table and value arrays must pair up one-to-one."""
        if len(self.values) != len(self.header.signals):
            raise ValueError(
                f"{len(self.header.signals)} signal(s) declared but "
                f"{len(self.values)} value array(s) supplied"
            )
        return self

    @property
    def signal_labels(self) -> list[str]:
        """Labels in signal-table order."""
        return [signal.label for signal in self.header.signals]

    def get_values(self, label: str) -> np.ndarray | None:
        """Values for the first signal with this label."""
        for signal, values in zip(self.header.signals, self.values):
            if signal.label == label:
                return values
        return None
