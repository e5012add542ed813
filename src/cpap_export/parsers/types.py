"""Loader type definitions."""

from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cpap_export.parsers.formats.types import EDFAnnotation, EDFHeader

ProgressCallback = Callable[[int], None]


class LoaderMetadata(BaseModel):
    """Metadata about a loader implementation."""

    loader_id: str = Field(description="Unique loader identifier")
    loader_version: str = Field(description="Loader version")
    manufacturer: str = Field(description="Device manufacturer")
    supported_formats: list[str] = Field(description="Supported file formats")
    supported_models: list[str] = Field(
        default_factory=list, description="Supported device models"
    )
    description: str = Field(description="Loader description")


class Session(BaseModel):
    """
    One contiguous recording period plus its source files.

    `files` maps paths relative to the session's own subdirectory to files
    on disk, in discovery order.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime = Field(description="Session start (naive local time)")
    end: datetime = Field(description="Session end (naive local time)")
    files: dict[str, Path] = Field(default_factory=dict, description="Session files")

    @model_validator(mode="after")
    def check_bounds(self) -> "Session":
        if self.end < self.start:
            raise ValueError(f"Session end {self.end} precedes start {self.start}")
        return self

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


# (annotations) -> annotations, applied to every decoded file
AnnotationPolicy = Callable[[list[EDFAnnotation]], list[EDFAnnotation]]

# (file header, computed file end, session) -> corrected file end
EndTimePolicy = Callable[[EDFHeader, datetime, Session], datetime]


class DeviceProfile(BaseModel):
    """
    Static description of one device family's export layout.

    Quirk policies are plain functions (see parsers.quirks) so a new vendor
    deviation is a new function on a profile, not a branch in the merge code.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    profile_id: str = Field(description="Unique profile identifier")
    name: str = Field(description="Display name")
    marker_files: tuple[str, ...] = Field(
        default=(), description="Root-level files identifying the layout"
    )
    marker_suffix: str | None = Field(
        default=None, description="Any file with this suffix identifies the layout"
    )
    session_suffix: str = Field(description="Suffix of per-session marker files")
    file_suffix: str = Field(description="Suffix of files belonging to a session")
    group_siblings: bool = Field(
        default=True, description="Collect sibling files into each session"
    )
    record_duration: float = Field(gt=0, description="Fixed record duration (seconds)")
    synonyms: Mapping[str, tuple[str, ...]] = Field(
        default_factory=dict, description="Canonical label -> aliases"
    )
    housekeeping_labels: tuple[str, ...] = Field(
        default=(), description="Non-physiological channels to drop"
    )
    optional_sensors: tuple[str, ...] = Field(
        default=(), description="Sensors whose channels are dropped when empty"
    )
    annotation_policies: tuple[AnnotationPolicy, ...] = Field(default=())
    end_time_policies: tuple[EndTimePolicy, ...] = Field(default=())

    def matches_session_file(self, relative_path: str) -> bool:
        return relative_path.lower().endswith(self.session_suffix.lower())

    def matches_session_member(self, relative_path: str) -> bool:
        return relative_path.lower().endswith(self.file_suffix.lower())

    def is_valid_directory(self, directory: Mapping[str, Path]) -> bool:
        """True when the directory holds this profile's marker file(s)."""
        keys = [key.lower() for key in directory]
        if self.marker_files and not all(
            marker.lower() in keys for marker in self.marker_files
        ):
            return False
        if self.marker_suffix and not any(
            key.endswith(self.marker_suffix.lower()) for key in keys
        ):
            return False
        return bool(self.marker_files or self.marker_suffix)
