"""
Abstract Loader Interface

This module defines the base class that ALL device loaders must implement,
plus the exception hierarchy shared by loaders and the merge engine.

Key Principle: a new device family needs a DeviceProfile and a DeviceLoader
subclass; discovery, reconciliation and export work unchanged.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

from cpap_export.parsers.formats.types import EDFFile
from cpap_export.parsers.types import (
    DeviceProfile,
    LoaderMetadata,
    ProgressCallback,
    Session,
)


class DeviceLoader(ABC):
    """
    Abstract base class for device loaders.

    A loader exposes three operations to the presentation layer:
    validate_directory, sessions and load_session. Directories are mappings
    of relative POSIX path to file (see parsers.discovery.scan_directory).

    Usage Example:
        loader = ResmedEDFLoader()
        if loader.validate_directory(directory):
            for session in loader.sessions(directory):
                edf_file = loader.load_session(session)
    """

    def __init__(self) -> None:
        self._metadata = self.get_metadata()

    @abstractmethod
    def get_metadata(self) -> LoaderMetadata:
        """Return metadata about this loader."""
        pass

    @property
    @abstractmethod
    def profile(self) -> DeviceProfile:
        """The device profile this loader implements."""
        pass

    def validate_directory(self, directory: Mapping[str, Path]) -> bool:
        """
        Check whether the directory holds this device's marker file(s).

        Should be fast: only paths are inspected, never file contents.
        """
        return self.profile.is_valid_directory(directory)

    @abstractmethod
    def sessions(
        self,
        directory: Mapping[str, Path],
        on_progress: ProgressCallback | None = None,
    ) -> list[Session]:
        """
        Discover the therapy sessions stored in the directory.

        Returns an empty list (not an error) when nothing matches. Order is
        unspecified; callers sort.
        """
        pass

    @abstractmethod
    def load_session(
        self,
        session: Session,
        on_progress: ProgressCallback | None = None,
    ) -> EDFFile:
        """
        Load one session as a merged, record-aligned EDF+ dataset.

        Raises:
            ParserError: If the session cannot be reconciled
        """
        pass

    @property
    def metadata(self) -> LoaderMetadata:
        return self._metadata

    @property
    def loader_id(self) -> str:
        return self._metadata.loader_id

    @property
    def name(self) -> str:
        return self.profile.name

    def __str__(self) -> str:
        return f"{self.loader_id} (v{self._metadata.loader_version}): {self._metadata.description}"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.loader_id} manufacturer={self._metadata.manufacturer}>"


class ParserError(Exception):
    """Base exception for loader and reconciliation errors."""

    def __init__(self, message: str, loader: DeviceLoader | None = None):
        super().__init__(message)
        self.loader = loader


class NoCompatibleLoaderError(ParserError):
    """No registered loader recognizes the directory."""


class NoSessionsError(ParserError):
    """A recognized directory holds no sessions."""


class RecordDurationMismatchError(ParserError):
    """A file declares a record duration other than its profile's."""

    def __init__(self, file_name: str, declared: float, expected: float):
        super().__init__(
            f"Unexpected record duration in {file_name}: {declared} seconds. "
            f"Expected {expected} seconds."
        )
        self.file_name = file_name
        self.declared = declared
        self.expected = expected


class NoOverlappingDataError(ParserError):
    """No file covers the session window, or the files share no common time."""


class InvalidFileError(ParserError):
    """A session's only file cannot be decoded."""
