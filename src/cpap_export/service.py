"""
Export service.

Glue between a data directory on disk and exported EDF+ files: picks the
loader, orders sessions for display, and writes reconciled sessions out.
"""

import logging

from pathlib import Path

from cpap_export.constants import EXPORT_FILE_EXTENSION, EXPORT_FILENAME_FORMAT
from cpap_export.parsers.base import DeviceLoader, NoSessionsError
from cpap_export.parsers.discovery import scan_directory
from cpap_export.parsers.formats.edf import write_edf_file
from cpap_export.parsers.registry import LoaderRegistry
from cpap_export.parsers.types import ProgressCallback, Session

logger = logging.getLogger(__name__)


class ExportService:
    """
    High-level export workflow.

    Usage:
        service = ExportService(register_all_loaders())
        loader, directory = service.open_directory(Path("/media/SDCARD"))
        sessions = service.list_sessions(loader, directory)
        path = service.export_session(loader, sessions[0], Path("exports"))
    """

    def __init__(self, registry: LoaderRegistry):
        self.registry = registry

    def open_directory(self, path: Path) -> tuple[DeviceLoader, dict[str, Path]]:
        """
        Scan a directory and pick the loader for it.

        Raises:
            NoCompatibleLoaderError: If no loader recognizes the directory
            NotADirectoryError: If path is not a directory
        """
        directory = scan_directory(path)
        logger.debug(f"Scanned {path}: {len(directory)} file(s)")
        loader = self.registry.require_loader(directory)
        return loader, directory

    def list_sessions(
        self,
        loader: DeviceLoader,
        directory: dict[str, Path],
        on_progress: ProgressCallback | None = None,
    ) -> list[Session]:
        """
        Sessions of a directory, newest first.

        Raises:
            NoSessionsError: If the directory holds no sessions
        """
        sessions = loader.sessions(directory, on_progress)
        if not sessions:
            raise NoSessionsError(f"No {loader.name} sessions found", loader=loader)
        return sorted(sessions, key=lambda session: session.start, reverse=True)

    @staticmethod
    def output_filename(session: Session) -> str:
        """Export file name for a session, e.g. 2024-12-08_01-39-39.edf."""
        return session.start.strftime(EXPORT_FILENAME_FORMAT) + EXPORT_FILE_EXTENSION

    def export_session(
        self,
        loader: DeviceLoader,
        session: Session,
        output_dir: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """
        Reconcile one session and write it as EDF+.

        Returns:
            Path of the written file
        """
        edf_file = loader.load_session(session, on_progress)

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / self.output_filename(session)

        return write_edf_file(output_path, edf_file)
