"""Directory scanning and session discovery."""

import logging

from collections.abc import Callable, Mapping
from pathlib import Path, PurePosixPath

from cpap_export.parsers.formats.types import EDFHeader
from cpap_export.parsers.types import DeviceProfile, ProgressCallback, Session

__all__ = ["SessionDiscoverer", "scan_directory"]

logger = logging.getLogger(__name__)


def scan_directory(root: Path) -> dict[str, Path]:
    """
    Map every file under root by its relative POSIX path.

    Keys are sorted, so discovery order is stable across platforms.

    Raises:
        NotADirectoryError: If root is not a directory
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    files = {}
    try:
        for path in root.rglob("*"):
            if path.is_file():
                files[path.relative_to(root).as_posix()] = path
    except PermissionError as e:
        logger.warning(f"Could not scan all of {root}: {e}")

    return dict(sorted(files.items()))


class SessionDiscoverer:
    """
    Groups a directory's files into sessions for one device profile.

    Only headers are decoded; no samples are read during discovery.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        read_header: Callable[[Path], EDFHeader | None],
    ):
        self.profile = profile
        self.read_header = read_header

    def _session_files(
        self, directory: Mapping[str, Path], marker: str
    ) -> dict[str, Path]:
        """Files belonging to the session of one marker file."""
        marker_path = PurePosixPath(marker)
        if not self.profile.group_siblings:
            return {marker_path.name: directory[marker]}

        siblings = {}
        for key, path in directory.items():
            key_path = PurePosixPath(key)
            if key_path.parent != marker_path.parent:
                continue
            if self.profile.matches_session_member(key):
                siblings[key_path.name] = path
        return siblings

    def discover(
        self,
        directory: Mapping[str, Path],
        on_progress: ProgressCallback | None = None,
    ) -> list[Session]:
        """
        Find sessions in a directory.

        Marker files with unreadable headers or no data records are skipped.
        Returns sessions in directory order; callers sort.
        """
        markers = [key for key in directory if self.profile.matches_session_file(key)]
        sessions = []

        for position, marker in enumerate(markers, start=1):
            header = self.read_header(directory[marker])

            if header is None:
                logger.warning(f"Skipping {marker}: unreadable header")
            elif header.num_data_records <= 0:
                logger.info(f"Skipping {marker}: no data records")
            else:
                session = Session(
                    start=header.start_datetime,
                    end=header.end_datetime(),
                    files=self._session_files(directory, marker),
                )
                sessions.append(session)
                logger.debug(
                    f"Session {session.start} -> {session.end} "
                    f"({len(session.files)} file(s)) from {marker}"
                )

            if on_progress:
                on_progress(round(position * 100 / len(markers)))

        logger.info(
            f"Discovered {len(sessions)} {self.profile.name} session(s) "
            f"from {len(markers)} marker file(s)"
        )
        return sessions
