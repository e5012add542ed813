"""
SpO2 Assistant Loader

Loader for the flat .spo2 exports written by the SpO2 Assistant software
that ships with several fingertip/wrist pulse oximeters. Every .spo2 file is
one session holding 1 Hz SpO2 and pulse readings.
"""

import logging

from collections.abc import Mapping
from pathlib import Path

from cpap_export.merge.reconciler import OximetryFileDecoder, SessionReconciler
from cpap_export.parsers.base import DeviceLoader
from cpap_export.parsers.discovery import SessionDiscoverer
from cpap_export.parsers.formats.spo2 import read_spo2_header
from cpap_export.parsers.formats.types import EDFFile
from cpap_export.parsers.profiles import SPO2_ASSISTANT_PROFILE
from cpap_export.parsers.types import (
    DeviceProfile,
    LoaderMetadata,
    ProgressCallback,
    Session,
)

logger = logging.getLogger(__name__)


class SpO2AssistantLoader(DeviceLoader):
    """Loader for SpO2 Assistant .spo2 exports."""

    def __init__(self) -> None:
        super().__init__()
        self._discoverer = SessionDiscoverer(SPO2_ASSISTANT_PROFILE, read_spo2_header)
        self._reconciler = SessionReconciler(
            SPO2_ASSISTANT_PROFILE, OximetryFileDecoder(SPO2_ASSISTANT_PROFILE)
        )

    def get_metadata(self) -> LoaderMetadata:
        return LoaderMetadata(
            loader_id="spo2_assistant",
            loader_version="1.0.0",
            manufacturer="SpO2 Assistant",
            supported_formats=["SPO2"],
            description="Loader for SpO2 Assistant pulse oximetry exports",
        )

    @property
    def profile(self) -> DeviceProfile:
        return SPO2_ASSISTANT_PROFILE

    def sessions(
        self,
        directory: Mapping[str, Path],
        on_progress: ProgressCallback | None = None,
    ) -> list[Session]:
        return self._discoverer.discover(directory, on_progress)

    def load_session(
        self,
        session: Session,
        on_progress: ProgressCallback | None = None,
    ) -> EDFFile:
        """
        Decode the session's single .spo2 file.

        The recording is cut to whole 30 s records.

        Raises:
            InvalidFileError: If the file has no SpO2 Assistant header
        """
        logger.info(f"Loading SpO2 Assistant session {session.start}")
        return self._reconciler.reconcile(session, on_progress)
