"""
ResMed EDF+ Loader

Loader for ResMed CPAP devices that record to SD card as EDF+ files.
Supports AirSense 10/11, AirCurve 10/11, and S9 series.

Card layout:
- STR.edf: summary/settings file at the card root (identifies the layout)
- DATALOG/YYYYMMDD/
  - YYYYMMDD_HHMMSS_BRP.edf (breathing waveforms, one per session)
  - YYYYMMDD_HHMMSS_PLD.edf (pressure/leak data)
  - YYYYMMDD_HHMMSS_SA2.edf (oximetry, when a sensor is attached)
  - YYYYMMDD_HHMMSS_EVE.edf (events)
  - YYYYMMDD_HHMMSS_CSL.edf (compliance)

Each BRP file opens a session; every EDF file in the same night folder is a
reconciliation candidate, and those outside the session bounds drop out.
"""

import logging

from collections.abc import Mapping
from pathlib import Path

from cpap_export.merge.reconciler import EDFFileDecoder, SessionReconciler
from cpap_export.parsers.base import DeviceLoader
from cpap_export.parsers.discovery import SessionDiscoverer
from cpap_export.parsers.formats.edf import read_edf_header
from cpap_export.parsers.formats.types import EDFFile
from cpap_export.parsers.profiles import RESMED_PROFILE
from cpap_export.parsers.types import (
    DeviceProfile,
    LoaderMetadata,
    ProgressCallback,
    Session,
)

logger = logging.getLogger(__name__)


class ResmedEDFLoader(DeviceLoader):
    """Loader for ResMed EDF+ SD card data."""

    def __init__(self) -> None:
        super().__init__()
        self._discoverer = SessionDiscoverer(RESMED_PROFILE, read_edf_header)
        self._reconciler = SessionReconciler(
            RESMED_PROFILE, EDFFileDecoder(RESMED_PROFILE)
        )

    def get_metadata(self) -> LoaderMetadata:
        """Return ResMed loader metadata."""
        return LoaderMetadata(
            loader_id="resmed_edf",
            loader_version="1.0.0",
            manufacturer="ResMed",
            supported_formats=["EDF+", "EDF"],
            supported_models=[
                "AirSense 10 AutoSet",
                "AirSense 10 Elite",
                "AirSense 10 CPAP",
                "AirSense 11 AutoSet",
                "AirCurve 10 S",
                "AirCurve 10 VAuto",
                "AirCurve 10 ASV",
                "AirCurve 11 VAuto",
                "S9 AutoSet",
                "S9 Elite",
                "S9 VPAP Auto",
            ],
            description="Loader for ResMed CPAP devices using EDF+ format",
        )

    @property
    def profile(self) -> DeviceProfile:
        return RESMED_PROFILE

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
        logger.info(
            f"Loading ResMed session {session.start} ({len(session.files)} file(s))"
        )
        return self._reconciler.reconcile(session, on_progress)
