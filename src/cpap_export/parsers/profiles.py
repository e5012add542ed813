"""
Device profile registry.

Static descriptors for every supported export layout. Loaders look their
profile up here; nothing in the merge engine is device-specific.
"""

from cpap_export.constants import (
    RESMED_FILE_SUFFIX,
    RESMED_HOUSEKEEPING_LABELS,
    RESMED_OPTIONAL_SENSORS,
    RESMED_RECORD_DURATION,
    RESMED_SESSION_SUFFIX,
    RESMED_SUMMARY_FILE,
    SPO2_FILE_SUFFIX,
    SPO2_RECORD_DURATION,
)
from cpap_export.parsers.quirks import (
    discontinuous_file_ends_with_session,
    onset_marks_annotation_end,
)
from cpap_export.parsers.types import DeviceProfile

# ResMed localizes channel labels on the device itself
RESMED_SYNONYMS: dict[str, tuple[str, ...]] = {
    "Flow": ("Flow.40ms",),
    "MaskPressure": ("Press.40ms", "MaskPress.2s"),
    "RespEvent": ("TrigCycEvt.40ms",),
    "InspPressure": ("Press.2s", "IPAP", "S.BL.IPAP", "S.S.IPAP"),
    "ExpPressure": ("EprPress.2s", "EPAP", "S.BL.EPAP", "EPRPress.2s", "S.S.EPAP"),
    "Leak": (
        "Leck",
        "Fuites",
        "Fuite",
        "Fuga",
        "泄漏气",
        "Lekk",
        "Läck",
        "LÃ¤ck",
        "Leak.2s",
        "Sızıntı",
    ),
    "RespRate": ("AF", "FR", "RespRate.2s"),
    "MinuteVent": ("VM", "MinVent.2s"),
    "TidalVolume": ("VC", "TidVol.2s"),
    "InspExpRatio": ("IERatio.2s",),
    "Snore": ("Snore.2s",),
    "FlowLim": ("FlowLim.2s",),
    "InspTime": ("Ti.2s", "B5ITime.2s"),
    "ExpTime": ("B5ETime.2s",),
    "TgtMinuteVent": ("TgtVent.2s",),
    "Pulse": ("Puls", "Pouls", "Pols", "Pulse.1s", "Nabiz"),
    "SpO2": ("SpO2.1s",),
}

RESMED_PROFILE = DeviceProfile(
    profile_id="resmed_edf",
    name="ResMed",
    marker_files=(RESMED_SUMMARY_FILE,),
    session_suffix=RESMED_SESSION_SUFFIX,
    file_suffix=RESMED_FILE_SUFFIX,
    group_siblings=True,
    record_duration=RESMED_RECORD_DURATION,
    synonyms=RESMED_SYNONYMS,
    housekeeping_labels=RESMED_HOUSEKEEPING_LABELS,
    optional_sensors=RESMED_OPTIONAL_SENSORS,
    annotation_policies=(onset_marks_annotation_end,),
    end_time_policies=(discontinuous_file_ends_with_session,),
)

SPO2_ASSISTANT_PROFILE = DeviceProfile(
    profile_id="spo2_assistant",
    name="SpO2Assistant",
    marker_suffix=SPO2_FILE_SUFFIX,
    session_suffix=SPO2_FILE_SUFFIX,
    file_suffix=SPO2_FILE_SUFFIX,
    group_siblings=False,
    record_duration=SPO2_RECORD_DURATION,
)

PROFILES: dict[str, DeviceProfile] = {
    profile.profile_id: profile for profile in (RESMED_PROFILE, SPO2_ASSISTANT_PROFILE)
}


def get_profile(profile_id: str) -> DeviceProfile:
    """Look up a profile by id."""
    try:
        return PROFILES[profile_id]
    except KeyError:
        raise ValueError(f"Unknown device profile: {profile_id}") from None
