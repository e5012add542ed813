"""
Vendor quirk policies.

Each policy corrects one known deviation from nominal EDF semantics and is
attached to the profiles that need it.
"""

from datetime import datetime

from cpap_export.parsers.formats.types import EDFAnnotation, EDFHeader
from cpap_export.parsers.types import Session


def onset_marks_annotation_end(annotations: list[EDFAnnotation]) -> list[EDFAnnotation]:
    """
    ResMed writes some event annotations with the onset at the end of the
    event. Shift each onset back by its duration, never before file start.
    """
    return [
        annotation.model_copy(
            update={
                "onset_time": max(0.0, annotation.onset_time - (annotation.duration or 0.0))
            }
        )
        for annotation in annotations
    ]


def discontinuous_file_ends_with_session(
    header: EDFHeader, end: datetime, session: Session
) -> datetime:
    """EDF+D files have an untrustworthy trailing offset; use the session end."""
    if header.is_discontinuous:
        return session.end
    return end
