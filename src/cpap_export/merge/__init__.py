"""Session reconciliation engine."""

from cpap_export.merge.reconciler import (
    EDFFileDecoder,
    FileDecoder,
    FileRecord,
    OximetryFileDecoder,
    SessionReconciler,
)

__all__ = [
    "EDFFileDecoder",
    "FileDecoder",
    "FileRecord",
    "OximetryFileDecoder",
    "SessionReconciler",
]
