"""Channel label canonicalization and filtering."""

from collections.abc import Iterable, Mapping, Sequence

import numpy as np

from cpap_export.parsers.formats.types import EDFSignalInfo


def build_alias_map(synonyms: Mapping[str, Sequence[str]]) -> dict[str, str]:
    """Invert a canonical -> aliases table into alias -> canonical."""
    alias_map = {}
    for canonical, aliases in synonyms.items():
        for alias in aliases:
            alias_map[alias] = canonical
    return alias_map


def canonicalize_labels(
    signals: Sequence[EDFSignalInfo],
    synonyms: Mapping[str, Sequence[str]],
) -> list[EDFSignalInfo]:
    """
    Replace vendor/locale-specific labels with canonical names.

    Matching is exact and case-sensitive. Unmatched labels pass through, so
    canonicalizing an already-canonical table changes nothing.
    """
    alias_map = build_alias_map(synonyms)
    result = []
    for signal in signals:
        canonical = alias_map.get(signal.label)
        if canonical is None or canonical == signal.label:
            result.append(signal)
        else:
            result.append(signal.model_copy(update={"label": canonical}))
    return result


def filter_signals(
    signals: Sequence[EDFSignalInfo],
    values: Sequence[np.ndarray],
    allowed_labels: Iterable[str] | None = None,
    disallowed_labels: Iterable[str] | None = None,
) -> tuple[list[EDFSignalInfo], list[np.ndarray]]:
    """
    Keep descriptors and their sample arrays paired while filtering by label.

    Comparison is case-insensitive. With `allowed_labels`, only those labels
    survive; `disallowed_labels` are always removed.
    """
    allowed = {label.lower() for label in allowed_labels} if allowed_labels else None
    disallowed = {label.lower() for label in disallowed_labels or ()}

    kept_signals = []
    kept_values = []
    for signal, data in zip(signals, values):
        label = signal.label.lower()
        if label in disallowed:
            continue
        if allowed is not None and label not in allowed:
            continue
        kept_signals.append(signal)
        kept_values.append(data)

    return kept_signals, kept_values
