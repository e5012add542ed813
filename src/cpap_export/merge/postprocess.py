"""Post-processing of merged sessions."""

import logging

from collections.abc import Iterable

import numpy as np

from cpap_export.parsers.formats.types import EDFFile

logger = logging.getLogger(__name__)


def drop_unfitted_sensors(edf_file: EDFFile, sensor_labels: Iterable[str]) -> EDFFile:
    """
    Remove optional sensor channels that never reported a reading.

    An unplugged oximeter still occupies its channel slot on ResMed machines
    and records nothing but zeros (or negative fill values). For each sensor
    label, the first channel whose label contains it (case-insensitive) is
    removed when every sample is <= 0. A single positive sample keeps it.

    Modifies and returns `edf_file`.
    """
    header = edf_file.header

    for sensor in sensor_labels:
        needle = sensor.lower()
        index = next(
            (
                i
                for i, signal in enumerate(header.signals)
                if needle in signal.label.lower()
            ),
            None,
        )
        if index is None:
            continue

        if np.any(np.asarray(edf_file.values[index]) > 0):
            continue

        removed = header.signals.pop(index)
        edf_file.values.pop(index)
        header.num_signals -= 1
        logger.info(f"Dropped channel '{removed.label}': no {sensor} readings")

    return edf_file
