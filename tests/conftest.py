"""Pytest configuration and fixtures for cpap-export tests."""

from datetime import timedelta
from pathlib import Path

import numpy as np
import pytest

from tests.helpers.synthetic_data import T0
from tests.helpers.synthetic_edf import PyedflibSignal, RawAnnotation, write_pyedflib_file


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line("markers", "parser: Tests for file formats and loaders")
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )


def pytest_collection_modifyitems(items):
    """Apply unit/integration markers by directory."""
    for item in items:
        path = str(item.fspath)
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config and log files out of the real home directory."""
    config_dir = tmp_path / "home" / ".cpap_export"
    monkeypatch.setattr("cpap_export.config.DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr("cpap_export.logging_config.DEFAULT_LOG_DIR", config_dir / "logs")
    # The CLI would otherwise replace pytest's log capture handlers
    monkeypatch.setattr("cpap_export.logging_config._logging_configured", True)
    return config_dir


@pytest.fixture
def registry():
    """A fresh registry holding every loader."""
    from cpap_export.parsers.register_all import register_all_loaders
    from cpap_export.parsers.registry import LoaderRegistry

    return register_all_loaders(LoaderRegistry())


# =============================================================================
# ResMed SD card fixture
# =============================================================================

RESMED_SESSION_START = T0


@pytest.fixture
def resmed_card(tmp_path) -> Path:
    """
    A minimal ResMed SD card with one session of two files.

    BRP: starts at RESMED_SESSION_START, 10 one-minute records,
         Flow.40ms and Press.40ms at 25 Hz, one 10s apnea ending at 130s.
    PLD: starts 10s later, 9 records, 0.5 Hz pressure/leak channels plus
         1 Hz SpO2 (all zero, no oximeter) and Pulse (a single reading).

    The merged window is [start + 10s, start + 550s]: 9 records.
    """
    card = tmp_path / "card"
    card.mkdir()
    (card / "STR.edf").write_bytes(b"summary")

    day = card / "DATALOG" / "20241208"
    brp_samples = 10 * 60 * 25
    write_pyedflib_file(
        day / "20241208_013939_BRP.edf",
        RESMED_SESSION_START,
        [
            PyedflibSignal("Flow.40ms", 25, np.arange(brp_samples) % 2000),
            PyedflibSignal("Press.40ms", 25, np.full(brp_samples, 12)),
        ],
        annotations=[RawAnnotation(130, "Obstructive apnea", 10)],
    )

    pld_start = RESMED_SESSION_START + timedelta(seconds=10)
    pld_slow = 9 * 60 // 2
    pld_fast = 9 * 60
    pulse = np.zeros(pld_fast)
    pulse[100] = 5
    write_pyedflib_file(
        day / "20241208_013949_PLD.edf",
        pld_start,
        [
            PyedflibSignal("MaskPress.2s", 0.5, np.full(pld_slow, 11)),
            PyedflibSignal("Press.2s", 0.5, np.full(pld_slow, 10)),
            PyedflibSignal("Leak.2s", 0.5, np.arange(pld_slow) % 50),
            PyedflibSignal("SpO2.1s", 1, np.zeros(pld_fast)),
            PyedflibSignal("Pulse.1s", 1, pulse),
        ],
    )
    return card
