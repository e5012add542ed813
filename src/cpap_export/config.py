"""
User settings for cpap-export.

Settings live in ~/.cpap_export/config.toml. Only the [export] table is
interpreted; any other tables in the file are carried through saves untouched.

    [export]
    output_dir = "~/cpap-exports"
"""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cpap_export.constants import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE

logger = logging.getLogger(__name__)

EXPORT_SECTION = "export"


class ExportSettings(BaseModel):
    """The [export] table."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    output_dir: Path | None = None

    @field_validator("output_dir", mode="before")
    @classmethod
    def expand_output_dir(cls, value: Any) -> Path | None:
        if value is None or value == "":
            return None
        if isinstance(value, (str, Path)):
            return Path(value).expanduser()
        return value


def get_config_path() -> Path:
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_config() -> dict[str, Any]:
    """
    Read the whole TOML document.

    A missing file is empty; a corrupt one is logged and treated as empty.
    """
    config_path = get_config_path()
    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config {config_path}: {e}")
        return {}


def _write_config(document: dict[str, Any]) -> None:
    """Replace the config file atomically, or remove it when nothing is left."""
    config_path = get_config_path()
    if not document:
        config_path.unlink(missing_ok=True)
        return

    os.makedirs(config_path.parent, exist_ok=True)
    temp_path = config_path.with_suffix(".toml.tmp")
    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(document, f)
        os.replace(temp_path, config_path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def load_settings() -> ExportSettings:
    """Export settings, falling back to defaults for invalid values."""
    section = load_config().get(EXPORT_SECTION, {})
    try:
        return ExportSettings.model_validate(section)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid [{EXPORT_SECTION}] settings: {e}")
        return ExportSettings()


def save_settings(settings: ExportSettings) -> None:
    """
    Write the [export] table, keeping the rest of the document.

    Raises:
        OSError: If the config directory or file cannot be written
    """
    document = load_config()
    section = settings.model_dump(mode="json", exclude_none=True)
    if section:
        document[EXPORT_SECTION] = section
    else:
        document.pop(EXPORT_SECTION, None)
    _write_config(document)
    logger.debug(f"Saved settings to {get_config_path()}")
