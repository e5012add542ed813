"""
Loader Registry

Central registry for device loaders. Loaders are tried in registration
order and the first whose validate_directory accepts a directory wins, so
the order in register_all_loaders() is part of the contract.
"""

import logging

from collections.abc import Mapping
from pathlib import Path

from cpap_export.parsers.base import DeviceLoader, NoCompatibleLoaderError

logger = logging.getLogger(__name__)


class LoaderRegistry:
    """
    Ordered registry of device loaders.

    Usage:
        registry = LoaderRegistry()
        registry.register(ResmedEDFLoader())
        registry.register(SpO2AssistantLoader())

        loader = registry.detect_loader(directory)
        sessions = loader.sessions(directory)
    """

    def __init__(self) -> None:
        self._loaders: list[DeviceLoader] = []
        self._loaders_by_id: dict[str, DeviceLoader] = {}

    def register(self, loader: DeviceLoader) -> None:
        """
        Register a loader at the end of the probe order.

        Raises:
            ValueError: If the loader ID is already registered
        """
        loader_id = loader.loader_id

        if loader_id in self._loaders_by_id:
            existing = self._loaders_by_id[loader_id]
            raise ValueError(
                f"Loader ID '{loader_id}' already registered by {existing.__class__.__name__}"
            )

        self._loaders.append(loader)
        self._loaders_by_id[loader_id] = loader
        logger.debug(f"Registered loader: {loader}")

    def detect_loader(self, directory: Mapping[str, Path]) -> DeviceLoader | None:
        """First registered loader that accepts the directory, or None."""
        for loader in self._loaders:
            if loader.validate_directory(directory):
                logger.info(f"Detected {loader.name} data")
                return loader

        logger.warning(f"No loader recognizes a directory of {len(directory)} file(s)")
        return None

    def require_loader(self, directory: Mapping[str, Path]) -> DeviceLoader:
        """
        Like detect_loader, but a miss is an error.

        Raises:
            NoCompatibleLoaderError: If no loader accepts the directory
        """
        loader = self.detect_loader(directory)
        if loader is None:
            supported = ", ".join(loader.name for loader in self._loaders) or "none"
            raise NoCompatibleLoaderError(
                f"No compatible loader found (supported: {supported})"
            )
        return loader

    def get_loader(self, loader_id: str) -> DeviceLoader | None:
        return self._loaders_by_id.get(loader_id)

    def list_loaders(self) -> list[DeviceLoader]:
        return self._loaders.copy()

    def __len__(self) -> int:
        return len(self._loaders)

    def __repr__(self) -> str:
        return f"<LoaderRegistry loaders={[loader.loader_id for loader in self._loaders]}>"


# Global registry instance, populated by register_all_loaders()
loader_registry = LoaderRegistry()
