"""
Register all available device loaders.

Explicit registration keeps the probe order visible in one place: ResMed
first, then SpO2 Assistant. Call register_all_loaders() at application
startup.
"""

import logging

from cpap_export.parsers.registry import LoaderRegistry, loader_registry

logger = logging.getLogger(__name__)


def register_all_loaders(registry: LoaderRegistry | None = None) -> LoaderRegistry:
    """
    Register every loader, in probe order, with the given (or global) registry.

    Safe to call more than once: already-registered loaders are left alone.
    """
    from cpap_export.parsers.resmed_edf import ResmedEDFLoader
    from cpap_export.parsers.spo2_assistant import SpO2AssistantLoader

    registry = registry if registry is not None else loader_registry

    for loader_cls in (ResmedEDFLoader, SpO2AssistantLoader):
        loader = loader_cls()
        if registry.get_loader(loader.loader_id) is not None:
            continue
        registry.register(loader)
        logger.debug(f"Registered {loader.name} loader")

    logger.debug(f"Loader registration complete: {len(registry)} loader(s) available")
    return registry
