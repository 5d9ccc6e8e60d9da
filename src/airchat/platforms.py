"""Execution platform gate."""
from __future__ import annotations

import logging
import platform
import sys

from .errors import UnsupportedPlatform

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS: tuple[str, ...] = ("linux", "darwin")


def current_platform() -> str:
    return sys.platform


def ensure_supported(allowed: tuple[str, ...] | list[str] = SUPPORTED_PLATFORMS, name: str | None = None) -> str:
    """Return the platform family or raise :class:`UnsupportedPlatform`."""
    name = name or current_platform()
    logger.info("Platform: %s (%s)", name, platform.platform())
    if name not in allowed:
        raise UnsupportedPlatform(
            f"Platform not supported: {name}. Supported platforms: {', '.join(allowed)}"
        )
    return name
