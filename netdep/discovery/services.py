"""Service directory discovery."""

from __future__ import annotations

import logging
from pathlib import Path

from netdep.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def find_services(service_dir: str | Path) -> list[Path]:
    """Immediate subdirectories of ``service_dir``, one per service, sorted by name.

    Hidden directories are skipped.

    Raises:
        ConfigurationError: If ``service_dir`` is not a directory
    """
    root = Path(service_dir)
    if not root.is_dir():
        raise ConfigurationError(f"invalid service directory: {service_dir}")
    services = sorted(
        (entry for entry in root.iterdir() if entry.is_dir() and not entry.name.startswith(".")),
        key=lambda p: p.name,
    )
    logger.info("found_services dir=%s count=%d", service_dir, len(services))
    return services


def service_name(service_path: str | Path) -> str:
    """Last path segment of a service directory."""
    return Path(service_path).resolve().name
