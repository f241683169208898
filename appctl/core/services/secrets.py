"""
Per-app secret derivation.

Secrets are never stored: each one is HMAC-SHA256 over a stable
identifier, keyed with the host's root seed. The same app ID on the
same host always yields the same secret, across reinstalls and OTA
updates.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from pathlib import Path

from appctl.core.errors import ConfigurationError
from appctl.core.models.config import AppctlConfig

logger = logging.getLogger(__name__)


def find_seed_file(config: AppctlConfig) -> Path:
    """Canonical seed location, or the OTA-layout fallback if only that exists."""
    if config.seed_file.is_file():
        return config.seed_file
    fallback = config.seed_fallback_file
    if fallback.is_file():
        logger.debug("Using OTA fallback seed at %s", fallback)
        return fallback
    return config.seed_file


def read_seed(seed_path: Path) -> bytes:
    """Read the root seed.

    Raises:
        ConfigurationError: If the seed is missing, unreadable, or empty.
    """
    try:
        seed = seed_path.read_bytes().rstrip(b"\r\n")
    except OSError as e:
        raise ConfigurationError(f"Cannot read root seed {seed_path}: {e}") from e
    if not seed:
        raise ConfigurationError(f"Root seed {seed_path} is empty")
    return seed


def derive_secret(identifier: str, seed_path: Path) -> str:
    """Derive a 32-byte secret (64 hex chars) for ``identifier``."""
    if not identifier:
        raise ConfigurationError("Cannot derive a secret for an empty identifier")
    seed = read_seed(seed_path)
    return hmac.new(seed, identifier.encode("utf-8"), hashlib.sha256).hexdigest()


def app_seed(app_id: str, config: AppctlConfig) -> str:
    return derive_secret(f"app-{app_id}-seed", find_seed_file(config))


def app_password(app_id: str, config: AppctlConfig) -> str:
    return derive_secret(f"app-{app_id}-seed-APP_PASSWORD", find_seed_file(config))
