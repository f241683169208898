"""
Compose planner — which compose files to pass for an app, and in what order.

Later files override earlier ones on conflicting keys, so the app's
own docker-compose.yml always goes last:

    [app_proxy fragment]   if the app defines an ``app_proxy`` service
    [tor fragment]         if the app has a rendered ``torrc``
    common fragment        always
    app docker-compose.yml always
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from appctl.core.models.config import COMPOSE_FILE, PROXY_SERVICE, TORRC_FILE, AppctlConfig

logger = logging.getLogger(__name__)

COMMON_FRAGMENT = "common"
PROXY_FRAGMENT = "app_proxy"
TOR_FRAGMENT = "tor"


def has_proxy_service(compose_file: Path) -> bool:
    """Whether the compose file declares the reserved proxy service."""
    try:
        data = yaml.safe_load(compose_file.read_text(encoding="utf-8"))
    except OSError:
        return False
    except yaml.YAMLError as e:
        logger.warning("Cannot parse %s: %s", compose_file, e)
        return False
    if not isinstance(data, dict):
        return False
    services = data.get("services") or {}
    return isinstance(services, dict) and PROXY_SERVICE in services


def has_tor_config(app_id: str, config: AppctlConfig) -> bool:
    return (config.app_data_path(app_id) / TORRC_FILE).is_file()


def plan_fragments(app_id: str, config: AppctlConfig) -> list[Path]:
    """Ordered compose file list for ``app_id``."""
    app_compose = config.app_data_path(app_id) / COMPOSE_FILE
    fragments: list[Path] = []

    if has_proxy_service(app_compose):
        fragments.append(config.fragment(PROXY_FRAGMENT))
    if has_tor_config(app_id, config):
        fragments.append(config.fragment(TOR_FRAGMENT))
    fragments.append(config.fragment(COMMON_FRAGMENT))
    fragments.append(app_compose)

    logger.debug("Compose plan for '%s': %s", app_id, [f.name for f in fragments])
    return fragments
