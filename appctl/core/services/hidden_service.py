"""
Hidden-service synchronizer — best-effort wait for Tor to publish an app's
.onion address before the app itself starts.

States:
    NOT_REQUIRED  no torrc for the app; the app is unreachable over Tor
    WAITING       torrc present, no hostname file yet; proxy and Tor
                  server are started and the hostname file is polled
    READY         hostname file observed
    TIMED_OUT     poll budget exhausted; logged, never fatal
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from appctl.adapters.base import ComposeRuntime
from appctl.core.models.config import PROXY_SERVICE, TOR_SERVICE, AppctlConfig
from appctl.core.services.compose_plan import PROXY_FRAGMENT, has_tor_config

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    NOT_REQUIRED = "not_required"
    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass
class SyncResult:
    """Final state plus every state visited, in order."""

    trace: list[SyncState] = field(default_factory=list)
    attempts: int = 0

    @property
    def state(self) -> SyncState | None:
        return self.trace[-1] if self.trace else None

    def enter(self, state: SyncState) -> None:
        logger.debug("Hidden service sync → %s", state.value)
        self.trace.append(state)


def wait_for_hidden_service(
    app_id: str,
    config: AppctlConfig,
    runtime: ComposeRuntime,
    fragments: Sequence[Path],
    env: Mapping[str, str] | None = None,
    attempts: int | None = None,
    interval: float | None = None,
    cancel: threading.Event | None = None,
) -> SyncResult:
    """Make sure the app's hidden service is up before it starts.

    Args:
        fragments: The app's compose plan; used to start the supporting
            services and to tell whether the app has a proxy.
        attempts: Poll budget (default from config).
        interval: Seconds between polls (default from config).
        cancel: Set to end the wait early; counts as a timeout.
    """
    attempts = config.hidden_service_attempts if attempts is None else attempts
    interval = config.hidden_service_interval if interval is None else interval
    cancel = cancel or threading.Event()
    result = SyncResult()

    if not has_tor_config(app_id, config):
        result.enter(SyncState.NOT_REQUIRED)
        logger.warning("No torrc for '%s' — it will not be reachable over Tor", app_id)
        return result

    hostname_file = config.hidden_service_file(app_id)
    if hostname_file.is_file():
        result.enter(SyncState.READY)
        return result

    result.enter(SyncState.WAITING)
    services = []
    if config.fragment(PROXY_FRAGMENT) in fragments:
        services.append(PROXY_SERVICE)
    services.append(TOR_SERVICE)
    for service in services:
        receipt = runtime.run(app_id, fragments, "up", "--detach", service, env=env)
        if receipt.failed:
            logger.warning("Could not start %s for '%s': %s", service, app_id, receipt.error)

    logger.info("Waiting for '%s' hidden service at %s", app_id, hostname_file)
    for attempt in range(1, attempts + 1):
        result.attempts = attempt
        if hostname_file.is_file():
            result.enter(SyncState.READY)
            return result
        if cancel.wait(interval):
            break

    if hostname_file.is_file():
        result.enter(SyncState.READY)
        return result

    result.enter(SyncState.TIMED_OUT)
    logger.warning(
        "Hidden service for '%s' not ready after %d attempts — starting anyway",
        app_id,
        result.attempts,
    )
    return result
