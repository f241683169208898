"""
Runtime base — the contract between the lifecycle controller and the
container engine.

The controller only talks to the engine through this protocol. A
runtime is handed an ordered list of compose files, a project name
(the app ID), a subcommand and its arguments, plus the app's
environment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

from appctl.core.models.receipt import Receipt


class ComposeRuntime(ABC):
    """Abstract base class for container runtimes.

    Runtimes perform external side effects and return receipts.
    They NEVER raise for command failures — failures are captured in
    the Receipt together with the engine's return code.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The runtime identifier (e.g., 'docker-compose', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying engine is installed. Never raises."""

    @abstractmethod
    def run(
        self,
        app_id: str,
        fragments: Sequence[Path],
        subcommand: str,
        *args: str,
        env: Mapping[str, str] | None = None,
        interactive: bool = False,
    ) -> Receipt:
        """Run ``compose <subcommand> <args>`` for one app.

        Args:
            app_id: Used as the compose project name.
            fragments: Compose files, in override order.
            subcommand: pull, up, down, rm, ... or any pass-through command.
            env: Variables exported to the engine process.
            interactive: Stream output to the terminal instead of capturing it.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
