"""
Mock runtime — test double for the container engine.

Records every call and returns success by default. Subcommands can be
configured to fail, and hooks let a test simulate side effects of the
engine (e.g. Tor writing a hostname file once ``up tor_server`` runs).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from appctl.adapters.base import ComposeRuntime
from appctl.core.models.receipt import Receipt


@dataclass
class RuntimeCall:
    """One recorded runtime invocation."""

    app_id: str
    fragments: list[Path]
    subcommand: str
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.subcommand, *self.args]


class MockRuntime(ComposeRuntime):
    """Runtime that never touches docker."""

    def __init__(self, available: bool = True, default_output: str = "[mock] executed"):
        self._available = available
        self._default_output = default_output
        self._failures: dict[str, tuple[str, int]] = {}
        self._hooks: list[Callable[[RuntimeCall], None]] = []
        self._calls: list[RuntimeCall] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def calls(self) -> list[RuntimeCall]:
        return self._calls

    @property
    def call_count(self) -> int:
        return len(self._calls)

    def calls_for(self, app_id: str) -> list[RuntimeCall]:
        return [c for c in self._calls if c.app_id == app_id]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, subcommand: str, error: str = "Mock failure", return_code: int = 1) -> None:
        """Make every call of ``subcommand`` fail."""
        self._failures[subcommand] = (error, return_code)

    def add_hook(self, hook: Callable[[RuntimeCall], None]) -> None:
        """Call ``hook`` with every recorded call, before the receipt is built."""
        self._hooks.append(hook)

    def run(
        self,
        app_id: str,
        fragments: Sequence[Path],
        subcommand: str,
        *args: str,
        env: Mapping[str, str] | None = None,
        interactive: bool = False,
    ) -> Receipt:
        call = RuntimeCall(
            app_id=app_id,
            fragments=list(fragments),
            subcommand=subcommand,
            args=tuple(args),
            env=dict(env or {}),
        )
        self._calls.append(call)
        for hook in self._hooks:
            hook(call)

        if subcommand in self._failures:
            error, code = self._failures[subcommand]
            return Receipt.failure(
                runtime=self.name,
                app_id=app_id,
                subcommand=subcommand,
                error=error,
                return_code=code,
            )
        return Receipt.success(
            runtime=self.name,
            app_id=app_id,
            subcommand=subcommand,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log, failures and hooks."""
        self._calls.clear()
        self._failures.clear()
        self._hooks.clear()
