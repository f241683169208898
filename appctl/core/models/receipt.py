"""
Receipt model — the result of one container runtime call.

Runtimes never raise for command failures; they return a receipt and
the lifecycle controller decides what a failure means.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Outcome of a runtime invocation."""

    runtime: str
    app_id: str
    subcommand: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    return_code: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        runtime: str,
        app_id: str,
        subcommand: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            runtime=runtime,
            app_id=app_id,
            subcommand=subcommand,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        runtime: str,
        app_id: str,
        subcommand: str,
        error: str,
        return_code: int = 1,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            runtime=runtime,
            app_id=app_id,
            subcommand=subcommand,
            status="failed",
            error=error,
            return_code=return_code,
            **kwargs,
        )
