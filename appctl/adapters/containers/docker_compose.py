"""
Docker Compose runtime — runs ``docker compose`` for one app project.

Uses the docker CLI — never the Docker API directly.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from appctl.adapters.base import ComposeRuntime
from appctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class DockerComposeRuntime(ComposeRuntime):
    """``docker compose --project-name <app> --env-file <file> -f ... <sub>``."""

    def __init__(self, env_file: Path | None = None, timeout: int = 600):
        self._env_file = env_file
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "docker-compose"

    def is_available(self) -> bool:
        return shutil.which("docker") is not None

    def build_command(
        self,
        app_id: str,
        fragments: Sequence[Path],
        subcommand: str,
        *args: str,
    ) -> list[str]:
        cmd = ["docker", "compose", "--project-name", app_id]
        if self._env_file is not None and self._env_file.is_file():
            cmd += ["--env-file", str(self._env_file)]
        for fragment in fragments:
            cmd += ["--file", str(fragment)]
        cmd.append(subcommand)
        cmd.extend(args)
        return cmd

    def run(
        self,
        app_id: str,
        fragments: Sequence[Path],
        subcommand: str,
        *args: str,
        env: Mapping[str, str] | None = None,
        interactive: bool = False,
    ) -> Receipt:
        cmd = self.build_command(app_id, fragments, subcommand, *args)
        process_env = {**os.environ, **(env or {})}
        logger.debug("Executing: %s", " ".join(cmd))
        start = time.monotonic()

        try:
            result = subprocess.run(
                cmd,
                env=process_env,
                capture_output=not interactive,
                text=True,
                timeout=None if interactive else self._timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                runtime=self.name,
                app_id=app_id,
                subcommand=subcommand,
                error=f"Command timed out after {self._timeout}s",
                return_code=124,
                metadata={"command": cmd},
            )
        except OSError as e:
            return Receipt.failure(
                runtime=self.name,
                app_id=app_id,
                subcommand=subcommand,
                error=f"Cannot execute docker: {e}",
                return_code=127,
                metadata={"command": cmd},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()

        if result.returncode == 0:
            return Receipt.success(
                runtime=self.name,
                app_id=app_id,
                subcommand=subcommand,
                output=stdout,
                duration_ms=elapsed_ms,
                metadata={"command": cmd, "stderr": stderr},
            )
        return Receipt.failure(
            runtime=self.name,
            app_id=app_id,
            subcommand=subcommand,
            error=stderr or f"Command exited with code {result.returncode}",
            return_code=result.returncode,
            duration_ms=elapsed_ms,
            output=stdout,
            metadata={"command": cmd},
        )
