"""
Lifecycle controller — install, update, start, stop and remove apps.

Each command is a strict sequence over the other services:

    install    repo check → copy files → default torrc → env → render →
               pull → [start] → register
    uninstall  registered check → rm/down (images too) → delete data → deregister
    start      registered check → env → render → hidden service wait → up
    stop       rm --force --stop (no registration check)
    restart    stop, then start
    update     registered + repo check → [stop] → copy whitelist →
               default torrc → env → render → pull → [start];
               the manifest is copied last, on every exit path

Registration is the last step of install and deregistration the last of
uninstall, so a failure never leaves an app "installed but broken".
Update is the exception: the app stays registered while it is being
refreshed, and its manifest only changes once the update is over.

The literal target ``installed`` fans a command out to every
registered app in parallel and returns one result per app.
"""

from __future__ import annotations

import logging
import re
import shutil
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from appctl.adapters.base import ComposeRuntime
from appctl.core.errors import (
    ConfigurationError,
    PreconditionError,
    RuntimeCallError,
)
from appctl.core.models.config import (
    COMPOSE_FILE,
    EXPORTS_FILE,
    MANIFEST_FILE,
    TEMPLATE_SUFFIX,
    TORRC_FILE,
    TORRC_TEMPLATE_FILE,
    AppctlConfig,
)
from appctl.core.persistence.audit import AuditEntry, AuditWriter
from appctl.core.persistence.registry import RegistryStore
from appctl.core.services.app_env import compose_environment
from appctl.core.services.compose_plan import plan_fragments
from appctl.core.services.hidden_service import SyncResult, SyncState, wait_for_hidden_service
from appctl.core.services.templates import render_templates

logger = logging.getLogger(__name__)

# Target that addresses every registered app
INSTALLED_TARGET = "installed"

# Repo bookkeeping that never lands in an app's data dir
COPY_EXCLUDES = (".gitkeep", ".git", ".DS_Store")

# Files refreshed by update, before the manifest
UPDATE_WHITELIST = (COMPOSE_FILE, EXPORTS_FILE, TORRC_TEMPLATE_FILE)

DEFAULT_TORRC_TEMPLATE = (
    "HiddenServiceDir /data/app-${APP_ID}\n"
    "HiddenServicePort 80 ${APP_PROXY_HOSTNAME}:${APP_PORT}\n"
)

COMMANDS = ("install", "uninstall", "start", "stop", "restart", "update")

_APP_ID_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


@dataclass
class AppResult:
    """Outcome of one app's command within a fan-out."""

    app_id: str
    command: str
    ok: bool
    error: str = ""
    returncode: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_id": self.app_id,
            "command": self.command,
            "ok": self.ok,
            "error": self.error,
            "returncode": self.returncode,
        }


class AppLifecycle:
    """Sequences lifecycle commands for apps on this host."""

    def __init__(
        self,
        config: AppctlConfig,
        runtime: ComposeRuntime,
        registry: RegistryStore | None = None,
        audit: AuditWriter | None = None,
        cancel: threading.Event | None = None,
    ):
        self._config = config
        self._runtime = runtime
        self._registry = registry or RegistryStore(
            config.registry_file,
            lock_path=config.lock_file,
            poll_interval=config.lock_poll_interval,
        )
        self._audit = audit
        self._cancel = cancel or threading.Event()
        self.last_sync: dict[str, SyncResult] = {}

    @property
    def registry(self) -> RegistryStore:
        return self._registry

    # ═══════════════════════════════════════════════════════════════
    #  Commands
    # ═══════════════════════════════════════════════════════════════

    def install(self, app_id: str, skip_start: bool = False) -> None:
        self._require_in_repo(app_id)
        data_dir = self._config.app_data_path(app_id)
        created = not data_dir.exists()

        with self._operation("install", app_id, skip_start=skip_start):
            try:
                logger.info("Installing '%s'", app_id)
                data_dir.mkdir(parents=True, exist_ok=True)
                shutil.copytree(
                    self._config.repo_path(app_id),
                    data_dir,
                    ignore=shutil.ignore_patterns(*COPY_EXCLUDES),
                    dirs_exist_ok=True,
                )
                self._ensure_torrc_template(data_dir)

                env, fragments = self._prepare(app_id)
                self._call(app_id, fragments, env, "pull")
                if not skip_start:
                    self._start_prepared(app_id, env, fragments)

                self._registry.add(app_id)
            except BaseException:
                if created and data_dir.exists():
                    logger.info("Install of '%s' failed — removing %s", app_id, data_dir)
                    shutil.rmtree(data_dir, ignore_errors=True)
                raise
        logger.info("Installed '%s'", app_id)

    def uninstall(self, app_id: str) -> None:
        self._require_installed(app_id)

        with self._operation("uninstall", app_id):
            logger.info("Uninstalling '%s'", app_id)
            env, fragments = self._prepare(app_id, render=False, lenient=True)
            self._call(app_id, fragments, env, "rm", "--force", "--stop")
            self._call(app_id, fragments, env, "down", "--rmi", "all", "--remove-orphans")

            data_dir = self._config.app_data_path(app_id)
            if data_dir.exists():
                shutil.rmtree(data_dir)

            self._registry.remove(app_id)
        logger.info("Uninstalled '%s'", app_id)

    def start(self, app_id: str) -> None:
        self._require_installed(app_id)
        with self._operation("start", app_id):
            self._start(app_id)

    def stop(self, app_id: str) -> None:
        with self._operation("stop", app_id):
            self._stop(app_id)

    def restart(self, app_id: str) -> None:
        self.stop(app_id)
        self.start(app_id)

    def update(self, app_id: str, skip_stop: bool = False, skip_start: bool = False) -> None:
        self._require_installed(app_id)
        self._require_in_repo(app_id)

        with self._operation("update", app_id, skip_stop=skip_stop, skip_start=skip_start):
            logger.info("Updating '%s'", app_id)
            repo_dir = self._config.repo_path(app_id)
            data_dir = self._config.app_data_path(app_id)
            try:
                if not skip_stop:
                    self._stop(app_id)
                self._copy_update_files(repo_dir, data_dir)
                self._ensure_torrc_template(data_dir)

                env, fragments = self._prepare(app_id)
                self._call(app_id, fragments, env, "pull")
                if not skip_start:
                    self._start_prepared(app_id, env, fragments)
            finally:
                self._copy_manifest(repo_dir, data_dir)
        logger.info("Updated '%s'", app_id)

    def compose(self, app_id: str, *args: str) -> None:
        """Pass arbitrary arguments through to the runtime for one app."""
        if not args:
            raise PreconditionError("compose requires a subcommand")
        self._validate_id(app_id)
        env, fragments = self._prepare(app_id, render=False, lenient=True)
        self._call(app_id, fragments, env, args[0], *args[1:], interactive=True)

    def ls_installed(self) -> list[str]:
        return sorted(self._registry.list())

    # ── Dispatch / fan-out ──────────────────────────────────────

    def dispatch(self, command: str, app_id: str, **kwargs: Any) -> list[AppResult] | None:
        """Run ``command`` for one app, or for every app when targeting ``installed``.

        Returns:
            Per-app results for a fan-out, None for a single app (errors raise).
        """
        if command not in COMMANDS:
            raise PreconditionError(f"Unknown command '{command}'")
        if app_id == INSTALLED_TARGET:
            return self.run_for_installed(command, **kwargs)
        getattr(self, command)(app_id, **kwargs)
        return None

    def run_for_installed(self, command: str, **kwargs: Any) -> list[AppResult]:
        """Run ``command`` for every registered app concurrently.

        All jobs run to completion; one failure never cancels its
        siblings. Aggregate success is the caller's call.
        """
        apps = self.ls_installed()
        if not apps:
            logger.info("No apps installed")
            return []

        logger.info("Running '%s' for %d installed apps", command, len(apps))
        results: dict[str, AppResult] = {}
        workers = min(self._config.max_parallel, len(apps))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=command) as pool:
            futures = {
                pool.submit(getattr(self, command), app_id, **kwargs): app_id
                for app_id in apps
            }
            for future in as_completed(futures):
                app_id = futures[future]
                try:
                    future.result()
                    results[app_id] = AppResult(app_id=app_id, command=command, ok=True)
                except RuntimeCallError as e:
                    results[app_id] = AppResult(
                        app_id=app_id, command=command, ok=False,
                        error=str(e), returncode=e.returncode,
                    )
                except Exception as e:
                    results[app_id] = AppResult(
                        app_id=app_id, command=command, ok=False,
                        error=str(e), returncode=1,
                    )
                if not results[app_id].ok:
                    logger.error("%s '%s' failed: %s", command, app_id, results[app_id].error)

        return [results[app_id] for app_id in apps]

    # ═══════════════════════════════════════════════════════════════
    #  Steps
    # ═══════════════════════════════════════════════════════════════

    def _start(self, app_id: str) -> None:
        logger.info("Starting '%s'", app_id)
        env, fragments = self._prepare(app_id)
        self._start_prepared(app_id, env, fragments)

    def _start_prepared(
        self,
        app_id: str,
        env: dict[str, str],
        fragments: list[Path],
    ) -> None:
        sync = wait_for_hidden_service(
            app_id,
            self._config,
            self._runtime,
            fragments,
            env=env,
            cancel=self._cancel,
        )
        self.last_sync[app_id] = sync
        if SyncState.WAITING in sync.trace and sync.state is SyncState.READY:
            # The address is known now; re-render so the app sees it
            env, fragments = self._prepare(app_id)
        self._call(app_id, fragments, env, "up", "--detach")

    def _stop(self, app_id: str) -> None:
        self._validate_id(app_id)
        logger.info("Stopping '%s'", app_id)
        env, fragments = self._prepare(app_id, render=False, lenient=True)
        self._call(app_id, fragments, env, "rm", "--force", "--stop")

    def _prepare(
        self,
        app_id: str,
        render: bool = True,
        lenient: bool = False,
    ) -> tuple[dict[str, str], list[Path]]:
        """Compose the environment, render templates, plan fragments.

        ``lenient`` lets teardown commands proceed with a minimal
        environment when the app's manifest or the seed is unusable.
        """
        try:
            env = compose_environment(app_id, self._config, self._registry).as_env()
        except ConfigurationError as e:
            if not lenient:
                raise
            logger.warning("Using minimal environment for '%s': %s", app_id, e)
            env = {
                "APP_ID": app_id,
                "APP_DATA_DIR": str(self._config.app_data_path(app_id)),
            }
        if render:
            render_templates(
                self._config.app_data_path(app_id),
                env,
                strict=self._config.strict_templates,
            )
        return env, plan_fragments(app_id, self._config)

    def _call(
        self,
        app_id: str,
        fragments: list[Path],
        env: dict[str, str],
        subcommand: str,
        *args: str,
        interactive: bool = False,
    ) -> None:
        receipt = self._runtime.run(
            app_id, fragments, subcommand, *args, env=env, interactive=interactive
        )
        if receipt.failed:
            raise RuntimeCallError(app_id, subcommand, receipt.return_code, receipt.error or "")
        logger.debug("compose %s '%s' ok (%dms)", subcommand, app_id, receipt.duration_ms)

    # ── Files ───────────────────────────────────────────────────

    @staticmethod
    def _ensure_torrc_template(data_dir: Path) -> None:
        if (data_dir / TORRC_TEMPLATE_FILE).exists() or (data_dir / TORRC_FILE).exists():
            return
        (data_dir / TORRC_TEMPLATE_FILE).write_text(DEFAULT_TORRC_TEMPLATE, encoding="utf-8")
        logger.debug("Wrote default %s in %s", TORRC_TEMPLATE_FILE, data_dir)

    @staticmethod
    def _copy_update_files(repo_dir: Path, data_dir: Path) -> None:
        names = set(UPDATE_WHITELIST)
        names.update(p.name for p in repo_dir.glob(f"*{TEMPLATE_SUFFIX}") if p.is_file())
        for name in sorted(names):
            source = repo_dir / name
            if source.is_file():
                shutil.copy2(source, data_dir / name)
                logger.debug("Updated %s", name)

    @staticmethod
    def _copy_manifest(repo_dir: Path, data_dir: Path) -> None:
        source = repo_dir / MANIFEST_FILE
        if not source.is_file():
            logger.warning("No %s in %s to copy", MANIFEST_FILE, repo_dir)
            return
        data_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, data_dir / MANIFEST_FILE)
        logger.debug("Copied %s into %s", MANIFEST_FILE, data_dir)

    # ── Preconditions ───────────────────────────────────────────

    @staticmethod
    def _validate_id(app_id: str) -> None:
        if not _APP_ID_RE.match(app_id) or app_id == INSTALLED_TARGET:
            raise PreconditionError(f'"{app_id}" is not a valid app id')

    def _require_in_repo(self, app_id: str) -> None:
        self._validate_id(app_id)
        if not self._config.repo_path(app_id).is_dir():
            raise PreconditionError(f'"{app_id}" not found in app repo')

    def _require_installed(self, app_id: str) -> None:
        self._validate_id(app_id)
        if app_id not in self._registry.list():
            raise PreconditionError(f'app not installed: "{app_id}"')

    # ── Audit ───────────────────────────────────────────────────

    @contextmanager
    def _operation(self, name: str, app_id: str, **context: Any) -> Iterator[None]:
        start = time.monotonic()
        errors: list[str] = []
        try:
            yield
        except BaseException as e:
            errors.append(str(e) or type(e).__name__)
            raise
        finally:
            if self._audit is not None:
                self._audit.write(
                    AuditEntry(
                        operation_type=name,
                        app_id=app_id,
                        status="failed" if errors else "ok",
                        duration_ms=int((time.monotonic() - start) * 1000),
                        errors=errors,
                        context=context,
                    )
                )
