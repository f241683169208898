"""
Registry store — the set of installed apps, persisted as JSON.

Reads never lock and tolerate a missing or corrupt document (treated
as "nothing installed"). Mutations take an exclusive advisory lock,
re-read the document, apply a set union/difference and atomically
replace the file (write to temp file, then rename), so a concurrent
reader never observes a partial write. A mutation refuses to rewrite
a document it cannot parse, so fields it does not understand are never
lost.

The lock is a marker file created with O_CREAT | O_EXCL holding the
owner's PID. It is removed on every exit path of ``lock()``. A marker
whose owner process is gone, or one left without a PID for longer than
``EMPTY_MARKER_GRACE`` seconds, is stale. Stale markers are only
inspected and removed while holding ``flock`` on a guard file next to
the marker, so two writers can never both break the same marker.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from appctl.core.errors import ConfigurationError
from appctl.core.models.registry import RegistryDocument

logger = logging.getLogger(__name__)

# Seconds a marker may stay without a PID before it is considered stale
EMPTY_MARKER_GRACE = 5.0


def _pid_alive(pid: int) -> bool:
    """Whether a process with this PID exists on the host."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    return True


class RegistryStore:
    """List/Add/Remove over the installed-apps document."""

    def __init__(
        self,
        path: Path,
        lock_path: Path | None = None,
        poll_interval: float = 0.1,
    ):
        self._path = path
        self._lock_path = lock_path or path.with_name(path.name + ".lock")
        self._guard_path = self._lock_path.with_name(self._lock_path.name + ".guard")
        self._poll_interval = poll_interval

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    # ── Reads ───────────────────────────────────────────────────

    def _parse(self) -> RegistryDocument:
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return RegistryDocument.model_validate(data)

    def list(self) -> set[str]:
        """Installed app IDs. Never locks, never raises."""
        if not self._path.is_file():
            logger.debug("No registry at %s — nothing installed", self._path)
            return set()
        try:
            return self._parse().apps
        except (OSError, ValueError) as e:
            logger.warning("Cannot load registry %s: %s — treating as empty", self._path, e)
            return set()

    def __contains__(self, app_id: str) -> bool:
        return app_id in self.list()

    # ── Mutations ───────────────────────────────────────────────

    def add(self, app_id: str) -> None:
        """Mark an app as installed (idempotent)."""
        with self.lock():
            doc = self._load_for_update()
            self._save(doc.with_apps(doc.apps | {app_id}))
        logger.info("Registered app '%s'", app_id)

    def remove(self, app_id: str) -> None:
        """Mark an app as uninstalled (no-op for non-members)."""
        with self.lock():
            doc = self._load_for_update()
            self._save(doc.with_apps(doc.apps - {app_id}))
        logger.info("Deregistered app '%s'", app_id)

    def _load_for_update(self) -> RegistryDocument:
        """The current document, or an empty one if none exists yet.

        Raises:
            ConfigurationError: If the document exists but cannot be
                parsed; rewriting it would destroy its other fields.
        """
        if not self._path.is_file():
            return RegistryDocument()
        try:
            return self._parse()
        except (OSError, ValueError, ValidationError) as e:
            raise ConfigurationError(
                f"Refusing to rewrite unreadable registry {self._path}: {e}"
            ) from e

    def _save(self, doc: RegistryDocument) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = doc.model_dump(mode="json", by_alias=True)
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        fd, tmp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=".registry_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(self._path)
            logger.debug("Registry saved to %s", self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    # ── Locking ─────────────────────────────────────────────────

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the registry write lock for the duration of the block."""
        self._acquire()
        try:
            yield
        finally:
            self._release()

    def _acquire(self) -> None:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        waited = False
        while True:
            try:
                fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._break_stale_lock():
                    continue
                if not waited:
                    logger.warning("Waiting for registry lock %s ...", self._lock_path)
                    waited = True
                time.sleep(self._poll_interval)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            logger.debug("Acquired registry lock %s", self._lock_path)
            return

    def _release(self) -> None:
        self._lock_path.unlink(missing_ok=True)
        logger.debug("Released registry lock %s", self._lock_path)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Serialize stale-marker checks; the kernel drops the flock if we die."""
        fd = os.open(self._guard_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            os.close(fd)

    def _break_stale_lock(self) -> bool:
        """Remove the marker if its owner died without releasing it.

        Returns:
            True if the marker is gone and acquisition should be retried.
        """
        with self._guard():
            try:
                owner = self._lock_path.read_text().strip()
                age = time.time() - self._lock_path.stat().st_mtime
            except FileNotFoundError:
                return True  # released between our attempts
            except OSError:
                return False

            if not owner.isdigit():
                if age < EMPTY_MARKER_GRACE:
                    return False  # PID not written yet
                logger.warning("Breaking registry lock without owner PID, left for %.0fs", age)
            else:
                pid = int(owner)
                if pid == os.getpid() or _pid_alive(pid):
                    return False
                logger.warning("Breaking stale registry lock held by dead process %d", pid)

            self._lock_path.unlink(missing_ok=True)
            return True
