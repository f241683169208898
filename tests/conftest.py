"""
Shared test fixtures — a throwaway host root with seed, app repo and
compose fragments.
"""

import logging
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from appctl.adapters.mock import MockRuntime
from appctl.core.config.loader import load_config
from appctl.core.models.config import AppctlConfig
from appctl.core.persistence.audit import AuditWriter
from appctl.core.persistence.registry import RegistryStore
from appctl.core.services.lifecycle import AppLifecycle

SEED = "correct horse battery staple"

_FRAGMENTS = ("common", "app_proxy", "tor")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's APPCTL_* variables out of the tests."""
    for var in (
        "APPCTL_ROOT",
        "APPCTL_REPO_DIR",
        "APPCTL_DATA_DIR",
        "APPCTL_LOG_LEVEL",
        "APPCTL_LOG_FILE",
        "APPCTL_LOG_FILE_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _restore_logging():
    """The CLI reconfigures the root logger; undo it after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    """A host root with a seed, fragments and fast polling."""
    root = tmp_path / "host"
    seed = root / "db" / "seed" / "seed"
    seed.parent.mkdir(parents=True)
    seed.write_text(SEED + "\n")

    fragments = root / "scripts" / "app" / "compose"
    fragments.mkdir(parents=True)
    for name in _FRAGMENTS:
        (fragments / f"docker-compose.{name}.yml").write_text("services: {}\n")

    (root / "appctl.yml").write_text(textwrap.dedent("""\
        lock_poll_interval: 0.01
        hidden_service_attempts: 3
        hidden_service_interval: 0.01
    """))
    (root / "repos" / "apps").mkdir(parents=True)
    return root


@pytest.fixture
def root_seed() -> str:
    return SEED


@pytest.fixture
def config(host_root: Path) -> AppctlConfig:
    return load_config(host_root)


@pytest.fixture
def make_app(config: AppctlConfig) -> Callable[..., Path]:
    """Create an app in the repo; returns its repo directory."""

    def _make_app(
        app_id: str,
        version: str = "1.0.0",
        port: int = 8080,
        proxy: bool = False,
        exports: str | None = None,
        extra_files: dict[str, str] | None = None,
    ) -> Path:
        app_dir = config.repo_path(app_id)
        app_dir.mkdir(parents=True)
        (app_dir / "app.yml").write_text(
            f"id: {app_id}\nname: {app_id.title()}\nversion: \"{version}\"\nport: {port}\n"
        )
        services = "  web:\n    image: nginx\n"
        if proxy:
            services += "  app_proxy:\n    environment:\n      APP_HOST: web\n"
        (app_dir / "docker-compose.yml").write_text(f"services:\n{services}")
        (app_dir / ".gitkeep").write_text("")
        if exports is not None:
            (app_dir / "exports.sh").write_text(exports)
        for name, content in (extra_files or {}).items():
            (app_dir / name).write_text(content)
        return app_dir

    return _make_app


@pytest.fixture
def registry(config: AppctlConfig) -> RegistryStore:
    return RegistryStore(
        config.registry_file,
        lock_path=config.lock_file,
        poll_interval=config.lock_poll_interval,
    )


@pytest.fixture
def runtime() -> MockRuntime:
    return MockRuntime()


@pytest.fixture
def audit(config: AppctlConfig) -> AuditWriter:
    return AuditWriter(config.audit_file)


@pytest.fixture
def lifecycle(
    config: AppctlConfig,
    runtime: MockRuntime,
    registry: RegistryStore,
    audit: AuditWriter,
) -> AppLifecycle:
    return AppLifecycle(config, runtime, registry=registry, audit=audit)
