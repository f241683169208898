"""
AppctlConfig — resolved host layout and tunables.

Every path appctl touches hangs off a single host root. The defaults
below describe the standard layout; ``appctl.yml`` in the root may
override any of them.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

# Reserved compose service names
PROXY_SERVICE = "app_proxy"
TOR_SERVICE = "tor_server"

# Per-app file names
MANIFEST_FILE = "app.yml"
COMPOSE_FILE = "docker-compose.yml"
EXPORTS_FILE = "exports.sh"
TORRC_FILE = "torrc"
TORRC_TEMPLATE_FILE = "torrc.template"
TEMPLATE_SUFFIX = ".template"


class AppctlConfig(BaseModel):
    """Host configuration — every field has a default derived from ``root``."""

    root: Path

    env_file: Path | None = None
    registry_file: Path | None = None
    seed_file: Path | None = None
    repo_dir: Path | None = None
    data_dir: Path | None = None
    fragments_dir: Path | None = None
    tor_data_dir: Path | None = None
    audit_file: Path | None = None

    # ── Tunables ─────────────────────────────────────────────────
    lock_poll_interval: float = Field(default=0.1, gt=0)
    hidden_service_attempts: int = Field(default=10, ge=0)
    hidden_service_interval: float = Field(default=1.0, ge=0)
    strict_templates: bool = False
    runtime_timeout: int = Field(default=600, gt=0)
    max_parallel: int = Field(default=8, ge=1)
    network_ip: str = "10.21.0.0"

    def model_post_init(self, __context: object) -> None:
        root = self.root
        defaults = {
            "env_file": root / ".env",
            "registry_file": root / "db" / "user.json",
            "seed_file": root / "db" / "seed" / "seed",
            "repo_dir": root / "repos" / "apps",
            "data_dir": root / "app-data",
            "fragments_dir": root / "scripts" / "app" / "compose",
            "tor_data_dir": root / "tor" / "data",
            "audit_file": root / "logs" / "appctl-audit.ndjson",
        }
        for name, default in defaults.items():
            value = getattr(self, name)
            if value is None:
                setattr(self, name, default)
            elif not value.is_absolute():
                setattr(self, name, root / value)

    # ── Derived paths ────────────────────────────────────────────

    @property
    def lock_file(self) -> Path:
        return self.registry_file.with_name(self.registry_file.name + ".lock")

    @property
    def seed_fallback_file(self) -> Path:
        """Seed location seen from inside an OTA update checkout."""
        return self.root / ".." / ".." / "db" / "seed" / "seed"

    def repo_path(self, app_id: str) -> Path:
        return self.repo_dir / app_id

    def app_data_path(self, app_id: str) -> Path:
        return self.data_dir / app_id

    def hidden_service_file(self, app_id: str) -> Path:
        return self.tor_data_dir / f"app-{app_id}" / "hostname"

    def fragment(self, name: str) -> Path:
        return self.fragments_dir / f"docker-compose.{name}.yml"
