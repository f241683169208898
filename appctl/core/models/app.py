"""
App models — the manifest an app ships and the environment built for it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Placeholder exported until the hidden service has an address
HIDDEN_SERVICE_PLACEHOLDER = "notyetset.onion"

# Keys only appctl may set; sourced exports.sh files cannot shadow them.
IDENTITY_KEYS = frozenset({
    "APP_ID",
    "APP_MANIFEST_FILE",
    "APP_VERSION",
    "APP_PROXY_HOSTNAME",
    "APP_PORT",
    "APP_DATA_DIR",
    "APP_DOMAIN",
    "APP_HIDDEN_SERVICE",
    "APP_SEED",
    "APP_PASSWORD",
})


class AppManifest(BaseModel):
    """Parsed ``app.yml``. Only ``version`` and ``port`` are required."""

    model_config = ConfigDict(extra="allow")

    id: str = ""
    name: str = ""
    version: str
    port: int
    description: str = ""

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, value: object) -> object:
        # YAML reads `version: 1.2` as a float
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class AppEnvironment(BaseModel):
    """Variable context for one app, rebuilt on every operation.

    Layers are kept apart so precedence is explicit:
    host defaults < host identity < sourced exports < app identity.
    """

    app_id: str
    host_defaults: dict[str, str] = Field(default_factory=dict)
    host: dict[str, str] = Field(default_factory=dict)
    exports: dict[str, str] = Field(default_factory=dict)
    identity: dict[str, str] = Field(default_factory=dict)

    def as_env(self) -> dict[str, str]:
        """Flatten into a process environment mapping."""
        env: dict[str, str] = {}
        env.update(self.host_defaults)
        env.update(self.host)
        env.update(self.exports)
        env.update(self.identity)
        return env
