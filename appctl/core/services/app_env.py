"""
Environment composer — builds the variable context for one app.

The context is assembled fresh on every operation, in layers:

    1. host defaults      (``<root>/.env``, if present)
    2. host identity      (network IP, hostname, domain)
    3. sourced exports    (``exports.sh`` of every installed app, plus the
                           target app even when it is not registered yet)
    4. app identity       (APP_ID, APP_VERSION, APP_SEED, ...)

Exports are parsed, never executed. Only ``export KEY=value`` lines are
honoured, and only ``APP_*`` keys that are not identity keys are kept,
so no sourced app can override another app's identity.
"""

from __future__ import annotations

import logging
import re
import socket
from pathlib import Path

import yaml
from pydantic import ValidationError

from appctl.core.errors import ManifestError
from appctl.core.models.app import (
    HIDDEN_SERVICE_PLACEHOLDER,
    IDENTITY_KEYS,
    AppEnvironment,
    AppManifest,
)
from appctl.core.models.config import EXPORTS_FILE, MANIFEST_FILE, PROXY_SERVICE, AppctlConfig
from appctl.core.persistence.registry import RegistryStore
from appctl.core.services import secrets
from appctl.core.services.templates import substitute

logger = logging.getLogger(__name__)

_EXPORT_KEY_RE = re.compile(r"^APP_[A-Z0-9_]+$")


# ═══════════════════════════════════════════════════════════════════
#  Manifest
# ═══════════════════════════════════════════════════════════════════


def manifest_path(app_id: str, config: AppctlConfig) -> Path:
    """The app's installed manifest, or the repo copy during an install."""
    installed = config.app_data_path(app_id) / MANIFEST_FILE
    if installed.is_file():
        return installed
    return config.repo_path(app_id) / MANIFEST_FILE


def load_manifest(path: Path) -> AppManifest:
    """Parse and validate an ``app.yml``.

    Raises:
        ManifestError: If the file is missing, not YAML, or lacks
            ``version``/``port``.
    """
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Invalid manifest {path}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Expected a YAML mapping in {path}")
    try:
        return AppManifest.model_validate(data)
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors())
        raise ManifestError(f"Invalid manifest {path}: bad or missing {missing}") from e


# ═══════════════════════════════════════════════════════════════════
#  Env / exports parsing
# ═══════════════════════════════════════════════════════════════════


def _split_assignment(line: str) -> tuple[str, str, str] | None:
    """Split ``[export] KEY=value`` into (key, value, quote)."""
    if "=" not in line:
        return None
    key, _, value = line.partition("=")
    key = key.strip()
    value = value.strip()
    quote = ""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        quote = value[0]
        value = value[1:-1]
    return key, value, quote


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file into a key/value dict.

    Handles KEY=value, quoted values, optional ``export``, comments
    and blank lines. Values are taken literally.
    """
    result: dict[str, str] = {}
    if not path.is_file():
        return result

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        return result

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[7:].strip()
        parsed = _split_assignment(line)
        if parsed is None:
            continue
        key, value, _ = parsed
        if key:
            result[key] = value
    return result


def parse_exports(path: Path, context: dict[str, str], source: str = "") -> dict[str, str]:
    """Read the ``export`` lines of an exports.sh file.

    ``$VAR`` / ``${VAR}`` in double-quoted or bare values expand against
    ``context`` plus the exports seen so far in this file; unknown names
    expand to "" as the shell would. Keys outside the allow-list are
    dropped.
    """
    result: dict[str, str] = {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        return result

    for line_num, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line.startswith("export "):
            if line and not line.startswith("#"):
                logger.debug("%s:%d: ignoring non-export line", path, line_num)
            continue
        parsed = _split_assignment(line[7:].strip())
        if parsed is None:
            continue
        key, value, quote = parsed

        if not _EXPORT_KEY_RE.match(key):
            logger.debug("%s:%d: ignoring export of %s", path, line_num, key)
            continue
        if key in IDENTITY_KEYS:
            logger.warning(
                "App '%s' tried to export reserved variable %s — ignored", source, key
            )
            continue

        if quote != "'":
            value, _ = substitute(value, {**context, **result}, keep_unknown=False)
        result[key] = value
    return result


# ═══════════════════════════════════════════════════════════════════
#  Composition
# ═══════════════════════════════════════════════════════════════════


def read_hidden_service(app_id: str, config: AppctlConfig) -> str:
    """The app's .onion address, or the placeholder until Tor assigns one."""
    path = config.hidden_service_file(app_id)
    try:
        address = path.read_text(encoding="utf-8").strip()
    except OSError:
        return HIDDEN_SERVICE_PLACEHOLDER
    return address or HIDDEN_SERVICE_PLACEHOLDER


def compose_environment(
    app_id: str,
    config: AppctlConfig,
    registry: RegistryStore,
) -> AppEnvironment:
    """Build the full variable context for ``app_id``.

    Raises:
        ManifestError: If the app's manifest is missing or invalid.
        ConfigurationError: If the root seed is unavailable.
    """
    manifest_file = manifest_path(app_id, config)
    manifest = load_manifest(manifest_file)

    host_defaults = parse_env_file(config.env_file)

    hostname = socket.gethostname()
    domain = f"{hostname}.local"
    host = {
        "NETWORK_IP": host_defaults.get("NETWORK_IP", config.network_ip),
        "DEVICE_HOSTNAME": hostname,
        "DEVICE_DOMAIN_NAME": domain,
    }

    context: dict[str, str] = {**host_defaults, **host}
    exports: dict[str, str] = {}
    for source in sorted(registry.list() | {app_id}):
        exports_file = config.app_data_path(source) / EXPORTS_FILE
        if not exports_file.is_file() and source == app_id:
            exports_file = config.repo_path(source) / EXPORTS_FILE
        if not exports_file.is_file():
            continue
        sourced = parse_exports(exports_file, {**context, **exports}, source=source)
        logger.debug("Sourced %d exports from '%s'", len(sourced), source)
        exports.update(sourced)

    identity = {
        "APP_ID": app_id,
        "APP_MANIFEST_FILE": str(manifest_file),
        "APP_VERSION": manifest.version,
        "APP_PROXY_HOSTNAME": f"{app_id}_{PROXY_SERVICE}_1",
        "APP_PORT": str(manifest.port),
        "APP_DATA_DIR": str(config.app_data_path(app_id)),
        "APP_DOMAIN": domain,
        "APP_HIDDEN_SERVICE": read_hidden_service(app_id, config),
        "APP_SEED": secrets.app_seed(app_id, config),
        "APP_PASSWORD": secrets.app_password(app_id, config),
    }

    return AppEnvironment(
        app_id=app_id,
        host_defaults=host_defaults,
        host=host,
        exports=exports,
        identity=identity,
    )
