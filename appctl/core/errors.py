"""
Error taxonomy for lifecycle operations.

Errors are local to one app's command sequence. The CLI turns them into
a single-line diagnostic and a non-zero exit; a bulk fan-out records
them per app and carries on with the siblings.
"""

from __future__ import annotations


class AppctlError(Exception):
    """Base class for every error raised by appctl."""


class PreconditionError(AppctlError):
    """The app is missing from the repo or not installed."""


class ConfigurationError(AppctlError):
    """Host configuration is missing or invalid (seed, config file, manifest)."""


class ManifestError(ConfigurationError):
    """The app manifest is missing, unparsable, or lacks required fields."""


class TemplateError(ConfigurationError):
    """A template references variables the environment does not define."""

    def __init__(self, template: str, missing: list[str]):
        self.template = template
        self.missing = missing
        super().__init__(
            f"Unresolved variables in {template}: {', '.join(missing)}"
        )


class RuntimeCallError(AppctlError):
    """The container runtime returned a failure.

    The return code is carried through untouched so the CLI can exit
    with it.
    """

    def __init__(self, app_id: str, subcommand: str, returncode: int, stderr: str = ""):
        self.app_id = app_id
        self.subcommand = subcommand
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(
            f"compose {subcommand} failed for '{app_id}' (exit {returncode}){detail}"
        )
