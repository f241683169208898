"""
RegistryDocument — the on-disk record of installed apps.

The document may carry other fields (user settings etc.); they are
preserved untouched across registry writes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegistryDocument(BaseModel):
    """Serialized to ``db/user.json``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    installed_apps: list[str] = Field(default_factory=list, alias="installedApps")

    @field_validator("installed_apps", mode="before")
    @classmethod
    def _drop_non_string_ids(cls, value: object) -> object:
        # Stray nulls or numbers in the list are skipped, not fatal
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str) and v]
        return value

    @property
    def apps(self) -> set[str]:
        return set(self.installed_apps)

    def with_apps(self, apps: set[str]) -> RegistryDocument:
        """Return a copy holding exactly ``apps``, sorted for stable diffs."""
        return self.model_copy(update={"installed_apps": sorted(apps)})
