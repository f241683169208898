"""
Domain models — Pydantic types for appctl.

All models are re-exported here for convenient access:

    from appctl.core.models import AppManifest, AppEnvironment, RegistryDocument
"""

from appctl.core.models.app import AppEnvironment, AppManifest
from appctl.core.models.config import AppctlConfig
from appctl.core.models.receipt import Receipt
from appctl.core.models.registry import RegistryDocument

__all__ = [
    "AppEnvironment",
    "AppManifest",
    "AppctlConfig",
    "Receipt",
    "RegistryDocument",
]
