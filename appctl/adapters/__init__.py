"""
Runtime adapters — the boundary to the container engine.

    from appctl.adapters import ComposeRuntime, DockerComposeRuntime, MockRuntime
"""

from appctl.adapters.base import ComposeRuntime
from appctl.adapters.containers.docker_compose import DockerComposeRuntime
from appctl.adapters.mock import MockRuntime

__all__ = ["ComposeRuntime", "DockerComposeRuntime", "MockRuntime"]
