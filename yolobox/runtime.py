"""Container runtime discovery.

Finds the runtime binary to use and describes what it can do, so the
invocation builder can branch on capabilities instead of runtime names.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Callable, Optional


class NoRuntimeFoundError(FileNotFoundError):
    """Raised when no supported container runtime is installed."""


class RuntimeNotInPathError(FileNotFoundError):
    """Raised when the requested runtime cannot be found in PATH."""


# Probed in this order when no runtime is configured
RUNTIME_PREFERENCE = ("docker", "podman", "container")

# Names that run another runtime's binary
RUNTIME_ALIASES = {
    "colima": "docker",
}


@dataclass(frozen=True)
class RuntimeInfo:
    """A resolved runtime binary and its capabilities."""

    name: str
    path: str
    supports_file_mounts: bool = True
    supports_native_ssh_forward: bool = False
    reports_memory: bool = True


# Capabilities keyed by binary name; anything unknown is treated like docker
_CAPABILITIES = {
    "docker": {},
    "podman": {},
    # Apple's container tool only mounts directories and forwards ssh itself
    "container": {
        "supports_file_mounts": False,
        "supports_native_ssh_forward": True,
        "reports_memory": False,
    },
}


def runtime_info(path: str) -> RuntimeInfo:
    """Describe the runtime at path, based on its binary name."""
    name = os.path.basename(path)
    return RuntimeInfo(name=name, path=path, **_CAPABILITIES.get(name, {}))


def resolve_runtime(
    name: str = "", which: Optional[Callable[[str], Optional[str]]] = None
) -> RuntimeInfo:
    """Find the runtime binary for name, or the first one installed if empty."""
    which = which or shutil.which

    if not name:
        for candidate in RUNTIME_PREFERENCE:
            path = which(candidate)
            if path:
                logging.debug(f"Found container runtime at: {path}")
                return runtime_info(path)
        raise NoRuntimeFoundError(
            "no container runtime found. Install docker, podman, or Apple container and try again"
        )

    binary = RUNTIME_ALIASES.get(name, name)
    path = which(binary)
    if not path:
        raise RuntimeNotInPathError(f"runtime {name!r} not found in PATH")
    logging.debug(f"Using container runtime {name} at: {path}")
    return runtime_info(path)


def resolved_runtime_name(name: str) -> str:
    """Runtime name for display; empty means auto-detect."""
    if not name:
        return "auto"
    return RUNTIME_ALIASES.get(name, name)
