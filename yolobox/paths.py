"""Host path resolution and mount safety checks for yolobox.

This module handles:
- Resolving user supplied paths (``~``, ``./``, absolute) against a base directory
- Parsing ``src:dst[:opts]`` mount specifications
- Deciding whether a mount from the project config stays inside the project
"""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path


class EmptyPathError(ValueError):
    """Raised when an empty string is given as a path."""


class InvalidMountSyntaxError(ValueError):
    """Raised when a mount specification has no destination."""


def resolve_path(path: str, base: str) -> str:
    """Resolve a host path against base.

    ``~`` and ``~/rest`` expand to the user's home directory. Paths starting
    with ``.`` or ``/`` are made absolute against base and normalized
    lexically; symlinks are not followed. Anything else (e.g. a named volume)
    is returned unchanged.
    """
    if not path:
        raise EmptyPathError("empty path")

    if path == "~":
        path = str(Path.home())
    elif path.startswith("~/"):
        path = os.path.join(str(Path.home()), path[2:])

    if path.startswith((".", "/")):
        if not os.path.isabs(path):
            path = os.path.join(base, path)
        return os.path.normpath(path)
    return path


@dataclass
class MountSpec:
    """Mount specification with source, destination and options."""

    source: str
    destination: str
    options: str = ""

    def to_string(self) -> str:
        """Convert back to the runtime's ``-v`` format."""
        if self.options:
            return f"{self.source}:{self.destination}:{self.options}"
        return f"{self.source}:{self.destination}"

    @classmethod
    def parse(cls, spec: str) -> "MountSpec":
        """Parse ``src:dst[:opts]``. Extra colons stay in the options part."""
        match spec.split(":", 2):
            case [source, destination]:
                return cls(source, destination)
            case [source, destination, options]:
                return cls(source, destination, options)
            case _:
                raise InvalidMountSyntaxError(
                    f"invalid mount {spec!r}; expected src:dst"
                )


def resolve_mount(spec: str, base: str) -> str:
    """Resolve the source of a mount specification against base."""
    mount = MountSpec.parse(spec)
    mount.source = resolve_path(mount.source, base)
    return mount.to_string()


def is_within_root(path: str, root: str) -> bool:
    """Check that path is root itself or a descendant of it.

    Compares whole path components, so ``/project-evil`` is not inside
    ``/project``.
    """
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def _unsafe_source_reason(source: str):
    if not source:
        return "empty source path"
    if os.path.isabs(source):
        return "absolute source path"
    if source.startswith("~"):
        return "home-relative source path"
    if source.startswith("$"):
        return "variable in source path"
    if ".." in source.replace("\\", "/").split("/"):
        return "source path traverses a parent directory"
    return None


def check_project_mount(spec: str, root: str) -> bool:
    """Decide whether a mount from the project config is safe to use.

    The source must stay inside root after following symlinks. Rejected
    mounts are logged as warnings. A source that does not exist yet is
    accepted; the runtime creates or rejects it when the container starts.
    """
    source = spec.split(":", 1)[0]

    reason = _unsafe_source_reason(source)
    if reason:
        logging.warning(f"Ignoring project mount {spec!r}: {reason}")
        return False

    real_root = os.path.realpath(root)
    candidate = os.path.normpath(os.path.join(root, source))

    try:
        st = os.lstat(candidate)
    except (FileNotFoundError, NotADirectoryError):
        logging.debug(f"Project mount source {candidate} does not exist yet")
        return True
    except OSError as e:
        logging.warning(f"Ignoring project mount {spec!r}: cannot inspect source: {e}")
        return False

    if stat.S_ISLNK(st.st_mode):
        target = os.readlink(candidate)
        if not os.path.isabs(target):
            target = os.path.join(os.path.dirname(candidate), target)
        target = os.path.realpath(target)
        if not is_within_root(target, real_root):
            logging.warning(
                f"Ignoring project mount {spec!r}: symlink points outside the project ({target})"
            )
            return False

    resolved = os.path.realpath(candidate)
    if not is_within_root(resolved, real_root):
        logging.warning(
            f"Ignoring project mount {spec!r}: resolves outside the project ({resolved})"
        )
        return False

    return True
