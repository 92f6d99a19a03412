"""Choosing the shell for interactive sessions."""

import os
from dataclasses import dataclass


class UnsupportedShellError(ValueError):
    """Raised when the configured shell is not available in the image."""


SUPPORTED_SHELLS = ("bash", "zsh", "fish")
DEFAULT_SHELL = "bash"


@dataclass(frozen=True)
class ShellChoice:
    name: str
    detected: bool = False  # taken from the host's $SHELL
    rejected: str = ""  # host shell that was not supported


def resolve_shell(
    config_shell: str,
    env_shell: str,
    supported=SUPPORTED_SHELLS,
    default: str = DEFAULT_SHELL,
) -> ShellChoice:
    """Pick the shell to start.

    An explicit config shell wins and must be supported. Otherwise the
    basename of the host's ``$SHELL`` is used when supported, falling back
    to default.
    """
    if config_shell:
        if config_shell not in supported:
            raise UnsupportedShellError(
                f"unsupported shell {config_shell!r} (supported: {', '.join(supported)})"
            )
        return ShellChoice(config_shell)

    if not env_shell:
        return ShellChoice(default)

    name = os.path.basename(env_shell.rstrip("/"))
    if name in supported:
        return ShellChoice(name, detected=True)
    return ShellChoice(default, rejected=name)
