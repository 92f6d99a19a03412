"""Configuration loading and merging for yolobox.

Configuration is layered, lowest precedence first:

- built-in defaults
- global user config (``~/.config/yolobox/config.toml``)
- project config (``.yolobox.toml`` in the project directory)
- command-line flags

The project file is checked into repositories that may not be trusted, so
fields that could reach outside the sandbox are cleared when they come from it.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib
except ImportError:
    # For python < 3.11
    import tomli as tomllib

import tomlkit

from .paths import check_project_mount


DEFAULT_IMAGE = "ghcr.io/finbarr/yolobox:latest"
PROJECT_CONFIG_FILENAME = ".yolobox.toml"


class ConfigParseError(ValueError):
    """Raised when a config file exists but cannot be parsed."""


class ConflictingNetworkConfigError(ValueError):
    """Raised when both a network name and no_network are set."""


class ConfigSource(Enum):
    DEFAULT = "default"
    GLOBAL = "global"
    PROJECT = "project"
    CLI = "cli"


@dataclass(frozen=True)
class ConfigField:
    """One configuration setting, shared by the TOML files and the CLI."""

    name: str
    flag: str
    kind: type  # str, bool or list
    help: str
    persisted: bool = True  # readable from / written to config files


CONFIG_FIELDS = (
    ConfigField("runtime", "--runtime", str, "Container runtime: docker, podman, or container"),
    ConfigField("image", "--image", str, "Base image to use"),
    ConfigField("mounts", "--mount", list, "Extra mount SRC:DST[:OPTS] (repeatable)"),
    ConfigField("env", "--env", list, "Set environment variable KEY=VALUE (repeatable)"),
    ConfigField("ssh_agent", "--ssh-agent", bool, "Forward SSH agent socket"),
    ConfigField("readonly_project", "--readonly-project", bool, "Mount project directory read-only"),
    ConfigField("no_network", "--no-network", bool, "Disable network access"),
    ConfigField("network", "--network", str, "Join container network (e.g. a compose network)"),
    ConfigField("no_yolo", "--no-yolo", bool, "Disable auto-confirm mode in AI CLIs"),
    ConfigField("scratch", "--scratch", bool, "Fresh environment, no persistent volumes"),
    ConfigField("claude_config", "--claude-config", bool, "Copy host Claude config to container"),
    ConfigField("git_config", "--git-config", bool, "Copy host git config to container"),
    ConfigField("gh_token", "--gh-token", bool, "Forward GitHub CLI token (from gh auth token)"),
    ConfigField(
        "copy_agent_instructions",
        "--copy-agent-instructions",
        bool,
        "Copy global agent instruction files",
    ),
    ConfigField("shell", "--shell", str, "Shell for interactive sessions: bash, zsh, or fish"),
    ConfigField("setup", "--setup", bool, "Save these settings as global defaults first", persisted=False),
)

FIELDS_BY_NAME = {f.name: f for f in CONFIG_FIELDS}

# Fields a project config may not set
RESTRICTED_FIELDS = frozenset(
    {
        "runtime",
        "ssh_agent",
        "claude_config",
        "git_config",
        "gh_token",
        "copy_agent_instructions",
    }
)


@dataclass
class Config:
    """Resolved yolobox settings for one invocation."""

    runtime: str = ""
    image: str = DEFAULT_IMAGE
    mounts: List[str] = field(default_factory=list)
    env: List[str] = field(default_factory=list)
    ssh_agent: bool = False
    readonly_project: bool = False
    no_network: bool = False
    network: str = ""
    no_yolo: bool = False
    scratch: bool = False
    claude_config: bool = False
    git_config: bool = False
    gh_token: bool = False
    copy_agent_instructions: bool = False
    shell: str = ""
    setup: bool = False

    # Mounts that came from the project config and must stay inside it
    project_mounts: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[Path] = None) -> "Config":
        """Create a layer from a parsed TOML table. Unknown keys are ignored.

        Fields that are absent stay empty, so merging the layer leaves lower
        layers untouched.
        """
        values: Dict[str, Any] = {"image": ""}
        where = f" in {source}" if source else ""
        for name, value in data.items():
            spec = FIELDS_BY_NAME.get(name)
            if spec is None or not spec.persisted:
                logging.debug(f"Ignoring unknown config key {name!r}{where}")
                continue
            if spec.kind is list:
                if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                    raise ConfigParseError(f"'{name}' must be a list of strings{where}")
                values[name] = list(value)
            elif not isinstance(value, spec.kind):
                raise ConfigParseError(
                    f"'{name}' must be a {spec.kind.__name__}, got {type(value).__name__}{where}"
                )
            else:
                values[name] = value
        return cls(**values)

    def to_dict(self, include_defaults: bool = False) -> Dict[str, Any]:
        """Convert persisted fields to a dict, skipping empty values by default."""
        result = {}
        for spec in CONFIG_FIELDS:
            if not spec.persisted:
                continue
            value = getattr(self, spec.name)
            if value or include_defaults:
                result[spec.name] = list(value) if spec.kind is list else value
        return result


def merge_config(base: Config, layer: Config, append_lists: bool = False) -> Config:
    """Merge layer on top of base and return a new Config.

    Strings overwrite only when non-empty and booleans only when true, so a
    layer that is silent about a field never resets it. Lists are replaced
    when the layer defines any entries, or appended with append_lists
    (skipping entries already present).
    """
    result = dataclasses.replace(
        base,
        mounts=list(base.mounts),
        env=list(base.env),
        project_mounts=list(base.project_mounts),
    )
    for spec in CONFIG_FIELDS:
        value = getattr(layer, spec.name)
        if not value:
            continue
        if spec.kind is list:
            current = getattr(result, spec.name)
            if append_lists:
                # Entries already present are not repeated
                setattr(result, spec.name, list(dict.fromkeys(current + list(value))))
            else:
                setattr(result, spec.name, list(value))
        else:
            setattr(result, spec.name, value)

    if layer.mounts and not append_lists:
        # The old mounts are gone, and with them any project tags
        result.project_mounts = list(layer.project_mounts)
    else:
        result.project_mounts.extend(layer.project_mounts)
    return result


def redact_project_config(
    layer: Config,
    project_dir: str,
    restricted_fields=RESTRICTED_FIELDS,
) -> Config:
    """Clear settings a project config is not allowed to make."""
    result = dataclasses.replace(layer, mounts=list(layer.mounts), env=list(layer.env))

    for name in sorted(restricted_fields):
        if getattr(result, name):
            logging.warning(
                f"Ignoring '{name}' from {PROJECT_CONFIG_FILENAME}: "
                f"only allowed in the global config or on the command line"
            )
            setattr(result, name, FIELDS_BY_NAME[name].kind())

    if result.image.startswith("-"):
        logging.warning(f"Ignoring image {result.image!r} from {PROJECT_CONFIG_FILENAME}")
        result.image = ""

    result.mounts = [m for m in result.mounts if check_project_mount(m, project_dir)]
    result.project_mounts = list(result.mounts)
    return result


def validate_config(config: Config) -> None:
    """Reject contradictory settings."""
    if config.network and config.no_network:
        raise ConflictingNetworkConfigError("cannot use --network with --no-network")


def global_config_path() -> Path:
    """Location of the global config file."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "yolobox" / "config.toml"
    return Path.home() / ".config" / "yolobox" / "config.toml"


def load_config_file(path: Path) -> Optional[Config]:
    """Load one config file. Returns None if it does not exist."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return None
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigParseError(f"Error reading {path}: {e}") from e

    logging.debug(f"Loaded config from {path}")
    return Config.from_dict(data, source=path)


class ConfigStore:
    """Loads and merges the config layers for a project."""

    def __init__(
        self,
        global_path: Optional[Path] = None,
        project_filename: str = PROJECT_CONFIG_FILENAME,
        restricted_fields=RESTRICTED_FIELDS,
    ):
        self.global_path = global_path
        self.project_filename = project_filename
        self.restricted_fields = frozenset(restricted_fields)

    def layers(self, project_dir: str):
        """Yield (source, layer) pairs in precedence order."""
        yield ConfigSource.DEFAULT, Config()

        global_path = self.global_path or global_config_path()
        layer = load_config_file(global_path)
        if layer is not None:
            yield ConfigSource.GLOBAL, layer

        layer = load_config_file(Path(project_dir) / self.project_filename)
        if layer is not None:
            yield ConfigSource.PROJECT, redact_project_config(
                layer, project_dir, self.restricted_fields
            )

    def load(self, project_dir: str) -> Config:
        """Merge defaults, global and project config for project_dir."""
        config = None
        for source, layer in self.layers(project_dir):
            logging.debug(f"Merging {source.value} config")
            config = layer if config is None else merge_config(config, layer)
        validate_config(config)
        return config

    @staticmethod
    def apply_cli_overrides(config: Config, overrides: Config) -> Config:
        """Apply command-line flags. Repeated --mount/--env add to the config."""
        result = merge_config(config, overrides, append_lists=True)
        validate_config(result)
        return result


def save_global_config(config: Config, path: Optional[Path] = None) -> Path:
    """Write the non-default persisted settings of config as TOML."""
    path = path or global_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    defaults = Config()
    doc = tomlkit.document()
    for name, value in config.to_dict().items():
        if value == getattr(defaults, name):
            continue
        doc.add(name, value)

    with path.open("w") as f:
        tomlkit.dump(doc, f)
    logging.debug(f"Saved config to {path}")
    return path
