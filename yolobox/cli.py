"""Command-line interface for yolobox.

This module handles argument parsing, command routing, and user interaction.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from .version import __version__
from .config import (
    CONFIG_FIELDS,
    Config,
    ConfigStore,
    global_config_path,
    load_config_file,
    save_global_config,
)
from .container import (
    ContainerRunner,
    InvocationBuilder,
    check_runtime_memory,
)
from .runtime import resolve_runtime, resolved_runtime_name
from .shell import resolve_shell


# These become direct subcommands, e.g. "yolobox claude --resume"
TOOL_SHORTCUTS = ("claude", "codex", "gemini", "opencode", "copilot")


def setup_logging(verbose, quiet):
    """Configure logging based on verbosity flags."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s", stream=sys.stderr)
    elif quiet:
        logging.basicConfig(level=logging.ERROR, stream=sys.stderr)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)


def add_config_flags(parser):
    """Add one flag per config field."""
    for spec in CONFIG_FIELDS:
        if spec.kind is bool:
            parser.add_argument(spec.flag, dest=spec.name, action="store_true", help=spec.help)
        elif spec.kind is list:
            parser.add_argument(spec.flag, dest=spec.name, action="append", help=spec.help)
        else:
            parser.add_argument(spec.flag, dest=spec.name, help=spec.help)


def cli_overrides(args) -> Config:
    """Config layer holding the flags given on the command line."""
    values = {"image": ""}
    for spec in CONFIG_FIELDS:
        value = getattr(args, spec.name, None)
        if value:
            values[spec.name] = value
    return Config(**values)


def split_tool_args(args, tool_flags=None):
    """Separate yolobox flags from the tool's own flags.

    Known yolobox flags at the front are kept; the first unknown flag or
    positional argument, and everything after it, goes to the tool.
    """
    if tool_flags is None:
        tool_flags = {spec.flag.lstrip("-"): spec.kind is not bool for spec in CONFIG_FIELDS}
        # -v and -q are left to the tool
        tool_flags.update({"h": False, "help": False, "dry-run": False})

    yolobox_args = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--":
            return yolobox_args, args[i + 1 :]
        if not arg.startswith("-"):
            return yolobox_args, args[i:]

        name, has_value = arg.lstrip("-"), False
        if "=" in name:
            name, has_value = name.split("=", 1)[0], True
        if name not in tool_flags:
            return yolobox_args, args[i:]

        yolobox_args.append(arg)
        i += 1
        if tool_flags[name] and not has_value and i < len(args) and not args[i].startswith("-"):
            yolobox_args.append(args[i])
            i += 1

    return yolobox_args, []


def load_config(args, project_dir):
    """Merge config files and command-line flags."""
    store = ConfigStore()
    config = store.load(project_dir)
    return store.apply_cli_overrides(config, cli_overrides(args))


def run_in_container(args, config, project_dir, command, interactive):
    """Build the invocation and run it. Returns the exit code."""
    if config.scratch:
        logging.warning("Scratch mode: /home/yolo and /var/cache are ephemeral (data will not persist)")
        if config.readonly_project:
            logging.warning(
                "Scratch mode with readonly-project: /output is ephemeral (copy files out before exiting)"
            )

    runtime = resolve_runtime(config.runtime)
    if not args.dry_run:
        check_runtime_memory(runtime)

    invocation = InvocationBuilder().build(
        config, project_dir, command, interactive=interactive, runtime=runtime
    )
    result = ContainerRunner.run_container(runtime, invocation, dry_run=args.dry_run)
    return result.returncode


def cmd_shell(args, project_dir):
    """Start an interactive shell in the sandbox."""
    config = load_config(args, project_dir)

    if config.setup:
        path = save_cli_settings(args)
        logging.info(f"Config saved to {path}")

    shell = resolve_shell(config.shell, os.environ.get("SHELL", ""))
    if shell.rejected:
        logging.info(f"Shell '{shell.rejected}' is not supported in the sandbox, using {shell.name}")
    elif shell.detected:
        logging.debug(f"Using host shell: {shell.name}")

    return run_in_container(args, config, project_dir, [shell.name], interactive=True)


def cmd_run(args, project_dir):
    """Run a command in the sandbox."""
    command = args.command
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise ValueError("run requires a command")
    config = load_config(args, project_dir)
    return run_in_container(args, config, project_dir, command, interactive=False)


def cmd_tool(args, project_dir, tool_args):
    """Run one of the AI tool shortcuts."""
    config = load_config(args, project_dir)
    command = [args.subcommand, *tool_args]
    return run_in_container(args, config, project_dir, command, interactive=False)


def cmd_config_show(args, project_dir):
    """Print the resolved configuration."""
    config = load_config(args, project_dir)

    print(f"runtime = {resolved_runtime_name(config.runtime)}")
    print(f"project = {project_dir}")
    for key, value in config.to_dict(include_defaults=True).items():
        if key == "runtime":
            continue
        if isinstance(value, list):
            print(f"{key} =")
            for item in value:
                print(f"  - {item}")
        else:
            print(f"{key} = {value}")
    return 0


def save_cli_settings(args):
    """Add the command-line flags to the global config file.

    Only the existing global file and the flags are saved; project config
    never ends up in the global file.
    """
    path = global_config_path()
    config = load_config_file(path) or Config()
    config = ConfigStore.apply_cli_overrides(config, cli_overrides(args))
    config.setup = False
    return save_global_config(config, path)


def cmd_setup(args, project_dir):
    """Save the given settings as global defaults."""
    path = save_cli_settings(args)
    print(f"Config saved to {path}")
    return 0


def cmd_reset(args, project_dir):
    """Remove the persistent named volumes."""
    if not args.force:
        raise ValueError("reset requires --force (this will delete all cached data)")
    config = ConfigStore().load(project_dir)
    runtime = resolve_runtime(config.runtime)
    logging.warning("Removing yolobox volumes...")
    result = ContainerRunner.remove_volumes(runtime)
    if result.returncode == 0:
        print("Fresh start! All volumes removed.")
    return result.returncode


def create_parser(tool_shortcuts=TOOL_SHORTCUTS):
    """Create the main argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    common.add_argument("-q", "--quiet", action="store_true", help="Suppress non-essential output")

    run_options = argparse.ArgumentParser(add_help=False, parents=[common])
    run_options.add_argument(
        "--dry-run", action="store_true", help="Show the container command without running it"
    )
    add_config_flags(run_options)

    parser = argparse.ArgumentParser(
        prog="yolobox",
        description="Full-power AI agents, host-safe by default",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""Examples:
    yolobox                     # Drop into a shell
    yolobox run make build      # Run make inside sandbox
    yolobox claude              # Run Claude Code in sandbox
    yolobox --no-network        # No internet

Config:
    Global:  ~/.config/yolobox/config.toml
    Project: .yolobox.toml""",
    )
    parser.add_argument("--version", action="version", version=f"yolobox {__version__}")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    subparsers.add_parser(
        "shell", parents=[run_options], allow_abbrev=False, help="Start interactive shell in sandbox"
    )

    run_parser = subparsers.add_parser(
        "run",
        parents=[run_options],
        allow_abbrev=False,
        help="Run a command in sandbox",
        usage="yolobox run [options] COMMAND ...",
    )
    run_parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")

    for tool in tool_shortcuts:
        subparsers.add_parser(
            tool, parents=[run_options], allow_abbrev=False, help=f"Run {tool} in sandbox"
        )

    config_parser = subparsers.add_parser(
        "config", parents=[common], allow_abbrev=False, help="Print resolved configuration"
    )
    add_config_flags(config_parser)

    setup_parser = subparsers.add_parser(
        "setup", parents=[common], allow_abbrev=False, help="Save settings to the global config"
    )
    add_config_flags(setup_parser)

    reset_parser = subparsers.add_parser(
        "reset", parents=[common], help="Remove named volumes (fresh start)"
    )
    reset_parser.add_argument("--force", action="store_true", help="Confirm removing volumes")

    subparsers.add_parser("version", help="Show version info")

    return parser


def main(argv=None, tool_shortcuts=TOOL_SHORTCUTS):
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    # Bare "yolobox" or "yolobox --flag" starts a shell
    if not argv or (argv[0].startswith("-") and argv[0] not in ("-h", "--help", "--version")):
        argv = ["shell", *argv]

    tool_args = []
    if argv[0] in tool_shortcuts:
        yolobox_args, tool_args = split_tool_args(argv[1:])
        argv = [argv[0], *yolobox_args]

    parser = create_parser(tool_shortcuts)
    args = parser.parse_args(argv)

    if args.subcommand == "version":
        print(f"yolobox {__version__}")
        sys.exit(0)
    if args.subcommand is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose, args.quiet)

    project_dir = str(Path.cwd())
    try:
        if args.subcommand == "shell":
            code = cmd_shell(args, project_dir)
        elif args.subcommand == "run":
            code = cmd_run(args, project_dir)
        elif args.subcommand == "config":
            code = cmd_config_show(args, project_dir)
        elif args.subcommand == "setup":
            code = cmd_setup(args, project_dir)
        elif args.subcommand == "reset":
            code = cmd_reset(args, project_dir)
        else:
            code = cmd_tool(args, project_dir, tool_args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except (OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(code)
