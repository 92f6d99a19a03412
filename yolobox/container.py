"""Building and running the container invocation.

This module turns a resolved Config into the argument vector for the
container runtime (``run --rm ... IMAGE COMMAND``) and hands it to
``subprocess``. Building never executes the container; the only side
effects are stat calls and, for runtimes without file mounts, a fresh
staging directory holding copies of host files.
"""

import logging
import os
import platform
import shlex
import shutil
import stat
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .config import Config, validate_config
from .paths import check_project_mount, resolve_mount
from .runtime import RuntimeInfo, resolve_runtime


@dataclass(frozen=True)
class HostFileMount:
    """A host file or directory copied into the container on request."""

    toggle: str  # Config field enabling it
    host_path: str  # relative to the user's home
    container_path: str
    staged_name: str = ""  # location under the staging dir, for files
    directory: bool = False


@dataclass(frozen=True)
class SandboxPolicy:
    """Fixed names and paths used when building an invocation."""

    # API keys forwarded verbatim when set on the host
    passthrough_env: Tuple[str, ...] = (
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "COPILOT_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "GH_TOKEN",
        "OPENROUTER_API_KEY",
        "GEMINI_API_KEY",
        "GEMINI_MODEL",
        "GOOGLE_API_KEY",
    )
    terminal_env: Tuple[str, ...] = ("TERM", "LANG")
    home_volume: str = "yolobox-home"
    home_path: str = "/home/yolo"
    cache_volume: str = "yolobox-cache"
    cache_path: str = "/var/cache"
    output_volume: str = "yolobox-output"
    output_path: str = "/output"
    host_files: Tuple[HostFileMount, ...] = (
        HostFileMount("claude_config", ".claude", "/host-claude/.claude", directory=True),
        HostFileMount(
            "claude_config", ".claude.json", "/host-claude/.claude.json", "claude/.claude.json"
        ),
        HostFileMount("git_config", ".gitconfig", "/host-git/.gitconfig", "git/.gitconfig"),
        HostFileMount(
            "copy_agent_instructions",
            ".claude/CLAUDE.md",
            "/host-agent-instructions/claude/CLAUDE.md",
            "agent-instructions/claude/CLAUDE.md",
        ),
        HostFileMount(
            "copy_agent_instructions",
            ".gemini/GEMINI.md",
            "/host-agent-instructions/gemini/GEMINI.md",
            "agent-instructions/gemini/GEMINI.md",
        ),
        HostFileMount(
            "copy_agent_instructions",
            ".codex/AGENTS.md",
            "/host-agent-instructions/codex/AGENTS.md",
            "agent-instructions/codex/AGENTS.md",
        ),
        HostFileMount(
            "copy_agent_instructions",
            ".copilot/agents",
            "/host-agent-instructions/copilot/agents",
            directory=True,
        ),
    )
    claude_credentials_path: str = "/host-claude/.credentials.json"
    claude_credentials_staged_name: str = "claude/.credentials.json"
    staging_path: str = "/host-files"
    ssh_socket_path: str = "/ssh-agent"

    @property
    def volume_names(self) -> List[str]:
        return [self.home_volume, self.cache_volume, self.output_volume]


@dataclass(frozen=True)
class Invocation:
    """Runtime arguments for one container run.

    staging_dirs are temporary host directories referenced by the
    arguments; remove them once the container has exited.
    """

    args: Tuple[str, ...]
    staging_dirs: Tuple[str, ...] = field(default_factory=tuple)


def get_gh_token() -> str:
    """Token from the GitHub CLI, or "" if gh is missing or logged out."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logging.debug(f"No GitHub CLI token available: {e}")
        return ""
    return result.stdout.strip()


def get_claude_credentials() -> str:
    """Claude OAuth credentials from the macOS keychain, or ""."""
    if platform.system() != "Darwin":
        return ""
    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-s", "Claude Code-credentials", "-w"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logging.debug(f"No Claude credentials in keychain: {e}")
        return ""
    return result.stdout.strip()


def _stdio_is_tty() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _stat(path: str) -> Optional[os.stat_result]:
    """stat() that returns None for missing paths and raises anything else."""
    try:
        return os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None


class InvocationBuilder:
    """Builds runtime arguments from a Config.

    Host state (environment, terminal, credential helpers) is injectable so
    the same builder can be exercised without touching the real host.
    """

    def __init__(
        self,
        policy: Optional[SandboxPolicy] = None,
        environ: Optional[dict] = None,
        is_tty: Optional[Callable[[], bool]] = None,
        gh_token: Optional[Callable[[], str]] = None,
        claude_credentials: Optional[Callable[[], str]] = None,
    ):
        self.policy = policy or SandboxPolicy()
        self.environ = environ
        self.is_tty = is_tty or _stdio_is_tty
        self.gh_token = gh_token or get_gh_token
        self.claude_credentials = claude_credentials or get_claude_credentials

    def build(
        self,
        config: Config,
        project_dir: str,
        command: Sequence[str],
        interactive: bool = False,
        runtime: Optional[RuntimeInfo] = None,
    ) -> Invocation:
        """Build the invocation. Nothing partial is returned on error."""
        validate_config(config)
        if runtime is None:
            runtime = resolve_runtime(config.runtime)

        staging_dirs: List[str] = []
        try:
            args = self._build_args(
                config, os.path.abspath(project_dir), command, interactive, runtime, staging_dirs
            )
        except BaseException:
            for path in staging_dirs:
                shutil.rmtree(path, ignore_errors=True)
            raise
        return Invocation(tuple(args), tuple(staging_dirs))

    def _build_args(self, config, project, command, interactive, runtime, staging_dirs):
        policy = self.policy
        environ = os.environ if self.environ is None else self.environ
        logging.debug("Building container run arguments")

        args = ["run", "--rm"]

        # Explicit interactive sessions always get a terminal; other commands
        # get one when a human is attached to both ends
        if interactive or self.is_tty():
            args.append("-it")

        args.extend(["-w", project])
        args.extend(["-e", "YOLOBOX=1", "-e", f"YOLOBOX_PROJECT_PATH={project}"])
        if config.no_yolo:
            args.extend(["-e", "NO_YOLO=1"])
        for name in policy.terminal_env:
            if environ.get(name):
                args.extend(["-e", f"{name}={environ[name]}"])

        for name in policy.passthrough_env:
            if environ.get(name):
                args.extend(["-e", f"{name}={environ[name]}"])
                logging.debug(f"  Passing: {name}")

        if config.gh_token:
            token = self.gh_token()
            if token:
                args.extend(["-e", f"GH_TOKEN={token}"])

        for env_var in config.env:
            args.extend(["-e", env_var])

        # Project is mounted at its host path so tool sessions keep working
        project_mount = f"{project}:{project}"
        if config.readonly_project:
            project_mount += ":ro"
        args.extend(["-v", project_mount])
        if config.readonly_project:
            if config.scratch:
                args.extend(["-v", policy.output_path])
            else:
                args.extend(["-v", f"{policy.output_volume}:{policy.output_path}"])

        if not config.scratch:
            args.extend(["-v", f"{policy.home_volume}:{policy.home_path}"])
            args.extend(["-v", f"{policy.cache_volume}:{policy.cache_path}"])

        args.extend(self._host_file_args(config, runtime, staging_dirs))

        for mount in config.mounts:
            if mount in config.project_mounts and not check_project_mount(mount, project):
                continue
            args.extend(["-v", resolve_mount(mount, project)])

        if config.ssh_agent:
            if runtime.supports_native_ssh_forward:
                args.append("--ssh")
            else:
                sock = environ.get("SSH_AUTH_SOCK")
                if not sock:
                    logging.warning("SSH_AUTH_SOCK not set; skipping ssh-agent mount")
                else:
                    args.extend(["-v", f"{sock}:{policy.ssh_socket_path}"])
                    args.extend(["-e", f"SSH_AUTH_SOCK={policy.ssh_socket_path}"])

        if config.no_network:
            args.extend(["--network", "none"])
        elif config.network:
            args.extend(["--network", config.network])

        args.append(config.image)
        args.extend(command)
        return args

    def _host_file_args(self, config, runtime, staging_dirs):
        """Mount the requested host credential files.

        Runtimes without file mounts get the files copied into one staging
        directory instead, which the entrypoint finds via YOLOBOX_HOST_FILES.
        """
        policy = self.policy
        wanted = [m for m in policy.host_files if getattr(config, m.toggle)]
        if not wanted and not config.claude_config:
            return []

        home = str(Path.home())
        args = []
        staged: List[Tuple[str, str]] = []  # (staged name, host path)

        for mount in wanted:
            host_path = os.path.join(home, mount.host_path)
            st = _stat(host_path)
            if st is None:
                continue
            if mount.directory:
                if stat.S_ISDIR(st.st_mode):
                    args.extend(["-v", f"{host_path}:{mount.container_path}:ro"])
            elif runtime.supports_file_mounts:
                args.extend(["-v", f"{host_path}:{mount.container_path}:ro"])
            else:
                staged.append((mount.staged_name, host_path))

        credentials = self.claude_credentials() if config.claude_config else ""
        if credentials and runtime.supports_file_mounts:
            # Under home so Docker Desktop can share it
            tmp_root = Path(home) / ".yolobox" / "tmp"
            tmp_root.mkdir(parents=True, exist_ok=True, mode=0o700)
            creds_dir = tempfile.mkdtemp(prefix="yolobox-creds-", dir=tmp_root)
            staging_dirs.append(creds_dir)
            creds_path = os.path.join(creds_dir, "credentials.json")
            _write_private(creds_path, credentials)
            args.extend(["-v", f"{creds_path}:{policy.claude_credentials_path}:ro"])

        if staged or (credentials and not runtime.supports_file_mounts):
            staging_dir = tempfile.mkdtemp(prefix="yolobox-mounts-")
            staging_dirs.append(staging_dir)
            logging.debug(f"Created staging directory: {staging_dir}")
            for name, host_path in staged:
                dest = os.path.join(staging_dir, name)
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                shutil.copyfile(host_path, dest)
            if credentials and not runtime.supports_file_mounts:
                dest = os.path.join(staging_dir, policy.claude_credentials_staged_name)
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                _write_private(dest, credentials)
            args.extend(["-v", f"{staging_dir}:{policy.staging_path}:ro"])
            args.extend(["-e", f"YOLOBOX_HOST_FILES={policy.staging_path}"])

        return args


def _write_private(path: str, content: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)


def check_runtime_memory(runtime: RuntimeInfo, min_gb: float = 3.5) -> None:
    """Warn when the runtime VM has too little memory for AI tools."""
    if not runtime.reports_memory:
        return
    try:
        result = subprocess.run(
            [runtime.path, "info", "--format", "{{.MemTotal}}"],
            capture_output=True,
            text=True,
            check=True,
        )
        mem_gb = int(result.stdout.strip()) / (1024**3)
    except (OSError, ValueError, subprocess.CalledProcessError) as e:
        logging.debug(f"Could not read runtime memory: {e}")
        return
    if mem_gb < min_gb:
        logging.warning(f"{runtime.name} has only {mem_gb:.1f}GB RAM. Claude Code may get OOM killed.")
        logging.warning("Increase Docker/Colima memory to 4GB+ for best results.")


class ContainerRunner:
    """Runs invocations with the container runtime."""

    @staticmethod
    def _cleanup(paths: Sequence[str]) -> None:
        for path in paths:
            shutil.rmtree(path, ignore_errors=True)
            logging.debug(f"Cleaned up staging directory: {path}")

    @staticmethod
    def run_container(
        runtime: RuntimeInfo,
        invocation: Invocation,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run the invocation, inheriting stdio, or print it with dry_run."""
        cmd = [runtime.path, *invocation.args]
        logging.debug(f"Executing: {shlex.join(cmd)}")
        try:
            if dry_run:
                print(shlex.join(cmd))
                return subprocess.CompletedProcess(cmd, 0)
            result = subprocess.run(cmd, check=False)
            if result.returncode != 0:
                logging.debug(f"Container exited with code: {result.returncode}")
            return result
        finally:
            ContainerRunner._cleanup(invocation.staging_dirs)

    @staticmethod
    def remove_volumes(
        runtime: RuntimeInfo, policy: Optional[SandboxPolicy] = None
    ) -> subprocess.CompletedProcess:
        """Delete the persistent named volumes."""
        policy = policy or SandboxPolicy()
        cmd = [runtime.path, "volume", "rm", "-f", *policy.volume_names]
        logging.debug(f"Executing: {shlex.join(cmd)}")
        return subprocess.run(cmd, check=False)
