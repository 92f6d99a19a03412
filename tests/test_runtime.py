"""Tests for container runtime discovery."""

import pytest

from yolobox.runtime import (
    NoRuntimeFoundError,
    RuntimeNotInPathError,
    resolve_runtime,
    resolved_runtime_name,
    runtime_info,
)


def fake_which(*installed):
    paths = {name: f"/usr/local/bin/{name}" for name in installed}
    return paths.get


@pytest.mark.unit
class TestResolveRuntime:
    def test_auto_prefers_docker(self):
        """Test that docker is probed first."""
        runtime = resolve_runtime("", which=fake_which("podman", "docker"))
        assert runtime.path == "/usr/local/bin/docker"

    def test_auto_falls_back(self):
        """Test falling back to podman and Apple container."""
        assert resolve_runtime("", which=fake_which("podman")).name == "podman"
        assert resolve_runtime("", which=fake_which("container")).name == "container"

    def test_auto_none_found(self):
        """Test the error when no runtime is installed."""
        with pytest.raises(NoRuntimeFoundError, match="no container runtime found"):
            resolve_runtime("", which=fake_which())

    def test_named(self):
        """Test resolving a configured runtime."""
        runtime = resolve_runtime("podman", which=fake_which("docker", "podman"))
        assert runtime.path == "/usr/local/bin/podman"

    def test_alias(self):
        """Test that colima runs the docker binary."""
        runtime = resolve_runtime("colima", which=fake_which("docker"))
        assert runtime.path == "/usr/local/bin/docker"

    def test_named_not_in_path(self):
        """Test the error for a configured runtime missing from PATH."""
        with pytest.raises(RuntimeNotInPathError, match="'podman' not found in PATH"):
            resolve_runtime("podman", which=fake_which("docker"))

    def test_alias_not_in_path_names_request(self):
        """Test that the error names the requested alias."""
        with pytest.raises(RuntimeNotInPathError, match="'colima'"):
            resolve_runtime("colima", which=fake_which())

    def test_errors_are_file_not_found(self):
        """Test that runtime errors are FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            resolve_runtime("", which=fake_which())


@pytest.mark.unit
class TestCapabilities:
    def test_docker(self):
        """Test docker capabilities."""
        runtime = runtime_info("/usr/bin/docker")
        assert runtime.supports_file_mounts
        assert not runtime.supports_native_ssh_forward
        assert runtime.reports_memory

    def test_apple_container(self):
        """Test Apple container capabilities."""
        runtime = resolve_runtime("container", which=fake_which("container"))
        assert not runtime.supports_file_mounts
        assert runtime.supports_native_ssh_forward
        assert not runtime.reports_memory

    def test_unknown_binary_like_docker(self):
        """Test that unknown binaries behave like docker."""
        runtime = runtime_info("/opt/bin/nerdctl")
        assert runtime.name == "nerdctl"
        assert runtime.supports_file_mounts


@pytest.mark.unit
@pytest.mark.parametrize(
    "name,expected",
    [("", "auto"), ("docker", "docker"), ("podman", "podman"), ("colima", "docker"), ("container", "container")],
)
def test_resolved_runtime_name(name, expected):
    """Test the runtime name shown by the config command."""
    assert resolved_runtime_name(name) == expected
