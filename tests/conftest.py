import pytest

from yolobox.container import InvocationBuilder
from yolobox.runtime import RuntimeInfo, runtime_info


@pytest.fixture
def fake_home(tmp_path, monkeypatch):
    """Point HOME at an empty temporary directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    return home


@pytest.fixture
def project_dir(tmp_path):
    """Create an empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def docker_runtime():
    return RuntimeInfo(name="docker", path="/usr/bin/docker")


@pytest.fixture
def apple_runtime():
    return runtime_info("/usr/local/bin/container")


@pytest.fixture
def builder():
    """Builder that sees an empty host environment and no terminal."""
    return InvocationBuilder(
        environ={},
        is_tty=lambda: False,
        gh_token=lambda: "",
        claude_credentials=lambda: "",
    )
