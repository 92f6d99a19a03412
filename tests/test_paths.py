"""Tests for host path resolution and project mount checks."""

import os
import logging

import pytest

from yolobox.paths import (
    EmptyPathError,
    InvalidMountSyntaxError,
    MountSpec,
    check_project_mount,
    is_within_root,
    resolve_mount,
    resolve_path,
)


@pytest.mark.unit
class TestResolvePath:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("./bar", "/project/bar"),
            (".", "/project"),
            ("../sibling", "/sibling"),
            ("/absolute/path", "/absolute/path"),
            ("/absolute/./x/../path", "/absolute/path"),
            ("relative", "relative"),  # named volume passes through
            ("my-volume", "my-volume"),
        ],
    )
    def test_resolve(self, path, expected):
        """Test relative, absolute and named volume paths."""
        assert resolve_path(path, "/project") == expected

    def test_tilde(self, fake_home):
        """Test that ~ and ~/rest expand to the home directory."""
        assert resolve_path("~", "/project") == str(fake_home)
        assert resolve_path("~/foo", "/project") == os.path.join(str(fake_home), "foo")

    def test_tilde_independent_of_base(self, fake_home):
        """Test that home-relative paths ignore the base directory."""
        for rest in ["foo", "a/b/c", ".config/x"]:
            expected = os.path.join(resolve_path("~", "/x"), rest)
            assert resolve_path(f"~/{rest}", "/one") == expected
            assert resolve_path(f"~/{rest}", "/two/three") == expected

    def test_empty(self):
        """Test that an empty path is rejected."""
        with pytest.raises(EmptyPathError):
            resolve_path("", "/project")

    def test_idempotent(self):
        """Test that resolving an already resolved path changes nothing."""
        once = resolve_path("./src/../lib", "/project")
        assert resolve_path(once, "/elsewhere") == once


@pytest.mark.unit
class TestMounts:
    def test_resolve_mount(self):
        """Test resolving a relative mount source."""
        assert resolve_mount("./src:/app/src", "/project") == "/project/src:/app/src"

    def test_resolve_mount_keeps_options(self):
        """Test that mount options are kept."""
        assert resolve_mount("./data:/data:ro", "/project") == "/project/data:/data:ro"

    def test_resolve_mount_named_volume(self):
        """Test that named volumes pass through."""
        assert resolve_mount("cache:/root/.cache", "/project") == "cache:/root/.cache"

    def test_resolve_mount_home(self, fake_home):
        """Test a home-relative mount source."""
        assert resolve_mount("~/.aws:/aws:ro", "/project") == f"{fake_home}/.aws:/aws:ro"

    def test_invalid_mount(self):
        """Test that a mount without destination is rejected."""
        with pytest.raises(InvalidMountSyntaxError, match="expected src:dst"):
            resolve_mount("no-colon", "/project")

    def test_empty_source(self):
        """Test that a mount with an empty source is rejected."""
        with pytest.raises(EmptyPathError):
            resolve_mount(":/dst", "/project")

    def test_parse(self):
        """Test splitting on the first two colons."""
        assert MountSpec.parse("a:b") == MountSpec("a", "b")
        assert MountSpec.parse("a:b:ro,z") == MountSpec("a", "b", "ro,z")
        assert MountSpec.parse("a:b:c:d").options == "c:d"


@pytest.mark.unit
class TestIsWithinRoot:
    def test_same_and_children(self):
        """Test the root itself and its descendants."""
        assert is_within_root("/project", "/project")
        assert is_within_root("/project/a/b", "/project")
        assert is_within_root("/project/a", "/project/")

    def test_sibling_with_common_prefix(self):
        """Test that a sibling sharing a name prefix is outside."""
        assert not is_within_root("/project-evil", "/project")
        assert not is_within_root("/projectx/file", "/project")

    def test_outside(self):
        """Test unrelated paths."""
        assert not is_within_root("/etc/passwd", "/project")
        assert not is_within_root("/", "/project")

    def test_filesystem_root(self):
        """Test that everything is inside /."""
        assert is_within_root("/anything", "/")


@pytest.mark.unit
class TestCheckProjectMount:
    @pytest.mark.parametrize(
        "spec",
        [
            "/etc:/etc",
            "~/.ssh:/ssh",
            "~:/home",
            "$HOME/.ssh:/ssh",
            "../outside:/data",
            "src/../../outside:/data",
            ":/data",
        ],
    )
    def test_string_rejects(self, spec, project_dir, caplog):
        """Test sources rejected without touching the filesystem."""
        with caplog.at_level(logging.WARNING):
            assert not check_project_mount(spec, str(project_dir))
        assert "Ignoring project mount" in caplog.text

    def test_plain_directory(self, project_dir):
        """Test a directory inside the project."""
        (project_dir / "src").mkdir()
        assert check_project_mount("src:/app/src", str(project_dir))
        assert check_project_mount("./src:/app/src:ro", str(project_dir))

    def test_missing_source_is_accepted(self, project_dir):
        """Test that a source that does not exist yet is accepted."""
        assert check_project_mount("build/output:/out", str(project_dir))

    def test_symlink_outside(self, tmp_path, project_dir, caplog):
        """Test a symlink pointing outside the project."""
        outside = tmp_path / "secrets"
        outside.mkdir()
        os.symlink(outside, project_dir / "link")

        with caplog.at_level(logging.WARNING):
            assert not check_project_mount("link:/data", str(project_dir))
        assert "outside the project" in caplog.text

    def test_relative_symlink_outside(self, tmp_path, project_dir):
        """Test a relative symlink climbing out of the project."""
        (tmp_path / "secrets").mkdir()
        os.symlink("../secrets", project_dir / "link")
        assert not check_project_mount("./link:/data", str(project_dir))

    def test_symlink_to_prefix_sibling(self, tmp_path, project_dir):
        """Test a symlink to a sibling whose name starts with the project's."""
        evil = tmp_path / "project-evil"
        evil.mkdir()
        os.symlink(evil, project_dir / "link")
        assert not check_project_mount("link:/data", str(project_dir))

    def test_dangling_symlink_outside(self, tmp_path, project_dir):
        """Test a dangling symlink whose target would be outside."""
        os.symlink(tmp_path / "not-created-yet", project_dir / "link")
        assert not check_project_mount("link:/data", str(project_dir))

    def test_symlink_inside(self, project_dir):
        """Test a symlink to a directory inside the project."""
        (project_dir / "src").mkdir()
        os.symlink("src", project_dir / "link")
        assert check_project_mount("link:/data", str(project_dir))

    def test_symlink_to_root(self, project_dir):
        """Test a symlink to the project root itself."""
        os.symlink(".", project_dir / "self")
        assert check_project_mount("self:/data", str(project_dir))

    def test_symlink_chain_outside(self, tmp_path, project_dir):
        """Test a chain of symlinks that ends outside."""
        (tmp_path / "secrets").mkdir()
        os.symlink(tmp_path / "secrets", project_dir / "second")
        os.symlink("second", project_dir / "first")
        assert not check_project_mount("first:/data", str(project_dir))

    def test_symlinked_parent_directory(self, tmp_path, project_dir):
        """Test a file below a symlinked directory that points outside."""
        outside = tmp_path / "secrets"
        outside.mkdir()
        (outside / "key").write_text("secret")
        os.symlink(outside, project_dir / "sub")
        assert not check_project_mount("sub/key:/key", str(project_dir))
