import tarfile
from unittest.mock import patch

import pytest

from lfsbuild.buildsystem import snapshot
from lfsbuild.errors import BuildFailed, DeployFailed, ToolMissing
from lfsbuild.pkgtool import PackageTool, target_path


@pytest.fixture
def staging(tmp_path):
    d = tmp_path / "staging"
    (d / "usr" / "bin").mkdir(parents=True)
    (d / "usr" / "bin" / "tool").write_text("#!/bin/sh\n")
    (d / "usr" / "bin" / "tool").chmod(0o755)
    (d / "usr" / "lib").mkdir()
    (d / "usr" / "lib" / "libt.so.1").write_text("elf")
    (d / "usr" / "lib" / "libt.so").symlink_to("libt.so.1")
    return d


def test_target_path(tmp_path):
    assert target_path(tmp_path, "/usr/bin") == tmp_path / "usr" / "bin"
    assert target_path(tmp_path, "./usr") == tmp_path / "usr"
    assert target_path(tmp_path, "/") is None
    assert target_path(tmp_path, "/../etc/passwd") is None


def test_package_is_root_owned(paths, staging):
    tool = PackageTool(paths.packages)
    archive = tool.package(staging, "tool-1.0")
    assert archive == paths.packages / "tool-1.0.pkg.tar.gz"
    with tarfile.open(archive) as tar:
        members = tar.getmembers()
    names = [m.name for m in members]
    assert names[0] == "."
    assert "./usr/lib/libt.so" in names
    assert all(m.uid == 0 and m.gid == 0 for m in members)
    assert all(m.uname == "root" and m.gname == "root" for m in members)
    assert [p.name for p in paths.packages.iterdir()] == ["tool-1.0.pkg.tar.gz"]


@pytest.mark.parametrize("compression", ["xz", "bz2"])
def test_package_compression(paths, staging, compression):
    archive = PackageTool(paths.packages, compression=compression).package(staging, "tool-1.0")
    assert archive.name == f"tool-1.0.pkg.tar.{compression}"
    with tarfile.open(archive) as tar:
        assert "./usr/bin/tool" in tar.getnames()


def test_deploy_excludes_preexisting_dirs(paths, staging):
    sysroot = paths.sysroot
    (sysroot / "usr" / "bin").mkdir(parents=True)
    (sysroot / "usr" / "bin" / "other").write_text("x")
    tool = PackageTool(paths.packages)
    staged = snapshot(staging)
    archive = tool.package(staging, "tool-1.0")

    manifest = tool.deploy(archive, sysroot, staged)
    assert manifest == ["/usr/bin/tool", "/usr/lib", "/usr/lib/libt.so", "/usr/lib/libt.so.1"]
    assert (sysroot / "usr" / "bin" / "tool").read_text() == "#!/bin/sh\n"
    assert (sysroot / "usr" / "lib" / "libt.so").is_symlink()
    assert (sysroot / "usr" / "bin" / "other").exists()


def test_deploy_keeps_previously_owned_dirs(paths, staging):
    tool = PackageTool(paths.packages)
    staged = snapshot(staging)
    archive = tool.package(staging, "tool-1.0")
    first = tool.deploy(archive, paths.sysroot, staged)
    assert first == staged
    second = tool.deploy(archive, paths.sysroot, staged, owned=first)
    assert second == first


def test_deploy_replaces_existing_files(paths, staging):
    tool = PackageTool(paths.packages)
    archive = tool.package(staging, "tool-1.0")
    target = paths.sysroot / "usr" / "bin"
    target.mkdir(parents=True)
    (target / "tool").symlink_to("/nonexistent")
    tool.deploy(archive, paths.sysroot, snapshot(staging))
    assert not (target / "tool").is_symlink()
    assert (target / "tool").read_text() == "#!/bin/sh\n"


def test_deploy_failure(paths, tmp_path):
    bogus = tmp_path / "broken.pkg.tar.gz"
    bogus.write_bytes(b"not a tarball")
    with pytest.raises(DeployFailed):
        PackageTool(paths.packages).deploy(bogus, paths.sysroot, ["/usr"])


def test_fakeroot_mode_requires_fakeroot(paths, staging):
    tool = PackageTool(paths.packages, use_fakeroot=True)
    with patch("lfsbuild.pkgtool.which", return_value=None):
        with pytest.raises(ToolMissing):
            tool.package(staging, "tool-1.0")
    assert list(paths.packages.iterdir()) == []


def test_fakeroot_deploy_runs_under_fakeroot(paths, staging):
    archive = PackageTool(paths.packages).package(staging, "tool-1.0")
    tool = PackageTool(paths.packages, use_fakeroot=True)
    with patch("lfsbuild.pkgtool.which", return_value="/usr/bin/fakeroot"), \
         patch("lfsbuild.pkgtool.run_logged", return_value=0) as mock_run:
        manifest = tool.deploy(archive, paths.sysroot, snapshot(staging))
    cmd = mock_run.call_args.args[0]
    assert cmd == ["fakeroot", "tar", "-xpf", str(archive), "-C", str(paths.sysroot)]
    assert manifest == snapshot(staging)


def test_fakeroot_deploy_requires_fakeroot(paths, staging):
    archive = PackageTool(paths.packages).package(staging, "tool-1.0")
    tool = PackageTool(paths.packages, use_fakeroot=True)
    with patch("lfsbuild.pkgtool.which", return_value=None):
        with pytest.raises(ToolMissing) as excinfo:
            tool.deploy(archive, paths.sysroot, ["/usr"])
    assert excinfo.value.tool == "fakeroot"


def test_fakeroot_deploy_failure(paths, staging):
    archive = PackageTool(paths.packages).package(staging, "tool-1.0")
    tool = PackageTool(paths.packages, use_fakeroot=True)
    with patch("lfsbuild.pkgtool.which", return_value="/usr/bin/fakeroot"), \
         patch("lfsbuild.pkgtool.run_logged", return_value=2):
        with pytest.raises(DeployFailed):
            tool.deploy(archive, paths.sysroot, ["/usr"])


def test_fakeroot_package_command_and_failure(paths, staging):
    tool = PackageTool(paths.packages, compression="xz", use_fakeroot=True)
    with patch("lfsbuild.pkgtool.which", return_value="/usr/bin/fakeroot"), \
         patch("lfsbuild.pkgtool.run_logged", return_value=0) as mock_run:
        archive = tool.package(staging, "tool-1.0")
    cmd = mock_run.call_args.args[0]
    assert cmd[:5] == ["fakeroot", "tar", "-C", str(staging), "-J"]
    assert archive.name == "tool-1.0.pkg.tar.xz"

    with patch("lfsbuild.pkgtool.which", return_value="/usr/bin/fakeroot"), \
         patch("lfsbuild.pkgtool.run_logged", return_value=2):
        with pytest.raises(BuildFailed) as excinfo:
            tool.package(staging, "tool-2.0")
    assert excinfo.value.stage == "package"
    assert excinfo.value.returncode == 2
    assert not tool.archive_path("tool-2.0").exists()
