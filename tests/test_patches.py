from unittest.mock import patch

import pytest

from lfsbuild.errors import PatchNotFound, PatchRejected, ToolMissing
from lfsbuild.patches import PatchManager


@pytest.fixture
def manager(paths):
    return PatchManager(paths.sources)


@pytest.fixture
def srcdir(tmp_path):
    d = tmp_path / "src"
    d.mkdir()
    return d


def test_no_patches_is_noop(manager, srcdir):
    with patch("lfsbuild.patches.which", return_value=None):
        assert manager.apply([], srcdir) == []


def test_find_prefers_sources_dir(manager, paths, tmp_path):
    (paths.sources / "fix.patch").write_text("--- a\n")
    literal = tmp_path / "other.patch"
    literal.write_text("--- b\n")
    assert manager.find("fix.patch") == paths.sources / "fix.patch"
    assert manager.find(str(literal)) == literal
    with pytest.raises(PatchNotFound):
        manager.find("missing.patch")


def test_apply_in_order(manager, paths, srcdir):
    for name in ("a.patch", "b.patch"):
        (paths.sources / name).write_text("--- x\n")
    with patch("lfsbuild.patches.which", return_value="/usr/bin/patch"), \
         patch("lfsbuild.patches.run_logged", return_value=0) as mock_run:
        applied = manager.apply(["a.patch", "b.patch"], srcdir)
    assert [p.name for p in applied] == ["a.patch", "b.patch"]
    first = mock_run.call_args_list[0]
    assert first.args[0][:3] == ["patch", "-p1", "-i"]
    assert first.args[0][3].endswith("a.patch")
    assert first.kwargs["cwd"] == srcdir


def test_first_rejection_aborts(manager, paths, srcdir):
    for name in ("a.patch", "b.patch"):
        (paths.sources / name).write_text("--- x\n")
    with patch("lfsbuild.patches.which", return_value="/usr/bin/patch"), \
         patch("lfsbuild.patches.run_logged", return_value=1) as mock_run:
        with pytest.raises(PatchRejected):
            manager.apply(["a.patch", "b.patch"], srcdir)
    assert mock_run.call_count == 1


def test_missing_patch_aborts(manager, paths, srcdir):
    (paths.sources / "a.patch").write_text("--- x\n")
    with patch("lfsbuild.patches.which", return_value="/usr/bin/patch"), \
         patch("lfsbuild.patches.run_logged", return_value=0) as mock_run:
        with pytest.raises(PatchNotFound):
            manager.apply(["missing.patch", "a.patch"], srcdir)
    mock_run.assert_not_called()


def test_patch_tool_missing(manager, paths, srcdir):
    (paths.sources / "a.patch").write_text("--- x\n")
    with patch("lfsbuild.patches.which", return_value=None):
        with pytest.raises(ToolMissing):
            manager.apply(["a.patch"], srcdir)
