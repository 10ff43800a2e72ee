import shutil
import subprocess
from unittest.mock import patch

import pytest

from lfsbuild.errors import DownloadFailed, SourceNotFound, ToolMissing, UnsupportedFormat
from lfsbuild.fetcher import Fetcher, is_url, locate_source_root, url_basename


@pytest.fixture
def fetcher(paths):
    return Fetcher(paths.sources, ["curl", "wget"])


def test_is_url():
    assert is_url("https://ftp.gnu.org/gnu/make/make-4.4.tar.gz")
    assert is_url("ftp://example.org/a.tar.xz")
    assert not is_url("make-4.4.tar.gz")
    assert not is_url("/srv/sources/make-4.4.tar.gz")


def test_url_basename():
    assert url_basename("https://example.org/dl/pkg-1.0.tar.gz?mirror=1") == "pkg-1.0.tar.gz"
    with pytest.raises(DownloadFailed):
        url_basename("https://example.org/")


def test_resolve_local(fetcher, hello_source):
    assert fetcher.resolve("hello-1.0.tar.gz") == hello_source


def test_resolve_absolute_path(fetcher, hello_source):
    assert fetcher.resolve(str(hello_source)) == hello_source


def test_resolve_missing(fetcher):
    with pytest.raises(SourceNotFound):
        fetcher.resolve("nope-1.0.tar.gz")
    with pytest.raises(SourceNotFound):
        fetcher.resolve("")


def test_resolve_url_uses_cached_file(fetcher, hello_source):
    with patch.object(Fetcher, "download") as mock_download:
        got = fetcher.resolve("https://example.org/src/hello-1.0.tar.gz")
    assert got == hello_source
    mock_download.assert_not_called()


def test_download_falls_back_to_next_tool(fetcher, paths):
    calls = []

    def fake(tool, url, part, log):
        calls.append(tool)
        if tool == "curl":
            part.write_bytes(b"partial")
            return False
        part.write_bytes(b"data")
        return True

    with patch.object(Fetcher, "_download_with", side_effect=fake):
        got = fetcher.resolve("https://example.org/pkg-2.0.tar.gz")
    assert calls == ["curl", "wget"]
    assert got == paths.sources / "pkg-2.0.tar.gz"
    assert got.read_bytes() == b"data"
    assert not (paths.sources / "pkg-2.0.tar.gz.part").exists()


def test_download_all_tools_fail(fetcher, paths):
    with patch.object(Fetcher, "_download_with", return_value=False):
        with pytest.raises(DownloadFailed):
            fetcher.resolve("https://example.org/pkg-2.0.tar.gz")
    assert list(paths.sources.iterdir()) == []


def test_download_skips_missing_tool(fetcher, paths):
    with patch("lfsbuild.fetcher.which", return_value=None):
        with pytest.raises(DownloadFailed):
            fetcher.download("https://example.org/x.tar.gz", paths.sources / "x.tar.gz")


@pytest.mark.parametrize("filename,mode", [
    ("p-1.tar.gz", "w:gz"),
    ("p-1.tgz", "w:gz"),
    ("p-1.tar.bz2", "w:bz2"),
    ("p-1.tbz2", "w:bz2"),
    ("p-1.tar.xz", "w:xz"),
    ("p-1.txz", "w:xz"),
    ("p-1.tar", "w"),
])
def test_extract_tar_formats(fetcher, make_tarball, tmp_path, filename, mode):
    archive = make_tarball(filename, {"configure": "#!/bin/sh\n"}, top="p-1", mode=mode)
    dest = tmp_path / "work"
    fetcher.extract(archive, dest)
    assert (dest / "p-1" / "configure").read_text() == "#!/bin/sh\n"


def test_extract_unsupported(fetcher, paths, tmp_path):
    archive = paths.sources / "p-1.rar"
    archive.write_bytes(b"Rar!")
    with pytest.raises(UnsupportedFormat):
        fetcher.extract(archive, tmp_path / "work")


def test_extract_zip_requires_unzip(fetcher, paths, tmp_path):
    archive = paths.sources / "p-1.zip"
    archive.write_bytes(b"PK")
    with patch("lfsbuild.fetcher.which", return_value=None):
        with pytest.raises(ToolMissing) as excinfo:
            fetcher.extract(archive, tmp_path / "work")
    assert excinfo.value.tool == "unzip"


def test_extract_zip_runs_unzip(fetcher, paths, tmp_path):
    archive = paths.sources / "p-1.zip"
    archive.write_bytes(b"PK")
    dest = tmp_path / "work"
    with patch("lfsbuild.fetcher.which", return_value="/usr/bin/unzip"), \
         patch("lfsbuild.fetcher.run_logged", return_value=0) as mock_run:
        fetcher.extract(archive, dest)
    assert mock_run.call_args.args[0] == ["unzip", "-q", "-o", str(archive), "-d", str(dest)]

    with patch("lfsbuild.fetcher.which", return_value="/usr/bin/unzip"), \
         patch("lfsbuild.fetcher.run_logged", return_value=9):
        with pytest.raises(UnsupportedFormat):
            fetcher.extract(archive, dest)


@pytest.mark.skipif(shutil.which("zstd") is None, reason="zstd not installed")
def test_extract_zst_through_zstd(fetcher, make_tarball, tmp_path):
    tarball = make_tarball("p-1.tar", {"configure": "#!/bin/sh\n", "src/main.c": "int main;\n"}, top="p-1", mode="w")
    archive = tarball.with_name("p-1.tar.zst")
    subprocess.run(["zstd", "-q", "-o", str(archive), str(tarball)], check=True)
    dest = tmp_path / "work"
    fetcher.extract(archive, dest)
    assert (dest / "p-1" / "configure").read_text() == "#!/bin/sh\n"
    assert (dest / "p-1" / "src" / "main.c").read_text() == "int main;\n"


@pytest.mark.skipif(shutil.which("zstd") is None, reason="zstd not installed")
def test_extract_zst_corrupt(fetcher, paths, tmp_path):
    archive = paths.sources / "p-1.tar.zst"
    archive.write_bytes(b"not zstd at all")
    with pytest.raises(UnsupportedFormat):
        fetcher.extract(archive, tmp_path / "work")


def test_extract_zst_requires_zstd(fetcher, paths, tmp_path):
    archive = paths.sources / "p-1.tar.zst"
    archive.write_bytes(b"\x28\xb5\x2f\xfd")
    with patch("lfsbuild.fetcher.which", return_value=None):
        with pytest.raises(ToolMissing) as excinfo:
            fetcher.extract(archive, tmp_path / "work")
    assert excinfo.value.tool == "zstd"


def test_locate_source_root(tmp_path):
    work = tmp_path / "work"
    (work / "pkg-1.0").mkdir(parents=True)
    (work / "alt").mkdir()
    assert locate_source_root(work) == work / "alt"
    assert locate_source_root(work, "pkg-1.0") == work / "pkg-1.0"
    assert locate_source_root(work, "missing") == work / "alt"


def test_locate_source_root_flat_archive(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    (work / "Makefile").write_text("all:\n")
    assert locate_source_root(work) == work
    empty = tmp_path / "empty"
    empty.mkdir()
    assert locate_source_root(empty) == empty
