# lfsbuild/fetcher.py
"""
fetcher.py - source acquisition and unpacking

Features:
- Resolve a recipe source reference to a local archive (sources dir or URL)
- Download http(s)/ftp URLs with the configured tools (curl, wget, urllib), first success wins
- Downloads land in a .part file, renamed only on success
- Extract .tar.{gz,bz2,xz}, .tgz/.tbz2/.txz, .tar with tarfile; .tar.zst via zstd; .zip via unzip
- Locate the extracted source root inside a work directory
"""

from __future__ import annotations

import os
import sys
import shutil
import tarfile
import subprocess
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import IO, List, Optional, Sequence

from lfsbuild.errors import DownloadFailed, SourceNotFound, ToolMissing, UnsupportedFormat
from lfsbuild.logging import get_logger
from lfsbuild.process import run_logged, which

logger = get_logger("fetcher")

URL_SCHEMES = ("http", "https", "ftp")
TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar")
ZST_SUFFIXES = (".tar.zst", ".tzst")
ZIP_SUFFIXES = (".zip",)
DEFAULT_TOOLS = ("curl", "wget")


def is_url(ref: str) -> bool:
    return urllib.parse.urlsplit(ref).scheme.lower() in URL_SCHEMES


def url_basename(url: str) -> str:
    name = os.path.basename(urllib.parse.urlsplit(url).path)
    if not name:
        raise DownloadFailed(f"cannot derive a file name from URL {url}")
    return name


def _extractall(tar: tarfile.TarFile, dest: Path) -> None:
    if sys.version_info >= (3, 12):
        tar.extractall(dest, filter="tar")
    else:
        tar.extractall(dest)


class Fetcher:
    def __init__(self, sources: Path, tools: Optional[Sequence[str]] = None, timeout: int = 300):
        self.sources = Path(sources)
        self.tools: List[str] = list(tools) if tools else list(DEFAULT_TOOLS)
        self.timeout = timeout

    # ----------------------
    # Acquisition
    # ----------------------
    def resolve(self, ref: str, log: Optional[IO[str]] = None) -> Path:
        """Return the local archive for a source reference, downloading it if needed."""
        if not ref:
            raise SourceNotFound("recipe declares no source")
        if is_url(ref):
            dest = self.sources / url_basename(ref)
            if dest.is_file():
                logger.debug("fetcher: using cached %s", dest)
                return dest
            return self.download(ref, dest, log)
        path = self.sources / ref
        if not path.is_file():
            raise SourceNotFound(f"source not found: {path}")
        return path

    def download(self, url: str, dest: Path, log: Optional[IO[str]] = None) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        tried: List[str] = []
        for tool in self.tools:
            logger.info("fetcher: downloading %s with %s", url, tool)
            if self._download_with(tool, url, part, log):
                os.replace(part, dest)
                return dest
            tried.append(tool)
            if part.exists():
                part.unlink()
        raise DownloadFailed(f"failed to download {url} (tried: {', '.join(tried) or 'no tools'})")

    def _download_with(self, tool: str, url: str, part: Path, log: Optional[IO[str]]) -> bool:
        if tool == "urllib":
            return self._download_urllib(url, part)
        if tool == "curl":
            cmd = ["curl", "-fL", "--retry", "2", "-o", str(part), url]
        elif tool == "wget":
            cmd = ["wget", "-O", str(part), url]
        else:
            logger.warning("fetcher: unknown download tool %s ignored", tool)
            return False
        if not which(tool):
            logger.debug("fetcher: %s not in PATH", tool)
            return False
        return run_logged(cmd, log=log) == 0 and part.is_file()

    def _download_urllib(self, url: str, part: Path) -> bool:
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp, open(part, "wb") as f:
                shutil.copyfileobj(resp, f, 1024 * 64)
        except (urllib.error.URLError, OSError) as e:
            logger.warning("fetcher: urllib download of %s failed: %s", url, e)
            return False
        return True

    # ----------------------
    # Unpacking
    # ----------------------
    def extract(self, archive: Path, dest: Path, log: Optional[IO[str]] = None) -> None:
        archive = Path(archive)
        dest.mkdir(parents=True, exist_ok=True)
        name = archive.name.lower()
        logger.debug("fetcher: extracting %s into %s", archive, dest)
        if name.endswith(ZST_SUFFIXES):
            self._extract_zstd(archive, dest)
        elif name.endswith(TAR_SUFFIXES):
            try:
                with tarfile.open(archive, "r:*") as tar:
                    _extractall(tar, dest)
            except (tarfile.TarError, OSError) as e:
                raise UnsupportedFormat(f"cannot extract {archive}: {e}") from e
        elif name.endswith(ZIP_SUFFIXES):
            if not which("unzip"):
                raise ToolMissing("unzip", f"extracting {archive.name}")
            rc = run_logged(["unzip", "-q", "-o", str(archive), "-d", str(dest)], log=log)
            if rc != 0:
                raise UnsupportedFormat(f"unzip failed on {archive} (exit {rc})")
        else:
            raise UnsupportedFormat(f"unsupported archive format: {archive.name}")

    def _extract_zstd(self, archive: Path, dest: Path) -> None:
        if not which("zstd"):
            raise ToolMissing("zstd", f"extracting {archive.name}")
        proc = subprocess.Popen(["zstd", "-d", "-c", str(archive)], stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        try:
            with tarfile.open(fileobj=proc.stdout, mode="r|") as tar:
                _extractall(tar, dest)
        except tarfile.TarError as e:
            raise UnsupportedFormat(f"cannot extract {archive}: {e}") from e
        finally:
            if proc.stdout:
                proc.stdout.close()
            rc = proc.wait()
        if rc != 0:
            raise UnsupportedFormat(f"zstd failed on {archive} (exit {rc})")


def locate_source_root(workdir: Path, override: str = "") -> Path:
    """Override subdirectory if present, else the first top-level entry, else workdir."""
    if override and (workdir / override).is_dir():
        return workdir / override
    entries = sorted(p.name for p in workdir.iterdir()) if workdir.is_dir() else []
    if entries and (workdir / entries[0]).is_dir():
        return workdir / entries[0]
    return workdir
