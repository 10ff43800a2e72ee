import io
import os
import tarfile
import textwrap
from pathlib import Path

import pytest

from lfsbuild import config as config_mod
from lfsbuild.state import StateStore


def _add_bytes(tar, name, data, mode=0o644):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


@pytest.fixture
def cfg(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    overrides = {
        "paths": {
            "repo": str(tmp_path / "repo"),
            "sources": str(tmp_path / "sources"),
            "work": str(tmp_path / "build"),
            "destdir": str(tmp_path / "destdir"),
            "packages": str(tmp_path / "packages"),
            "sysroot": str(root),
            "state": str(tmp_path / "state"),
            "logdir": str(tmp_path / "logs"),
        },
        "fetcher": {"tools": ["urllib"]},
    }
    c = config_mod.from_dict(overrides, environ={})
    c.paths.ensure()
    c.paths.sources.mkdir(parents=True, exist_ok=True)
    c.paths.repo.mkdir(parents=True, exist_ok=True)
    return c


@pytest.fixture
def paths(cfg):
    return cfg.paths


@pytest.fixture
def state(paths):
    return StateStore(paths.state)


@pytest.fixture
def make_tarball(paths):
    """Create a source tarball in the sources dir: {relative path: text}."""
    def _make(filename, files, top=None, mode="w:gz"):
        out = paths.sources / filename
        with tarfile.open(out, mode) as tar:
            for rel, text in files.items():
                name = f"{top}/{rel}" if top else rel
                data = text.encode() if isinstance(text, str) else text
                _add_bytes(tar, name, data, 0o755 if rel.endswith(".sh") else 0o644)
        return out
    return _make


@pytest.fixture
def write_recipe(paths):
    def _write(filename, text, subdir="base"):
        d = paths.repo / subdir
        d.mkdir(parents=True, exist_ok=True)
        p = d / filename
        p.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
        return p
    return _write


@pytest.fixture
def hello_source(make_tarball):
    return make_tarball(
        "hello-1.0.tar.gz",
        {"hello.sh": "#!/bin/sh\necho hello\n", "README": "hello docs\n"},
        top="hello-1.0",
    )


HELLO_RECIPE = """
name: {name}
version: "1.0"
category: base
source: hello-1.0.tar.gz
depends: {depends}
phase: {phase}
build_step: "true"
install_step: |
  mkdir -p "$DESTDIR/usr/bin" "$DESTDIR/usr/share/{name}"
  cp hello.sh "$DESTDIR/usr/bin/{name}"
  cp README "$DESTDIR/usr/share/{name}/README"
"""


@pytest.fixture
def hello_recipe(write_recipe, hello_source):
    """Write a YAML recipe that installs from the hello tarball with sh only."""
    def _recipe(name="hello", depends=(), phase=""):
        deps = "[" + ", ".join(depends) + "]"
        return write_recipe(f"{name}.recipe.yaml", HELLO_RECIPE.format(name=name, depends=deps, phase=phase or '""'))
    return _recipe


def tree(root: Path):
    """Sorted relative paths under root (dirs marked with a trailing /)."""
    out = []
    for dirpath, dirs, files in os.walk(root):
        rel = os.path.relpath(dirpath, root)
        for d in dirs:
            out.append(os.path.normpath(os.path.join(rel, d)) + "/")
        for f in files:
            out.append(os.path.normpath(os.path.join(rel, f)))
    return sorted(out)
