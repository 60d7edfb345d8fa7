"""Pytest fixtures for opuslink tests."""

import pytest
from pathlib import Path

from opuslink._internals.bindgen import Constant, Declarations
from opuslink._internals.config import BuildConfig
from opuslink._internals.target import PlatformDescriptor


@pytest.fixture
def umbrella_header(tmp_path):
    """A stand-in umbrella header."""
    header = tmp_path / "src" / "opus_ffi.h"
    header.parent.mkdir()
    header.write_text("#include <opus/opus.h>\n")
    return header


@pytest.fixture
def make_config(tmp_path, umbrella_header):
    """Factory for build configurations targeting a given platform."""
    def factory(os_name="linux", arch="x86_64", **overrides) -> BuildConfig:
        config = BuildConfig(
            platform=PlatformDescriptor(os_name, arch),
            out_dir=tmp_path / "out",
            header=umbrella_header,
            cellar_root=tmp_path / "Cellar",
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config
    return factory


@pytest.fixture
def vcpkg_root(tmp_path):
    """A vcpkg tree with opus installed for x64-osx."""
    root = tmp_path / "vcpkg"
    prefix = root / "installed" / "x64-osx"
    (prefix / "include" / "opus").mkdir(parents=True)
    (prefix / "lib").mkdir(parents=True)
    (prefix / "include" / "opus" / "opus.h").write_text("/* opus */\n")
    return root


def make_cellar(root: Path, name: str, versions: list[str]) -> Path:
    """Create <root>/<name>/<version>/{include,lib} for each version."""
    package = root / name
    package.mkdir(parents=True)
    for version in versions:
        (package / version / "include").mkdir(parents=True)
        (package / version / "lib").mkdir()
    return package


class StubParser:
    """Header parser returning canned declarations and recording its calls."""

    def __init__(self, declarations: Declarations | None = None):
        if declarations is None:
            declarations = Declarations(
                items=[
                    "typedef struct OpusEncoder OpusEncoder;",
                    "int opus_encoder_get_size(int channels);",
                ],
                constants=[Constant("OPUS_OK", 0, "int")],
            )
        self.declarations = declarations
        self.calls = []

    def parse(self, header, include_dirs, macro_rules):
        self.calls.append((header, list(include_dirs), tuple(macro_rules)))
        return self.declarations


@pytest.fixture
def stub_parser():
    return StubParser()
