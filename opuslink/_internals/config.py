"""Build configuration read from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from opuslink._internals.target import PlatformDescriptor

PACKAGE_DIR = Path(__file__).parent.parent.resolve()  # opuslink/

LIBRARY_NAME = "opus"
UMBRELLA_HEADER = PACKAGE_DIR / "opus_ffi.h"
DEFAULT_OUT_DIR = Path("build") / "opuslink"
DEFAULT_CELLAR_ROOT = Path("/opt/homebrew/Cellar")

_TRUTHY = ("1", "true", "yes", "on")


def _flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


@dataclass
class BuildConfig:
    """Everything one build invocation needs to know."""

    platform: PlatformDescriptor
    out_dir: Path = DEFAULT_OUT_DIR
    library: str = LIBRARY_NAME
    header: Path = UMBRELLA_HEADER
    use_pkg_config: bool = False
    vcpkg_root: Path | None = None
    cellar_root: Path = DEFAULT_CELLAR_ROOT
    cc: str = "cc"
    extra_cpp_args: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BuildConfig":
        """
        Read the configuration from environment variables.

        Recognized variables:
            OPUSLINK_TARGET_OS, OPUSLINK_TARGET_ARCH: target platform
            OPUSLINK_PKG_CONFIG: use pkg-config on Linux ("1" to enable)
            OPUSLINK_OUT_DIR: directory receiving the generated bindings
            OPUSLINK_CELLAR_ROOT: Homebrew cellar used as the last resort
            VCPKG_ROOT: root of a vcpkg checkout with opus installed
            CC: compiler used to preprocess the headers
        """
        if environ is None:
            environ = os.environ
        vcpkg_root = environ.get("VCPKG_ROOT")
        return cls(
            platform=PlatformDescriptor.from_env(environ),
            out_dir=Path(environ.get("OPUSLINK_OUT_DIR") or DEFAULT_OUT_DIR),
            use_pkg_config=_flag(environ.get("OPUSLINK_PKG_CONFIG")),
            vcpkg_root=Path(vcpkg_root) if vcpkg_root else None,
            cellar_root=Path(environ.get("OPUSLINK_CELLAR_ROOT") or DEFAULT_CELLAR_ROOT),
            cc=environ.get("CC") or "cc",
        )
