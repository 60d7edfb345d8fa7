"""Target platform detection and triple naming."""

import os
import platform
import sys
from dataclasses import dataclass
from typing import Mapping

# Aliases used by the ports tree for its triplet directory names
ARCH_ALIASES = {
    "x86_64": "x64",
    "aarch64": "arm64",
}

_OS_NAMES = {
    "darwin": "macos",
    "macos": "macos",
    "osx": "macos",
    "win32": "windows",
    "windows": "windows",
    "cygwin": "windows",
    "linux": "linux",
}

_ARCH_NAMES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


def normalize_os(name: str) -> str:
    """Map an OS identifier to one of linux, macos, windows (or pass it through)."""
    key = name.strip().lower()
    if key.startswith("linux"):
        return "linux"
    return _OS_NAMES.get(key, key)


def normalize_arch(name: str) -> str:
    """Map a machine name to x86_64, aarch64, x86 (or pass it through)."""
    key = name.strip().lower()
    return _ARCH_NAMES.get(key, key)


@dataclass(frozen=True)
class PlatformDescriptor:
    """The operating system and CPU architecture being built for."""

    os: str
    arch: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PlatformDescriptor":
        """
        Build a descriptor from the build environment.

        OPUSLINK_TARGET_OS and OPUSLINK_TARGET_ARCH take precedence over the
        running interpreter, so cross builds can name their target.
        """
        if environ is None:
            environ = os.environ
        target_os = environ.get("OPUSLINK_TARGET_OS") or sys.platform
        target_arch = environ.get("OPUSLINK_TARGET_ARCH") or platform.machine()
        return cls(normalize_os(target_os), normalize_arch(target_arch))

    @property
    def arch_alias(self) -> str:
        return ARCH_ALIASES.get(self.arch, self.arch)

    @property
    def triple(self) -> str:
        """
        Directory name of the prebuilt artifacts for this platform.

        Examples:
            (macos, x86_64)   -> "x64-osx"
            (macos, aarch64)  -> "arm64-osx"
            (windows, x86_64) -> "x64-windows-static"
            (windows, x86)    -> "x86-windows-static"
            (linux, x86_64)   -> "x86_64-linux"
        """
        alias = self.arch_alias
        if self.os == "macos" and alias in ("x64", "arm64"):
            return f"{alias}-osx"
        if self.os == "windows":
            triple = "x64-windows-static"
            if self.arch == "x86":
                triple = triple.replace("x64", "x86")
            return triple
        return f"{self.arch}-{self.os}"

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"
