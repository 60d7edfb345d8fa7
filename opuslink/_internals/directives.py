"""Build-system directives emitted alongside the located package."""

from dataclasses import dataclass

PREFIX = "opuslink:"

INFO = "info"
LINK_LIB = "link-lib"
LINK_SEARCH = "link-search"
INCLUDE = "include"
RERUN_IF_CHANGED = "rerun-if-changed"


@dataclass(frozen=True)
class Directive:
    """One line of the build side channel, e.g. ``opuslink:link-search=/x/lib``."""

    kind: str
    value: str

    def render(self) -> str:
        return f"{PREFIX}{self.kind}={self.value}"


def link_name(name: str) -> str:
    """Linker name of a library; a leading "lib" is not part of it."""
    if name.startswith("lib"):
        return name[len("lib"):]
    return name


def static_library(name: str) -> Directive:
    return Directive(LINK_LIB, f"static={link_name(name)}")


def dynamic_library(name: str) -> Directive:
    return Directive(LINK_LIB, f"dylib={name}")


def link_search(path) -> Directive:
    return Directive(LINK_SEARCH, str(path))


def include(path) -> Directive:
    return Directive(INCLUDE, str(path))


def info(text: str) -> Directive:
    return Directive(INFO, text)


def rerun_if_changed(path) -> Directive:
    return Directive(RERUN_IF_CHANGED, str(path))
