"""Locate opus and generate its cffi declarations in one build step."""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from opuslink._internals import directives
from opuslink._internals.bindgen import (
    GeneratedBindings,
    HeaderParser,
    PycparserHeaderParser,
    generate_bindings,
)
from opuslink._internals.config import BuildConfig
from opuslink._internals.directives import Directive
from opuslink._internals.locator import LocatedPackage, find_package

logger = logging.getLogger(__name__)

ARTIFACT_NAME = "opus_ffi_defs.h"


@dataclass
class BuildResult:
    """Everything one build step produced."""

    package: LocatedPackage
    include_paths: list[Path]
    link_directives: list[Directive] = field(default_factory=list)
    rebuild_triggers: list[Directive] = field(default_factory=list)
    bindings: GeneratedBindings | None = None

    @property
    def artifact(self) -> Path | None:
        return self.bindings.artifact if self.bindings else None

    @property
    def directives(self) -> list[Directive]:
        return self.rebuild_triggers + self.link_directives


def rebuild_triggers(header: Path, include_dirs) -> list[Directive]:
    """The header first, then each include directory."""
    return [directives.rerun_if_changed(p) for p in [header, *include_dirs]]


def locate_opus(config: BuildConfig) -> BuildResult:
    """Run only the package locator."""
    located = find_package(config.library, config)
    return BuildResult(
        package=located,
        include_paths=list(located.include_dirs),
        link_directives=list(located.directives),
        rebuild_triggers=rebuild_triggers(config.header, located.include_dirs),
    )


def gen_opus(config: BuildConfig, parser: HeaderParser | None = None) -> BuildResult:
    """
    Locate the opus library and regenerate its bindings.

    Raises:
        DiscoveryError: if the library cannot be found.
        GenerationError: if the bindings cannot be produced.
    """
    result = locate_opus(config)
    if parser is None:
        parser = PycparserHeaderParser(cc=config.cc, extra_args=config.extra_cpp_args)

    output = Path(config.out_dir) / ARTIFACT_NAME
    result.bindings = generate_bindings(config.header, result.include_paths, output, parser=parser)
    logger.info("Wrote %s", result.bindings.artifact)
    return result


def emit(result: BuildResult, stream: TextIO | None = None) -> None:
    """Print the build directives, one per line."""
    if stream is None:
        stream = sys.stdout
    for directive in result.directives:
        print(directive.render(), file=stream)


def cffi_kwargs(result: BuildResult) -> dict:
    """Translate the link directives into ``FFI.set_source`` keyword arguments."""
    libraries: list[str] = []
    library_dirs: list[str] = []
    for directive in result.link_directives:
        if directive.kind == directives.LINK_LIB:
            _, _, name = directive.value.partition("=")
            if name not in libraries:
                libraries.append(name)
        elif directive.kind == directives.LINK_SEARCH:
            if directive.value not in library_dirs:
                library_dirs.append(directive.value)
    return {
        "include_dirs": [str(p) for p in result.include_paths],
        "libraries": libraries,
        "library_dirs": library_dirs,
    }
