"""
Native package discovery.

Three strategies are tried in a fixed order and the first one that applies to
the build configuration is the only one run:

1. pkg-config (Linux, opt-in)
2. a vcpkg installation named by VCPKG_ROOT
3. the Homebrew cellar (macOS on Apple silicon only)

A strategy that runs and fails is final; there is no fallback to the next one.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import pkgconfig

from opuslink._internals import directives
from opuslink._internals.config import BuildConfig
from opuslink._internals.directives import Directive
from opuslink._internals.errors import DiscoveryError

logger = logging.getLogger(__name__)


@dataclass
class PackageDescriptor:
    """Where a native library's headers and link artifacts live."""

    name: str
    include_dirs: list[Path]
    link_library: str | None = None
    link_search_dir: Path | None = None


@dataclass
class LocatedPackage:
    """A package descriptor plus the directives its strategy produced."""

    package: PackageDescriptor
    strategy: str
    directives: list[Directive] = field(default_factory=list)

    @property
    def include_dirs(self) -> list[Path]:
        return self.package.include_dirs


def _prefixed_link(name: str, prefix: Path) -> tuple[PackageDescriptor, list[Directive]]:
    """Descriptor and directives for a static library laid out as <prefix>/{include,lib}."""
    lib_dir = prefix / "lib"
    include_dir = prefix / "include"
    link = directives.static_library(name)
    package = PackageDescriptor(
        name=name,
        include_dirs=[include_dir],
        link_library=directives.link_name(name),
        link_search_dir=lib_dir,
    )
    return package, [link, directives.link_search(lib_dir), directives.include(include_dir)]


class PackageConfigStrategy:
    """Ask the system pkg-config registry for the library."""

    name = "pkg-config"

    def applies(self, config: BuildConfig) -> bool:
        return config.platform.os == "linux" and config.use_pkg_config

    def locate(self, name: str, config: BuildConfig) -> LocatedPackage:
        hint = f"try installing '{name}-dev' from your system package manager"
        try:
            found = pkgconfig.exists(name)
        except EnvironmentError as e:
            raise DiscoveryError(
                f"unable to query pkg-config for '{name}': {e}",
                "install pkg-config or unset OPUSLINK_PKG_CONFIG",
            ) from e
        if not found:
            raise DiscoveryError(
                f"unable to find '{name}' development headers with pkg-config",
                hint,
            )

        flags = pkgconfig.parse(name)
        include_dirs = [Path(p) for p in flags.get("include_dirs", [])]
        library_dirs = [Path(p) for p in flags.get("library_dirs", [])]
        libraries = list(flags.get("libraries", []))
        logger.debug("pkg-config %s: includes=%s libs=%s", name, include_dirs, libraries)

        # The registry's own link flags; no static/vcpkg-style directives here.
        emitted = [directives.dynamic_library(lib) for lib in libraries]
        emitted += [directives.link_search(d) for d in library_dirs]

        package = PackageDescriptor(
            name=name,
            include_dirs=include_dirs,
            link_library=libraries[0] if libraries else None,
            link_search_dir=library_dirs[0] if library_dirs else None,
        )
        return LocatedPackage(package, self.name, emitted)


class PinnedStrategy:
    """Use the vcpkg installation tree under VCPKG_ROOT."""

    name = "vcpkg"

    def applies(self, config: BuildConfig) -> bool:
        return config.vcpkg_root is not None

    def locate(self, name: str, config: BuildConfig) -> LocatedPackage:
        triple = config.platform.triple
        prefix = Path(config.vcpkg_root) / "installed" / triple
        logger.info("Using vcpkg triple %s under %s", triple, config.vcpkg_root)
        package, emitted = _prefixed_link(name, prefix)
        return LocatedPackage(package, self.name, [directives.info(triple)] + emitted)


class CellarStrategy:
    """Pick the newest version installed in the Homebrew cellar."""

    name = "homebrew"

    def applies(self, config: BuildConfig) -> bool:
        return config.vcpkg_root is None

    def locate(self, name: str, config: BuildConfig) -> LocatedPackage:
        target = config.platform
        if target.os != "macos" or target.arch != "aarch64":
            raise DiscoveryError(
                "couldn't find VCPKG_ROOT, and the Homebrew fallback is only "
                f"available on macos/aarch64 (target is {target})",
                "set VCPKG_ROOT to a vcpkg checkout with opus installed",
            )

        root = Path(config.cellar_root) / name
        versions = installed_versions(root)
        if versions is None:
            raise DiscoveryError(
                f"could not find package in {root}",
                f"make sure Homebrew and the '{name}' package are installed",
            )
        if not versions:
            raise DiscoveryError(
                f"there's no installed version of {name} in {config.cellar_root}",
                f"run 'brew install {name}'",
            )

        newest = versions[-1]
        logger.info("Using %s %s from %s", name, newest.name, root)
        package, emitted = _prefixed_link(name, newest)
        return LocatedPackage(package, self.name, emitted)


def installed_versions(root: Path) -> list[Path] | None:
    """
    Version directories under a cellar package root, oldest first.

    Versions are ordered by name, so the last one is taken as the newest.
    Entries that cannot be inspected are skipped. Returns None when the root
    itself cannot be listed.
    """
    try:
        entries = list(root.iterdir())
    except OSError:
        return None

    versions = []
    for entry in entries:
        try:
            if entry.is_dir():
                versions.append(entry)
        except OSError:
            logger.debug("Skipping unreadable entry %s", entry)
    versions.sort(key=lambda p: p.name)
    return versions


STRATEGIES = (PackageConfigStrategy(), PinnedStrategy(), CellarStrategy())


def select_strategy(config: BuildConfig, strategies=STRATEGIES):
    """Return the first strategy applicable to this configuration."""
    for strategy in strategies:
        if strategy.applies(config):
            return strategy
    raise DiscoveryError(
        f"no discovery strategy applies to {config.platform}",
        "set VCPKG_ROOT or enable pkg-config",
    )


def find_package(name: str, config: BuildConfig, strategies=STRATEGIES) -> LocatedPackage:
    """Locate a native library with the single applicable strategy."""
    strategy = select_strategy(config, strategies)
    logger.info("Locating %s with %s for %s", name, strategy.name, config.platform)
    located = strategy.locate(name, config)
    if not located.include_dirs:
        logger.warning("%s found via %s but declares no include directories", name, strategy.name)
    return located
