"""
Command-line interface for the opus build step.

Directives are printed on stdout, diagnostics on stderr.
"""

import argparse
import logging
import sys
from pathlib import Path

from opuslink._internals.build import emit, gen_opus, locate_opus
from opuslink._internals.config import BuildConfig
from opuslink._internals.errors import BuildError


def config_from_args(args) -> BuildConfig:
    """Environment configuration with command-line overrides applied."""
    config = BuildConfig.from_env()
    if getattr(args, "out_dir", None):
        config.out_dir = Path(args.out_dir)
    if getattr(args, "pkg_config", False):
        config.use_pkg_config = True
    if getattr(args, "vcpkg_root", None):
        config.vcpkg_root = Path(args.vcpkg_root)
    return config


def cmd_triple(args):
    """Print the target triple."""
    config = config_from_args(args)
    print(config.platform.triple)


def cmd_locate(args):
    """Locate opus and print the link directives."""
    config = config_from_args(args)
    result = locate_opus(config)
    print(f"# {config.library} found via {result.package.strategy}", file=sys.stderr)
    emit(result)


def cmd_generate(args):
    """Locate opus and regenerate the cdef declarations."""
    config = config_from_args(args)
    result = gen_opus(config)
    emit(result)
    print(f"# wrote {result.artifact}", file=sys.stderr)


def cmd_build(args):
    """Generate the declarations and compile the cffi extension."""
    # Imported lazily: compiling needs a working C toolchain
    from opuslink._internals.bindings.ffi_build import compile_bindings

    config = config_from_args(args)
    path = compile_bindings(config, verbose=args.verbose)
    print(f"# built {path}", file=sys.stderr)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="opuslink",
        description="Locate libopus and generate cffi bindings for it",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging",
    )
    common.add_argument(
        "--pkg-config",
        action="store_true",
        help="Use pkg-config to find opus (Linux only, same as OPUSLINK_PKG_CONFIG=1)",
    )
    common.add_argument(
        "--vcpkg-root",
        help="vcpkg checkout with opus installed (default: $VCPKG_ROOT)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    triple_parser = subparsers.add_parser(
        "triple",
        parents=[common],
        help="Print the vcpkg triple for the target platform",
    )
    triple_parser.set_defaults(func=cmd_triple)

    locate_parser = subparsers.add_parser(
        "locate",
        parents=[common],
        help="Find opus and print the link directives",
    )
    locate_parser.set_defaults(func=cmd_locate)

    for name, func, help_text in (
        ("generate", cmd_generate, "Regenerate the cffi declarations"),
        ("build", cmd_build, "Regenerate the declarations and compile the extension"),
    ):
        sub = subparsers.add_parser(name, parents=[common], help=help_text)
        sub.add_argument(
            "--out-dir", "-o",
            help="Output directory (default: $OPUSLINK_OUT_DIR or build/opuslink)",
        )
        sub.set_defaults(func=func)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except BuildError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
