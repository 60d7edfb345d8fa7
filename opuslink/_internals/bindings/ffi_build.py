"""
CFFI build script for the opus bindings.

Run with: python -m opuslink._internals.bindings.ffi_build
"""

import logging
import shutil
from pathlib import Path

from cffi import FFI, CDefError, VerificationError

from opuslink._internals.bindgen import HeaderParser
from opuslink._internals.build import BuildResult, cffi_kwargs, emit, gen_opus
from opuslink._internals.config import PACKAGE_DIR, BuildConfig
from opuslink._internals.errors import GenerationError

logger = logging.getLogger(__name__)

MODULE_NAME = "opuslink._opus_cffi"


def make_ffibuilder(config: BuildConfig, result: BuildResult) -> FFI:
    """Configure an FFI builder from a finished build step."""
    ffibuilder = FFI()

    # Declarations generated from the opus headers
    ffibuilder.cdef(result.artifact.read_text())

    kwargs = cffi_kwargs(result)
    # The umbrella header lives next to the package sources
    kwargs["include_dirs"].insert(0, str(config.header.parent))

    ffibuilder.set_source(
        MODULE_NAME,
        f'#include "{config.header.name}"\n',
        **kwargs,
    )
    return ffibuilder


def compile_bindings(
    config: BuildConfig,
    verbose: bool = False,
    parser: HeaderParser | None = None,
    package_dir: Path = PACKAGE_DIR,
) -> Path:
    """
    Run the whole build step and compile the extension module.

    The C sources and objects stay in ``config.out_dir``; the compiled module
    is copied into ``package_dir`` so it imports as ``opuslink._opus_cffi``.
    """
    result = gen_opus(config, parser=parser)
    emit(result)
    try:
        ffibuilder = make_ffibuilder(config, result)
        built = Path(ffibuilder.compile(tmpdir=str(config.out_dir), verbose=verbose))
    except (CDefError, VerificationError) as e:
        raise GenerationError(
            f"unable to compile {MODULE_NAME}: {e}",
            "check the generated declarations and that a C compiler can link opus",
        ) from e

    installed = Path(package_dir) / built.name
    try:
        shutil.copyfile(built, installed)
    except OSError as e:
        raise GenerationError(f"unable to install {built} into {package_dir}: {e}") from e
    logger.info("Installed %s", installed)
    return installed


if __name__ == "__main__":
    compile_bindings(BuildConfig.from_env(), verbose=True)
