"""Locate libopus and generate cffi bindings for it."""

from opuslink._internals.build import BuildResult, gen_opus, locate_opus
from opuslink._internals.config import BuildConfig
from opuslink._internals.errors import BuildError, DiscoveryError, GenerationError
from opuslink._internals.target import PlatformDescriptor

__version__ = "0.1.0"

__all__ = [
    "BuildConfig",
    "BuildError",
    "BuildResult",
    "DiscoveryError",
    "GenerationError",
    "PlatformDescriptor",
    "gen_opus",
    "locate_opus",
]
