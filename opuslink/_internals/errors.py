"""Build errors raised by the locator and the binding generator."""


class BuildError(Exception):
    """Base class for failures that stop the build."""

    kind = "build"

    def __init__(self, message: str, hint: str = ""):
        self.message = message
        self.hint = hint
        text = f"{self.kind} failure: {message}"
        if hint:
            text += f"\n  hint: {hint}"
        super().__init__(text)


class DiscoveryError(BuildError):
    """The native library could not be found by the selected strategy."""

    kind = "discovery"


class GenerationError(BuildError):
    """The header could not be parsed or the bindings could not be written."""

    kind = "generation"
