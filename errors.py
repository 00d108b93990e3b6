"""
Exception hierarchy for the visual geolocalization runner.

Every error is fatal to the run; the CLI reports the message and exits with
the error's exit code.
"""

from typing import Iterable, Optional


class VglError(Exception):
    """Base class for all pipeline errors."""
    exit_code = 1


# Configuration errors: fixed by re-invoking with corrected arguments

class ConfigurationError(VglError):
    """Bad, missing or conflicting arguments."""


class UnknownOptionError(ConfigurationError):
    def __init__(self, option: str):
        super().__init__(f"Unknown option: {option}")
        self.option = option


class InvalidArgumentError(ConfigurationError):
    pass


class MissingArgumentError(ConfigurationError):
    pass


class TooManyArgumentsError(ConfigurationError):
    def __init__(self, token: str):
        super().__init__(f"Too many positional arguments (unexpected '{token}')")
        self.token = token


class InvalidCoordinateError(ConfigurationError):
    pass


class GsdModeMismatchError(ConfigurationError):
    """GSD value belongs to high altitude mode."""

    def __init__(self, gsd: float, threshold: float):
        super().__init__(
            f"GSD {gsd:g} cm/pixel is not below {threshold:g}; "
            f"for GSD >= {threshold:g}cm use high altitude mode with an image file"
        )
        self.gsd = gsd
        self.threshold = threshold


# Precondition errors: environment is not able to run the pipeline

class PreconditionError(VglError):
    """Missing dependency, directory, input images or secret."""


class MissingDependencyError(PreconditionError):
    def __init__(self, programs: Iterable[str]):
        self.programs = list(programs)
        super().__init__(f"Missing required dependencies: {' '.join(self.programs)}")


class ContainerRuntimeError(PreconditionError):
    pass


class MissingDirectoryError(PreconditionError):
    pass


class NoInputImagesError(PreconditionError):
    def __init__(self, images_dir, extensions: Iterable[str]):
        self.images_dir = images_dir
        self.extensions = tuple(extensions)
        patterns = ' '.join(f"*.{ext}" for ext in self.extensions)
        super().__init__(
            f"No supported images or videos found in '{images_dir}'. "
            f"Supported formats: {patterns}"
        )


class MissingSecretError(PreconditionError):
    def __init__(self, variable: str, purpose: str = 'satellite download'):
        super().__init__(f"{variable} environment variable is required for {purpose}")
        self.variable = variable


class WorkspaceError(PreconditionError):
    """Workspace directories could not be created or populated."""


# Execution errors

class StageExecutionError(VglError):
    """An external stage exited non-zero, could not be launched or timed out."""

    def __init__(self, stage: str, returncode: Optional[int] = None, reason: Optional[str] = None):
        self.stage = stage
        self.returncode = returncode
        self.reason = reason
        message = f"{stage} failed"
        if returncode is not None:
            message += f" (exit status {returncode})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class MissingArtifactError(VglError):
    """A stage reported success but its expected output is absent."""

    def __init__(self, artifact, stage: str):
        super().__init__(f"{stage} reported success but did not produce {artifact}")
        self.artifact = artifact
        self.stage = stage
