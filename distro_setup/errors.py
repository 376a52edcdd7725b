"""Exceptions shared by the provisioning steps and the kernel build."""

from typing import Optional


class SetupError(Exception):
    """Base class for every error raised by distro_setup."""


class StepSkipped(SetupError):
    """Raised by a step action when its desired state is already met."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FatalStepError(SetupError):
    """A fatal step failed and the whole run must stop."""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        message = f"Fatal step '{step}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.step = step
        self.cause = cause


class MissingInputError(SetupError):
    """A required interactive value was left blank."""


class UnsupportedDistroError(SetupError):
    """No package manager is known for the detected distribution."""


class ToolchainError(SetupError):
    """The downloaded toolchain is missing a required binary."""


class ArtifactNotFoundError(SetupError):
    """The build finished without producing the expected artifact."""


class BuildCancelled(SetupError):
    """The operator declined the build confirmation."""
