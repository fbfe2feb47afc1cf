"""
Error taxonomy for stack orchestration.
"""

from typing import Any, Optional


class EnvStackError(Exception):
    """Base class for every error raised by envstack."""


class ValidationError(EnvStackError):
    """A required identifier is missing or malformed. Raised before any AWS call."""


class ProjectInUseError(ValidationError):
    """A project cannot be destroyed while environments still exist under it."""


class BootstrapError(EnvStackError):
    """Account context (VPC, hosted zone) could not be discovered."""


class NotFoundError(EnvStackError):
    """The requested AWS resource does not exist (yet)."""


class AlreadyExistsError(EnvStackError):
    """A create call collided with an existing resource."""


class ProvisionError(EnvStackError):
    """
    A mandatory creation step failed.

    The partially built creation request is kept on ``creq`` so callers can
    inspect (or clean up) what was created before the failure.
    """

    def __init__(self, step: str, cause: BaseException, creq: Optional[Any] = None):
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause
        self.creq = creq


class TeardownError(ProvisionError):
    """A mandatory destroy step failed (container deregistration, instance termination)."""


class TeardownWarning(EnvStackError):
    """
    A best-effort step failed.

    Never raised; instances are logged and collected on the creation request.
    """

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause
