"""Custom exception hierarchy for skyclaim.

All skyclaim-specific exceptions inherit from SkyclaimError, enabling
callers to catch all skyclaim exceptions with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skyclaim.types import VerifiedInstance


class SkyclaimError(Exception):
    """Base exception for all skyclaim errors."""


class ConfigurationError(SkyclaimError):
    """Raised for invalid configuration or missing required settings."""


class ProvisioningError(SkyclaimError):
    """Raised when a provisioning attempt cannot proceed."""


class ComputeApiError(ProvisioningError):
    """Structured error returned by the compute API.

    Carries the HTTP status and the service message so the launch path can
    tell capacity exhaustion apart from real faults.
    """

    def __init__(self, status: int, message: str, code: str = "") -> None:
        self.status = status
        self.message = message
        self.code = code
        super().__init__(f"HTTP {status} {code}: {message}" if code else f"HTTP {status}: {message}")


class VerificationError(SkyclaimError):
    """Raised when a launched instance could not be confirmed.

    ``partial`` holds whatever was observed before giving up.
    """

    def __init__(self, message: str, partial: VerifiedInstance | None = None) -> None:
        self.partial = partial
        super().__init__(message)


class InstanceTerminatedError(VerificationError):
    """Raised when instance was terminated - do not retry."""

    def __init__(
        self,
        instance_id: str,
        reason: str = "unknown",
        partial: VerifiedInstance | None = None,
    ) -> None:
        self.instance_id = instance_id
        self.reason = reason
        super().__init__(f"Instance {instance_id} terminated: {reason}", partial)


class NotificationError(SkyclaimError):
    """Raised when one or more alert channels failed."""

    def __init__(self, failures: Sequence[str]) -> None:
        self.failures = tuple(failures)
        super().__init__("notification errors: " + "; ".join(self.failures))
