from .exceptions import (
    ComputeApiError,
    ConfigurationError,
    InstanceTerminatedError,
    NotificationError,
    ProvisioningError,
    SkyclaimError,
    VerificationError,
)

__all__ = [
    "ComputeApiError",
    "ConfigurationError",
    "InstanceTerminatedError",
    "NotificationError",
    "ProvisioningError",
    "SkyclaimError",
    "VerificationError",
]
