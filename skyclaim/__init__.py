"""skyclaim - keeps retrying capacity-constrained instance launches across accounts.

Example:
    import asyncio
    from skyclaim import Runtime, load_config

    config, path = load_config()
    asyncio.run(Runtime(config, path).run(asyncio.Event()))
"""

__version__ = "0.1.0"

from skyclaim.app import Runtime
from skyclaim.config import Config, NotificationConfig, SchedulerConfig, Timeouts, load_config
from skyclaim.core import (
    ComputeApiError,
    ConfigurationError,
    InstanceTerminatedError,
    NotificationError,
    ProvisioningError,
    SkyclaimError,
    VerificationError,
)
from skyclaim.logging import LogConfig, setup_logging, teardown_logging
from skyclaim.notify import Notifier
from skyclaim.scheduler import ProvisionedSet, Scheduler
from skyclaim.stats import Stats, StatsSnapshot
from skyclaim.types import (
    AccountSpec,
    AlertSink,
    ComputeApi,
    Instance,
    LaunchRequest,
    ProvisionResult,
    Shape,
    VerifiedInstance,
)
from skyclaim.verify import verify_instance
from skyclaim.worker import AccountWorker, LaunchErrorKind, classify_launch_error

__all__ = [
    "__version__",
    "AccountSpec",
    "AccountWorker",
    "AlertSink",
    "ComputeApi",
    "ComputeApiError",
    "Config",
    "ConfigurationError",
    "Instance",
    "InstanceTerminatedError",
    "LaunchErrorKind",
    "LaunchRequest",
    "LogConfig",
    "NotificationConfig",
    "NotificationError",
    "Notifier",
    "ProvisionResult",
    "ProvisionedSet",
    "ProvisioningError",
    "Runtime",
    "Scheduler",
    "SchedulerConfig",
    "Shape",
    "SkyclaimError",
    "Stats",
    "StatsSnapshot",
    "Timeouts",
    "VerificationError",
    "VerifiedInstance",
    "classify_launch_error",
    "load_config",
    "setup_logging",
    "teardown_logging",
    "verify_instance",
]
