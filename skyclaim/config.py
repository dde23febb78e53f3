"""TOML-based configuration.

Locates ``skyclaim.toml``, validates every enabled account and produces an
immutable ``Config``. A reload always builds a brand new ``Config``; nothing
here is ever mutated in place.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeAlias

from loguru import logger

from skyclaim.core.exceptions import ConfigurationError
from skyclaim.logging import LogConfig
from skyclaim.types import AUTO_ZONE, AccountSpec, Shape

RawConfig: TypeAlias = dict[str, Any]

CONFIG_ENV = "SKYCLAIM_CONFIG"
CONFIG_NAME = "skyclaim.toml"
USER_CONFIG_PATH = Path.home() / ".config" / "skyclaim" / CONFIG_NAME
SYSTEM_CONFIG_PATH = Path("/etc/skyclaim") / CONFIG_NAME

MIN_CYCLE_INTERVAL = 10
MIN_BOOT_VOLUME_GB = 50

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0}


# =============================================================================
# Sections
# =============================================================================


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    account_delay_seconds: float = 450
    cycle_interval_seconds: float = 900


@dataclass(frozen=True, slots=True)
class Timeouts:
    """Layered timeouts, in seconds.

    ``attempt`` bounds one launch attempt (existence check, zone lookup,
    launch). ``verify`` bounds post-launch verification on its own and is
    not part of the attempt budget.
    """

    attempt: float = 60
    verify: float = 360
    verify_poll: float = 10
    verify_ceiling: float = 300


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    enabled: bool = False
    webhook_url: str = ""
    insistent_ping: bool = False
    digest_interval: timedelta | None = None
    telegram_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_url: str = "https://api.telegram.org"
    ntfy_topic: str = ""
    ntfy_server: str = "https://ntfy.sh"
    gotify_url: str = ""
    gotify_token: str = ""


@dataclass(frozen=True, slots=True)
class Config:
    accounts: tuple[AccountSpec, ...] = ()
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    timeouts: Timeouts = field(default_factory=Timeouts)
    logging: LogConfig = field(default_factory=LogConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def enabled_accounts(self) -> tuple[AccountSpec, ...]:
        return tuple(a for a in self.accounts if a.enabled)

    def log_config(self) -> None:
        """Log the effective configuration at startup and after reloads."""
        log = logger.bind(account="CONFIG")
        enabled = self.enabled_accounts()
        log.info("Accounts: {n} enabled of {total}", n=len(enabled), total=len(self.accounts))
        for acc in enabled:
            log.info(
                "   {alias}: {region} | {shape} {ocpus:g} OCPU / {mem:g}GB | zone={zone} | name={name}",
                alias=acc.alias,
                region=acc.region,
                shape=acc.shape.name,
                ocpus=acc.shape.ocpus,
                mem=acc.shape.memory_gb,
                zone=acc.availability_zone,
                name=acc.display_name,
            )
        log.info(
            "Scheduler: account_delay={delay:g}s, cycle_interval={interval:g}s",
            delay=self.scheduler.account_delay_seconds,
            interval=self.scheduler.cycle_interval_seconds,
        )
        digest = self.notifications.digest_interval
        log.info(
            "Notifications: {state}, digest={digest}",
            state="enabled" if self.notifications.enabled else "disabled",
            digest=digest if digest else "off",
        )


# =============================================================================
# Loading
# =============================================================================


def parse_duration(text: str) -> timedelta | None:
    """Parse durations like ``"24h"``, ``"90m"`` or ``"1h30m"``. Empty means None."""
    text = text.strip()
    if not text:
        return None

    pos = 0
    seconds = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text) or seconds <= 0:
        raise ValueError(f"invalid duration: {text!r}")
    return timedelta(seconds=seconds)


def find_config() -> Path | None:
    """Locate the config file: env var, working directory, user dir, system dir."""
    if env := os.environ.get(CONFIG_ENV):
        return Path(env)

    for candidate in (Path.cwd() / CONFIG_NAME, USER_CONFIG_PATH, SYSTEM_CONFIG_PATH):
        if candidate.is_file():
            return candidate
    return None


def _read_toml(path: Path) -> RawConfig:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"error reading config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"error parsing {path}: {e}") from e


def load_config(path: Path | str | None = None) -> tuple[Config, Path]:
    """Load and validate the configuration.

    Returns:
        The parsed config and the absolute path it was read from.

    Raises:
        ConfigurationError: No config file was found or validation failed.
    """
    resolved = Path(path) if path else find_config()
    if resolved is None:
        raise ConfigurationError(f"{CONFIG_NAME} not found in standard locations")
    resolved = resolved.expanduser().absolute()

    return parse_config(_read_toml(resolved)), resolved


def parse_config(raw: RawConfig) -> Config:
    accounts = tuple(
        _build_account(alias, _table(acc_raw, f"account '{alias}'"))
        for alias, acc_raw in _table(raw.get("accounts"), "accounts").items()
    )
    return Config(
        accounts=accounts,
        scheduler=_build_scheduler(_table(raw.get("scheduler"), "scheduler")),
        timeouts=_build_timeouts(_table(raw.get("timeouts"), "timeouts")),
        logging=_build_logging(_table(raw.get("logging"), "logging")),
        notifications=_build_notifications(_table(raw.get("notifications"), "notifications")),
    )


def _table(value: Any, where: str) -> RawConfig:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where} must be a table (got {value!r})")
    return value


def _number(raw: RawConfig, key: str, default: float, where: str) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigurationError(f"{where}: {key} must be a number (got {value!r})")
    return float(value)


def _text(raw: RawConfig, key: str, default: str, where: str) -> str:
    value = raw.get(key, default)
    if not isinstance(value, str):
        raise ConfigurationError(f"{where}: {key} must be a string (got {value!r})")
    return value


def _flag(raw: RawConfig, key: str, default: bool, where: str) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{where}: {key} must be true or false (got {value!r})")
    return value


def _build_scheduler(raw: RawConfig) -> SchedulerConfig:
    defaults = SchedulerConfig()
    delay = _number(raw, "account_delay_seconds", defaults.account_delay_seconds, "scheduler")
    interval = _number(raw, "cycle_interval_seconds", defaults.cycle_interval_seconds, "scheduler")
    return SchedulerConfig(
        account_delay_seconds=max(0.0, delay),
        cycle_interval_seconds=max(float(MIN_CYCLE_INTERVAL), interval),
    )


def _build_timeouts(raw: RawConfig) -> Timeouts:
    defaults = Timeouts()
    timeouts = Timeouts(
        attempt=_number(raw, "attempt_seconds", defaults.attempt, "timeouts"),
        verify=_number(raw, "verify_seconds", defaults.verify, "timeouts"),
        verify_poll=_number(raw, "verify_poll_seconds", defaults.verify_poll, "timeouts"),
        verify_ceiling=_number(raw, "verify_ceiling_seconds", defaults.verify_ceiling, "timeouts"),
    )
    if min(timeouts.attempt, timeouts.verify, timeouts.verify_ceiling) <= 0 or timeouts.verify_poll < 0:
        raise ConfigurationError("timeouts must be positive")
    return timeouts


def _build_logging(raw: RawConfig) -> LogConfig:
    level = _text(raw, "level", "INFO", "logging").upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise ConfigurationError(f"invalid logging level: {level}")
    return LogConfig(level=level, log_dir=_text(raw, "log_dir", "logs", "logging"))  # type: ignore[arg-type]


def _build_notifications(raw: RawConfig) -> NotificationConfig:
    raw = dict(raw)
    digest_raw = _text(raw, "digest_interval", "", "notifications")
    raw.pop("digest_interval", None)
    try:
        digest = parse_duration(digest_raw)
    except ValueError:
        logger.bind(account="CONFIG").error(
            "Invalid digest interval {value!r}, disabling digests.", value=digest_raw
        )
        digest = None

    defaults = NotificationConfig()
    known = set(NotificationConfig.__dataclass_fields__) - {"digest_interval"}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"unknown notification settings: {', '.join(sorted(unknown))}")

    settings: dict[str, Any] = {}
    for key in raw:
        default = getattr(defaults, key)
        if isinstance(default, bool):
            settings[key] = _flag(raw, key, default, "notifications")
        else:
            settings[key] = _text(raw, key, default, "notifications")
    return NotificationConfig(digest_interval=digest, **settings)


_REQUIRED_IDENTITY = ("user_ocid", "tenancy_ocid", "fingerprint", "region")


def _build_account(alias: str, raw: RawConfig) -> AccountSpec:
    where = f"account '{alias}'"
    enabled = _flag(raw, "enabled", True, where)

    def get(key: str, default: str = "") -> str:
        return _text(raw, key, default, where)

    spec = AccountSpec(
        alias=alias,
        enabled=enabled,
        user_id=get("user_ocid"),
        tenancy_id=get("tenancy_ocid"),
        fingerprint=get("fingerprint"),
        key_file=_expand_key_file(get("key_file")),
        region=get("region"),
        compartment_id=get("compartment_ocid") or get("tenancy_ocid"),
        availability_zone=get("availability_domain", AUTO_ZONE) or AUTO_ZONE,
        subnet_id=get("subnet_ocid"),
        ssh_public_key=get("ssh_public_key").strip(),
        display_name=get("display_name") or alias,
        hostname_label=get("hostname_label"),
        shape=Shape(
            name=get("shape", "VM.Standard.A1.Flex"),
            ocpus=_number(raw, "ocpus", 0.0, where),
            memory_gb=_number(raw, "memory_gb", 0.0, where),
            boot_volume_gb=int(_number(raw, "boot_volume_size_gb", MIN_BOOT_VOLUME_GB, where)),
            image_id=get("image_ocid"),
        ),
    )

    if enabled:
        _validate_account(spec, raw)
    return spec


def _expand_key_file(value: str) -> str:
    if not value:
        return ""
    return str(Path(value).expanduser().absolute())


def _validate_account(spec: AccountSpec, raw: RawConfig) -> None:
    alias = spec.alias
    missing = [key for key in _REQUIRED_IDENTITY if not raw.get(key)]
    if missing:
        raise ConfigurationError(f"account '{alias}': missing required {', '.join(missing)}")

    if not spec.key_file or not Path(spec.key_file).is_file():
        raise ConfigurationError(f"account '{alias}': key file not found at {spec.key_file or '<unset>'}")

    if spec.shape.ocpus <= 0:
        raise ConfigurationError(f"account '{alias}': ocpus must be positive (got {spec.shape.ocpus:g})")
    if spec.shape.memory_gb <= 0:
        raise ConfigurationError(
            f"account '{alias}': memory_gb must be positive (got {spec.shape.memory_gb:g})"
        )
    if spec.shape.boot_volume_gb < MIN_BOOT_VOLUME_GB:
        raise ConfigurationError(
            f"account '{alias}': boot_volume_size_gb must be at least {MIN_BOOT_VOLUME_GB} "
            f"(got {spec.shape.boot_volume_gb})"
        )
