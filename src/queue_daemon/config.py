"""Runtime configuration for the queue daemon."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PROFILE = "default"
ENV_PREFIX = "QUEUE_DAEMON_"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Configuration is missing or invalid; the daemon must not start."""


@dataclass(slots=True)
class DaemonProfile:
    """Named supervisor profile."""

    name: str = DEFAULT_PROFILE
    max_concurrency: int = 4
    poll_interval_micros: int = 1_000_000
    pid_file_path: Path = Path(f"queue-daemon.{DEFAULT_PROFILE}.pid")
    log_file: Path | None = None
    drain_max_attempts: int = 5
    drain_retry_delay_seconds: float = 1.0

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_micros / 1_000_000

    def validate(self) -> None:
        """Raise configuration error if profile values are out of range."""

        if not self.name.strip():
            raise ConfigError("Daemon profile name must be non-empty.")
        if self.max_concurrency <= 0:
            raise ConfigError(
                f"MAX_CONCURRENCY must be a positive integer (profile {self.name!r}).",
            )
        if self.poll_interval_micros < 0:
            raise ConfigError(f"POLL_INTERVAL_MICROS must be >= 0 (profile {self.name!r}).")
        if not str(self.pid_file_path).strip():
            raise ConfigError(f"PID_FILE must be a non-empty path (profile {self.name!r}).")
        if self.drain_max_attempts <= 0:
            raise ConfigError(f"DRAIN_MAX_ATTEMPTS must be > 0 (profile {self.name!r}).")
        if self.drain_retry_delay_seconds < 0:
            raise ConfigError(
                f"DRAIN_RETRY_DELAY_SECONDS must be >= 0 (profile {self.name!r}).",
            )


@dataclass(slots=True)
class LoggingSettings:
    """Logging level for CLI and daemon output."""

    level: str = "INFO"

    @classmethod
    def from_env(cls) -> LoggingSettings:
        level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO").strip().upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(f"Invalid {ENV_PREFIX}LOG_LEVEL: {level!r}")
        return cls(level=level)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".queue_daemon.db")
    sqlite_busy_timeout_ms: int = 5_000
    profile: DaemonProfile = field(default_factory=DaemonProfile)
    routes: dict[str, str] = field(default_factory=dict)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(
        cls,
        profile_name: str | None = DEFAULT_PROFILE,
        db_path: Path | None = None,
    ) -> Settings:
        """Load settings for one named profile from the environment.

        ``profile_name=None`` skips profile resolution for commands that only
        touch the queue store.
        """

        profile = load_profile(profile_name) if profile_name is not None else DaemonProfile()
        settings = cls(
            db_path=db_path or Path(os.getenv(f"{ENV_PREFIX}DB_PATH", ".queue_daemon.db")),
            sqlite_busy_timeout_ms=_env_int(f"{ENV_PREFIX}SQLITE_BUSY_TIMEOUT_MS", 5_000),
            profile=profile,
            routes=_collect_routes(),
            logging=LoggingSettings.from_env(),
        )
        if settings.sqlite_busy_timeout_ms <= 0:
            raise ConfigError(f"{ENV_PREFIX}SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        return settings


def known_profiles() -> tuple[str, ...]:
    raw = os.getenv(f"{ENV_PREFIX}PROFILES", "").strip()
    if not raw:
        return (DEFAULT_PROFILE,)
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return tuple(names) or (DEFAULT_PROFILE,)


def load_profile(name: str) -> DaemonProfile:
    """Resolve one profile; profile-scoped variables override global ones."""

    name = name.strip()
    if not name:
        raise ConfigError("Config not found: empty daemon profile name.")
    if name not in known_profiles():
        raise ConfigError(
            f'Config not found ("daemon.{name}"). '
            f"Declare it in {ENV_PREFIX}PROFILES (known: {', '.join(known_profiles())}).",
        )

    scope = _profile_scope(name)
    pid_dir = Path(os.getenv(f"{ENV_PREFIX}PID_DIR", "."))
    pid_file = _profile_env(scope, "PID_FILE")
    log_file = _profile_env(scope, "LOG_FILE")
    profile = DaemonProfile(
        name=name,
        max_concurrency=_profile_int(scope, "MAX_CONCURRENCY", 4),
        poll_interval_micros=_profile_int(scope, "POLL_INTERVAL_MICROS", 1_000_000),
        pid_file_path=Path(pid_file) if pid_file else pid_dir / f"queue-daemon.{name}.pid",
        log_file=Path(log_file) if log_file else pid_dir / f"queue-daemon.{name}.log",
        drain_max_attempts=_profile_int(scope, "DRAIN_MAX_ATTEMPTS", 5),
        drain_retry_delay_seconds=_profile_float(scope, "DRAIN_RETRY_DELAY_SECONDS", 1.0),
    )
    profile.validate()
    return profile


def _profile_scope(name: str) -> str:
    return re.sub(r"[^0-9A-Za-z]", "_", name).upper()


def _profile_env(scope: str, key: str) -> str | None:
    scoped = os.getenv(f"{ENV_PREFIX}{scope}_{key}")
    if scoped is not None and scoped.strip():
        return scoped.strip()
    value = os.getenv(f"{ENV_PREFIX}{key}")
    if value is not None and value.strip():
        return value.strip()
    return None


def _profile_int(scope: str, key: str, default: int) -> int:
    raw = _profile_env(scope, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from error


def _profile_float(scope: str, key: str, default: float) -> float:
    raw = _profile_env(scope, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from error


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigError(f"Invalid integer for {name}: {raw!r}") from error


def _collect_routes() -> dict[str, str]:
    raw = os.getenv(f"{ENV_PREFIX}ROUTES", "").strip()
    if not raw:
        return {}

    routes: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ConfigError(
                f"Invalid {ENV_PREFIX}ROUTES entry: "
                f"{token!r}. Expected format '<route>=<package.module:attr>'.",
            )
        route, target = token.split("=", 1)
        route = route.strip()
        target = target.strip()
        if not route or ":" not in target:
            raise ConfigError(
                f"Invalid {ENV_PREFIX}ROUTES entry: "
                f"{token!r}. Expected format '<route>=<package.module:attr>'.",
            )
        routes[route] = target
    return routes


LOG_FORMAT = "%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s"


def configure_logging(
    settings: LoggingSettings,
    *,
    log_file: Path | None = None,
    force: bool = False,
) -> None:
    """Attach one stderr or file handler to the root logger.

    Without ``force`` an already configured root logger (an embedding
    application, the test runner) is left alone and only the package level is
    adjusted.
    """

    if logging.getLogger().handlers and not force:
        logging.getLogger("queue_daemon").setLevel(settings.level)
        return
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    logging.basicConfig(level=settings.level, format=LOG_FORMAT, handlers=[handler], force=force)
