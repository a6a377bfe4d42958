"""
FLEETWATCH Configuration

Pydantic models for every engine subsystem, loaded from YAML with
environment variable overrides. The configuration is validated once at
startup; the rest of the engine only reads the resolved models.

Discovery order when no explicit path is given:
    ./fleetwatch.yaml
    ~/.fleetwatch/config.yaml
    /etc/fleetwatch/config.yaml

Environment overrides use FLEETWATCH_<SECTION>_<KEY>, for example
FLEETWATCH_SMS_MODEM_URL=http://192.168.8.1 or
FLEETWATCH_EMAIL_RECIPIENTS_DEFAULT=ops@example.com,noc@example.com.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from fleetwatch.exceptions import ConfigurationError

ENV_PREFIX = "FLEETWATCH_"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Site & Working Hours
# =============================================================================

class SiteConfig(BaseModel):
    """Installation identity and the timezone every hour window uses."""

    name: str = "FLEETWATCH Monitoring"
    timezone: str = "America/Santiago"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class WorkingHoursConfig(BaseModel):
    """Business-hours windows as decimal hours (8.5 == 08:30)."""

    weekday_start: float = Field(default=8.5, ge=0.0, le=24.0)
    weekday_end: float = Field(default=18.5, ge=0.0, le=24.0)
    saturday_start: float = Field(default=8.5, ge=0.0, le=24.0)
    saturday_end: float = Field(default=14.5, ge=0.0, le=24.0)

    @model_validator(mode="after")
    def check_windows(self) -> "WorkingHoursConfig":
        if self.weekday_start > self.weekday_end:
            raise ValueError("weekday_start must not be after weekday_end")
        if self.saturday_start > self.saturday_end:
            raise ValueError("saturday_start must not be after saturday_end")
        return self


# =============================================================================
# Detection & Batching
# =============================================================================

class ThresholdConfig(BaseModel):
    """Temperature debounce settings."""

    escalation_streak: int = Field(default=3, ge=1, le=100)
    counter_max_age_hours: float = Field(default=12.0, gt=0.0)


class BatchingConfig(BaseModel):
    """Message truncation limits shared by email and SMS rendering."""

    max_detailed_entries: int = Field(default=3, ge=1, le=50)
    sms_max_chars: int = Field(default=160, ge=40, le=1600)


class SchedulerConfig(BaseModel):
    """Periodic task settings."""

    hourly_enabled: bool = True
    cleanup_interval_minutes: float = Field(default=720.0, gt=0.0)
    bucket_retention_hours: float = Field(default=24.0, gt=0.0)


# =============================================================================
# Transports
# =============================================================================

class EmailConfig(BaseModel):
    """SMTP transport configuration."""

    enabled: bool = True
    smtp_host: str = ""
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str = ""
    smtp_password: str = ""
    use_tls: bool = True
    from_address: str = "alerts@fleetwatch.local"
    from_name: str = "FLEETWATCH Alerts"
    timeout: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_delay: float = Field(default=5.0, ge=0.0)
    recipients_default: List[str] = Field(default_factory=list)
    recipients_disconnection: List[str] = Field(default_factory=list)
    recipients_temperature: List[str] = Field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.smtp_host and self.from_address)


class SmsConfig(BaseModel):
    """Cellular modem HTTP API configuration."""

    enabled: bool = False
    modem_url: str = ""
    api_path: str = "/api"
    modem_host: str = "192.168.8.1"
    timeout: float = Field(default=15.0, gt=0.0)
    token_timeout: float = Field(default=5.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_delays: List[float] = Field(default_factory=lambda: [10.0, 7.0])
    network_retry_delay: float = Field(default=3.0, ge=0.0)
    session_retry_delay: float = Field(default=3.0, ge=0.0)
    time_between_recipients: float = Field(default=8.0, ge=0.0)
    session_error_codes: List[str] = Field(
        default_factory=lambda: ["113018", "125002", "125003"]
    )
    recipients_default: List[str] = Field(default_factory=list)
    recipients_disconnection: List[str] = Field(default_factory=list)
    recipients_temperature: List[str] = Field(default_factory=list)

    @field_validator("modem_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("modem_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("retry_delays")
    @classmethod
    def validate_retry_delays(cls, v: List[float]) -> List[float]:
        if any(delay < 0 for delay in v):
            raise ValueError("retry_delays must be non-negative")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.modem_url)


class StateConfig(BaseModel):
    """Persistence of channel catalog, connection state and dispatch log."""

    db_path: str = "fleetwatch.db"
    dispatch_log_retention_days: int = Field(default=30, ge=1)


# =============================================================================
# Master Configuration
# =============================================================================

class FleetwatchConfig(BaseModel):
    """Complete engine configuration."""

    site: SiteConfig = Field(default_factory=SiteConfig)
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    sms: SmsConfig = Field(default_factory=SmsConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    log_level: LogLevel = "INFO"
    log_file: Optional[str] = None


# =============================================================================
# Loading
# =============================================================================

def get_config_paths() -> List[Path]:
    """Return candidate configuration file paths in priority order."""
    return [
        Path("./fleetwatch.yaml"),
        Path.home() / ".fleetwatch" / "config.yaml",
        Path("/etc/fleetwatch/config.yaml"),
    ]


def _coerce_env_value(raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay FLEETWATCH_<SECTION>_<KEY> variables onto raw config data."""
    defaults = FleetwatchConfig().model_dump()

    for key, default in defaults.items():
        if isinstance(default, dict):
            for field_name, field_default in default.items():
                env_name = f"{ENV_PREFIX}{key}_{field_name}".upper()
                if env_name not in os.environ:
                    continue
                section = data.setdefault(key, {})
                current = section.get(field_name, field_default)
                try:
                    section[field_name] = _coerce_env_value(os.environ[env_name], current)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value in environment variable {env_name}: {e}",
                        config_key=f"{key}.{field_name}",
                    ) from e
        else:
            env_name = f"{ENV_PREFIX}{key}".upper()
            if env_name in os.environ:
                data[key] = os.environ[env_name]

    return data


def load_config(path: Optional[str | Path] = None) -> FleetwatchConfig:
    """Load, override and validate the engine configuration.

    Args:
        path: Explicit YAML file. When omitted, the first existing file from
              get_config_paths() is used, or pure defaults if none exists.

    Returns:
        Validated FleetwatchConfig

    Raises:
        ConfigurationError: File missing, unparsable or failing validation
    """
    config_file: Optional[Path] = None
    if path is not None:
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}",
                config_file=str(config_file),
            )
    else:
        for candidate in get_config_paths():
            if candidate.exists():
                config_file = candidate
                break

    data: Dict[str, Any] = {}
    if config_file is not None:
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {e}",
                config_file=str(config_file),
            ) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(
                "Invalid YAML in configuration file: top level must be a mapping",
                config_file=str(config_file),
            )
        data = loaded or {}

    data = _apply_env_overrides(data)

    try:
        return FleetwatchConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}",
            config_file=str(config_file) if config_file else None,
        ) from e
