"""
Dispatch Configuration
======================
Runtime configuration for the dispatch engine, read from SMSLY_DISPATCH_*
environment variables.
"""

import os
from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional


ENV_PREFIX = "SMSLY_DISPATCH_"


class TimezoneSource(str, Enum):
    """Where the recipient's local sending window is evaluated."""
    ACCOUNT = "account"
    RECIPIENT = "recipient"


@dataclass
class DispatchConfig:
    """Configuration for the dispatch engine and its collaborators."""
    service_name: str = "smsly-dispatch"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./smsly_dispatch.db"
    redis_url: Optional[str] = None

    # Webhook ingestion
    webhook_secret: str = ""
    webhook_max_skew_seconds: int = 300
    webhook_max_attempts: int = 5
    webhook_base_delay: float = 0.5
    webhook_max_delay: float = 30.0
    webhook_workers: int = 4

    # Compliance window
    window_start_hour: int = 8
    window_end_hour: int = 21
    window_timezone_source: TimezoneSource = TimezoneSource.ACCOUNT
    account_timezone: str = "America/New_York"

    # Throughput
    burst_seconds: float = 1.0
    admission_timeout: float = 5.0

    # Provider
    provider_base_url: str = "https://api.provider.example/v1"
    provider_api_key: str = ""
    provider_status_callback_url: Optional[str] = None

    # Dispatcher
    dispatch_max_attempts: int = 4
    dispatch_base_delay: float = 0.5
    dispatch_max_delay: float = 8.0
    provider_timeout: float = 10.0
    default_cost_per_segment: Decimal = Decimal("0.0079")

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DispatchConfig":
        """
        Build a config from environment variables.

        Every field maps to SMSLY_DISPATCH_<FIELD_NAME>; unset variables keep
        their defaults.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, f.default, raw)

        return cls(**values)


def _coerce(name: str, default: Any, raw: str) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, TimezoneSource):
        return TimezoneSource(raw.strip().lower())
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, Decimal):
        return Decimal(raw)
    if name in ("redis_url", "provider_status_callback_url"):
        return raw or None
    return raw
