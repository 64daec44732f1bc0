"""Engine settings.

Loaded from a ``settings:`` block in YAML, then overridden by environment:

- VNF_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
- VNF_MAX_RETRIES: Retries after the first attempt (default: 3)
- VNF_BACKOFF_INITIAL / VNF_BACKOFF_MAX / VNF_BACKOFF_JITTER: Backoff in seconds
- VNF_TOKEN_EXPIRY: Lifetime of broker tokens in seconds (default: 300)
- VNF_TOKEN_SECRET: Signing key for HMAC broker tokens
- VNF_PROBE_TIMEOUT: Reachability probe timeout in seconds (default: 5)
- VNF_VERIFY_SSL: "0" disables certificate checks (default: 1)
- VNF_BROKER_ADDRESS: Proxy address for virtual-router / controller brokers
- VNF_ERROR_BODY_LIMIT: Max characters of raw body in error messages
- VNF_FLAG_PROPERTY_DRIFT: "1" flags property mismatches during reconcile
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "VNF_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class EngineSettings:
    """Runtime settings for builder, broker and reconciliation."""
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_initial: float = 1.0
    backoff_max: float = 10.0
    backoff_jitter: float = 1.0
    token_expiry: int = 300
    token_secret: str = ""
    probe_timeout: float = 5.0
    verify_ssl: bool = True
    broker_address: Optional[str] = None  # host[:port]; the request port when omitted
    error_body_limit: int = 512
    flag_property_drift: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EngineSettings":
        """Build settings from a mapping, ignoring unknown keys."""
        settings = cls()
        if not data:
            return settings

        known = {f.name: f for f in fields(cls)}
        for key, value in data.items():
            name = str(key).replace("-", "_")
            if name not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            setattr(settings, name, _coerce(value, getattr(settings, name), name))
        return settings

    @classmethod
    def from_env(cls, base: Optional["EngineSettings"] = None) -> "EngineSettings":
        """Apply VNF_* environment overrides on top of ``base``."""
        settings = base or cls()
        for f in fields(cls):
            env_value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if env_value is None:
                continue
            setattr(settings, f.name, _coerce(env_value, getattr(settings, f.name), f.name))
        return settings

    @classmethod
    def from_file(cls, path: Path) -> "EngineSettings":
        """Load from a YAML file (top-level ``settings:`` block or flat)."""
        if not path.exists():
            logger.warning(f"Settings file not found: {path}")
            return cls.from_env()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        block = data.get("settings", data) if isinstance(data, Mapping) else {}
        return cls.from_env(cls.from_mapping(block))

    def to_dict(self) -> dict:
        """Settings without secrets, for display."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["token_secret"] = "***" if self.token_secret else ""
        return data


def _coerce(value: Any, current: Any, name: str) -> Any:
    """Convert ``value`` to the type of the current setting."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    try:
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for setting '{name}': {value!r}")
    if value is None:
        return None
    return str(value)
