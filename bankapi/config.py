"""Configuration management for the banking service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import yaml

from .database import DEFAULT_TIMEOUT, resolve_database_path
from .ledger import MINIMUM_OPENING_DEPOSIT
from .passwords import DEFAULT_ROUNDS
from .rate_limit import BANK_LOGIN_POLICY, GENERAL_LOGIN_POLICY, RateLimitPolicy

# setting name -> environment variable
_ENVIRONMENT_KEYS: Dict[str, str] = {
    "database_path": "BANKAPI_DB_PATH",
    "database_timeout": "BANKAPI_DB_TIMEOUT",
    "password_rounds": "BANKAPI_PASSWORD_ROUNDS",
    "token_secret": "BANKAPI_TOKEN_SECRET",
    "token_ttl": "BANKAPI_TOKEN_TTL",
    "login_max_attempts": "BANKAPI_LOGIN_MAX_ATTEMPTS",
    "login_lockout_minutes": "BANKAPI_LOGIN_LOCKOUT_MINUTES",
    "bank_login_max_attempts": "BANKAPI_BANK_LOGIN_MAX_ATTEMPTS",
    "minimum_opening_deposit": "BANKAPI_MINIMUM_DEPOSIT",
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the service. Every field has a usable default."""

    database_path: Path
    database_timeout: float = DEFAULT_TIMEOUT
    password_rounds: int = DEFAULT_ROUNDS
    token_secret: Optional[str] = None
    token_ttl: int = 86400
    login_max_attempts: int = GENERAL_LOGIN_POLICY.max_attempts
    login_lockout_minutes: int = 30
    bank_login_max_attempts: int = BANK_LOGIN_POLICY.max_attempts
    minimum_opening_deposit: int = MINIMUM_OPENING_DEPOSIT

    @property
    def login_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            GENERAL_LOGIN_POLICY.name,
            max_attempts=self.login_max_attempts,
            lockout=timedelta(minutes=self.login_lockout_minutes),
        )

    @property
    def bank_login_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(BANK_LOGIN_POLICY.name, max_attempts=self.bank_login_max_attempts, lockout=None)

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw (YAML or environment) values."""

        unknown = set(data) - set(_ENVIRONMENT_KEYS)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_path = data.get("database_path")
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        settings = Settings(database_path=database_path)
        converters: Dict[str, Callable[[Any], Any]] = {
            "database_timeout": float,
            "password_rounds": int,
            "token_ttl": int,
            "login_max_attempts": int,
            "login_lockout_minutes": int,
            "bank_login_max_attempts": int,
            "minimum_opening_deposit": int,
        }
        updates: Dict[str, Any] = {}
        for key, convert in converters.items():
            value = data.get(key)
            if value is None or value == "":
                continue
            try:
                updates[key] = convert(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid value for {key}: {value!r}") from exc

        secret = data.get("token_secret")
        if secret:
            updates["token_secret"] = str(secret)

        return replace(settings, **updates)


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping of settings")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None and env.get("BANKAPI_CONFIG"):
        config_path = Path(env["BANKAPI_CONFIG"]).expanduser()

    data: Dict[str, Any] = {}
    base_path: Optional[Path] = None
    if config_path is not None:
        data.update(_read_yaml(config_path))
        base_path = config_path.resolve(strict=False).parent

    for key, variable in _ENVIRONMENT_KEYS.items():
        value = env.get(variable)
        if value:
            data[key] = value
            if key == "database_path":
                base_path = None

    return Settings.from_dict(data, base_path=base_path)


__all__ = ["Settings", "load_settings"]
