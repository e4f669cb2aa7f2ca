"""
Config access helpers - load the access-control configuration from YAML.

Secrets (API keys, JWT secret, database password, Flask secret key) are
never read from the YAML file; they come from read_secret().
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sambright_access.utils.env import read_secret
from sambright_access.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_ENV_VAR = "SAMBRIGHT_CONFIG"
PROFILE_BACKENDS = ("supabase", "postgres")


class ConfigError(RuntimeError):
    """Raised when the configuration file is unreadable or invalid."""
    pass


@dataclass(frozen=True)
class AccessConfig:
    """Runtime configuration for the access-control core and web app."""

    supabase_url: str = ""
    profile_backend: str = "supabase"
    profiles_table: str = "profiles"
    profile_timeout_seconds: float = 10.0
    http_timeout_seconds: float = 10.0
    session_revalidate_seconds: float = 0.0
    verify_jwt: bool = True
    log_level: str = "INFO"
    postgres: Dict[str, Any] = field(default_factory=dict)

    @property
    def anon_key(self) -> Optional[str]:
        return read_secret("SUPABASE_ANON_KEY")

    @property
    def service_role_key(self) -> Optional[str]:
        return read_secret("SUPABASE_SERVICE_ROLE_KEY")

    @property
    def jwt_secret(self) -> Optional[str]:
        return read_secret("SUPABASE_JWT_SECRET") if self.verify_jwt else None

    @property
    def pg_config(self) -> Dict[str, Any]:
        return {"password": read_secret("PG_PASSWORD"), **self.postgres}


def _coerce_float(value: Any, name: str, default: float, allow_zero: bool = False) -> float:
    if value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected a number, got {value!r}")
    if result < 0 or (result == 0 and not allow_zero):
        raise ConfigError(f"{name}: must be positive")
    return result


def config_from_dict(raw: Dict[str, Any]) -> AccessConfig:
    """
    Build an AccessConfig from the parsed YAML structure:

        supabase:
          url: https://xyz.supabase.co
        auth:
          profile_backend: supabase
          profiles_table: profiles
          profile_timeout_seconds: 10
          http_timeout_seconds: 10
          session_revalidate_seconds: 0
          verify_jwt: true
        postgres:
          host: localhost
          port: 5432
          dbname: sambright
          user: postgres
        logging:
          level: INFO
    """
    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping")

    supabase = raw.get("supabase") or {}
    auth = raw.get("auth") or {}
    postgres = raw.get("postgres") or {}
    logging_cfg = raw.get("logging") or {}

    backend = auth.get("profile_backend", "supabase")
    if backend not in PROFILE_BACKENDS:
        raise ConfigError(
            f"auth.profile_backend: expected one of {', '.join(PROFILE_BACKENDS)}, got {backend!r}"
        )

    return AccessConfig(
        supabase_url=os.environ.get("SUPABASE_URL") or supabase.get("url", ""),
        profile_backend=backend,
        profiles_table=auth.get("profiles_table", "profiles"),
        profile_timeout_seconds=_coerce_float(
            auth.get("profile_timeout_seconds"), "auth.profile_timeout_seconds", 10.0
        ),
        http_timeout_seconds=_coerce_float(
            auth.get("http_timeout_seconds"), "auth.http_timeout_seconds", 10.0
        ),
        session_revalidate_seconds=_coerce_float(
            auth.get("session_revalidate_seconds"), "auth.session_revalidate_seconds", 0.0, allow_zero=True
        ),
        verify_jwt=bool(auth.get("verify_jwt", True)),
        log_level=str(logging_cfg.get("level", "INFO")).upper(),
        postgres=dict(postgres),
    )


def load_access_config(config_path: Optional[str] = None) -> AccessConfig:
    """
    Load the access configuration.

    Priority order:
    1. Explicit config_path
    2. $SAMBRIGHT_CONFIG
    3. ./configs/access.yaml
    4. Defaults (with SUPABASE_URL from the environment)

    Raises:
        ConfigError: If an explicit path is missing or any file is invalid
    """
    if config_path and not os.path.isfile(config_path):
        raise ConfigError(f"Config file not found: {config_path}")

    search_paths = [
        config_path,
        os.environ.get(CONFIG_ENV_VAR),
        os.path.join(os.getcwd(), "configs", "access.yaml"),
    ]

    for path in search_paths:
        if path and os.path.isfile(path):
            logger.info(f"Loading access configuration from: {path}")
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigError(f"Could not read {path}: {exc}") from exc
            return config_from_dict(raw)

    logger.warning("No access configuration found, using defaults")
    return config_from_dict({})


def dump_example_config(path: Path) -> None:
    """Write an example configuration file."""
    example = {
        "supabase": {"url": "https://your-project.supabase.co"},
        "auth": {
            "profile_backend": "supabase",
            "profiles_table": "profiles",
            "profile_timeout_seconds": 10,
            "http_timeout_seconds": 10,
            "session_revalidate_seconds": 0,
            "verify_jwt": True,
        },
        "postgres": {"host": "localhost", "port": 5432, "dbname": "sambright", "user": "postgres"},
        "logging": {"level": "INFO"},
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(example, f, sort_keys=False)
