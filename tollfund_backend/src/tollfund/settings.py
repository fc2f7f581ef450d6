from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Set


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tollfund.db'
    - RECREATE_INCOMPATIBLE_STORE: 'true' (default) to recreate an unreadable or
      newer-schema database file instead of failing
    - PRUNE_POLICY: 'inactive_templates' (default) or 'none'
    - AUTOSAVE_DELAY_SECONDS: quiet period before a debounced save. Default 0.5
    - MONTHLY_ROLLUP_MONTHS: default number of months in the monthly rollup. Default 6
    - PREFERENCES_PATH: JSON file holding the first-run flags. Default './data/preferences.json'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name. Default 'INFO'
    - LOG_JSON: 'true' to render logs as JSON lines (default: false)
    """

    persistence_backend: str = "memory"
    sqlite_db_path: str = "./data/tollfund.db"
    recreate_incompatible_store: bool = True
    prune_policy: str = "inactive_templates"
    autosave_delay_seconds: float = 0.5
    monthly_rollup_months: int = 6
    preferences_path: str = "./data/preferences.json"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_json: bool = False


def _env(name: str, default: str) -> str:
    """Environment value with surrounding whitespace removed; unset or blank means `default`."""
    value = (os.getenv(name) or "").strip()
    return value or default


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.lower()
    return True if v in _TRUE else False if v in _FALSE else default


def _parse_float(value: str, default: float, minimum: float = 0.0) -> float:
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_int(value: str, default: int, minimum: int = 1) -> int:
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_choice(value: str, choices: Set[str], default: str) -> str:
    v = value.lower()
    return v if v in choices else default


def _parse_origins(value: str) -> List[str]:
    # '*' stays a single wildcard entry; main.py maps it to allow_origins=["*"]
    origins = [o.strip() for o in value.split(",") if o.strip()]
    return ["*"] if "*" in origins else origins


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Build Settings from the environment. Unsupported values fall back to the defaults."""
    defaults = Settings()
    return Settings(
        persistence_backend=_parse_choice(
            _env("PERSISTENCE_BACKEND", defaults.persistence_backend), {"memory", "sqlite"}, "memory"
        ),
        sqlite_db_path=_env("SQLITE_DB_PATH", defaults.sqlite_db_path),
        recreate_incompatible_store=_parse_bool(_env("RECREATE_INCOMPATIBLE_STORE", "true"), True),
        prune_policy=_parse_choice(
            _env("PRUNE_POLICY", defaults.prune_policy), {"none", "inactive_templates"}, defaults.prune_policy
        ),
        autosave_delay_seconds=_parse_float(_env("AUTOSAVE_DELAY_SECONDS", "0.5"), defaults.autosave_delay_seconds),
        monthly_rollup_months=_parse_int(_env("MONTHLY_ROLLUP_MONTHS", "6"), defaults.monthly_rollup_months),
        preferences_path=_env("PREFERENCES_PATH", defaults.preferences_path),
        cors_allow_origins=_parse_origins(_env("CORS_ALLOW_ORIGINS", "*")),
        log_level=_parse_choice(
            _env("LOG_LEVEL", defaults.log_level), {"debug", "info", "warning", "error", "critical"}, "info"
        ).upper(),
        log_json=_parse_bool(_env("LOG_JSON", "false")),
    )
