"""
Configuration and environment loading for Oracle Chess.

- Loads settings.yml (YAML) from repo root if present; falls back to environment variables.
- Exposes SETTINGS with the oracle endpoint, its tuning knobs, and the search-depth bounds.
"""
from dataclasses import dataclass
import os
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()


def _repo_root() -> str:
    # this file: src/oracle_chess/config.py → repo root is two levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


@dataclass(frozen=True)
class Settings:
    # Move oracle endpoint (stockfish.online compatible)
    oracle_url: str
    oracle_timeout_s: float
    oracle_retries: int
    oracle_max_depth: int

    # Session defaults
    min_depth: int
    default_depth: int
    session_ttl_s: int


SETTINGS = Settings(
    oracle_url=_get("ORACLECHESS_ORACLE_URL", "https://stockfish.online/api/s/v2.php"),
    oracle_timeout_s=float(_get("ORACLECHESS_ORACLE_TIMEOUT_S", 15.0, cast=float)),
    oracle_retries=int(_get("ORACLECHESS_ORACLE_RETRIES", 1, cast=int)),
    oracle_max_depth=int(_get("ORACLECHESS_ORACLE_MAX_DEPTH", 15, cast=int)),
    min_depth=int(_get("ORACLECHESS_MIN_DEPTH", 6, cast=int)),
    default_depth=int(_get("ORACLECHESS_DEFAULT_DEPTH", 12, cast=int)),
    session_ttl_s=int(_get("ORACLECHESS_SESSION_TTL_S", 3600, cast=int)),
)
