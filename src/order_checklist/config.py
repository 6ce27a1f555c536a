import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_API_URL = "http://127.0.0.1:8001"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read the nearest .env into a mapping; does not mutate the environment."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v is None:
        v = env.get(key)
    if v is None:
        return None
    v = v.strip()
    return v or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the environment and `.env`."""

    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    model_name: str
    model_timeout: Optional[float]
    api_url: str
    db_path: Optional[str]


def load_settings(dotenv_dir: Optional[str] = None) -> Settings:
    env = _read_dotenv(dotenv_dir or os.getcwd())

    timeout_raw = _lookup("CHECKLIST_MODEL_TIMEOUT", env)
    timeout: Optional[float] = None
    if timeout_raw:
        try:
            timeout = float(timeout_raw)
        except ValueError:
            log.warning(f"CHECKLIST_MODEL_TIMEOUT={timeout_raw!r} is not a number; no timeout will be applied")

    return Settings(
        openai_api_key=_lookup("OPENAI_API_KEY", env) or _lookup("openai_api_key", env),
        openai_base_url=_lookup("OPENAI_BASE_URL", env),
        model_name=_lookup("CHECKLIST_MODEL", env) or DEFAULT_MODEL,
        model_timeout=timeout,
        api_url=(_lookup("CHECKLIST_API_URL", env) or DEFAULT_API_URL).rstrip("/"),
        db_path=_lookup("CHECKLIST_DB_PATH", env),
    )
