import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")


BACKEND_OPENROUTER = "openrouter"
BACKEND_OPENAI = "openai"
BACKENDS = (BACKEND_OPENROUTER, BACKEND_OPENAI)

# Per-backend model defaults: extraction, value lookup, history, image editing.
DEFAULT_MODELS: Dict[str, Dict[str, str]] = {
    BACKEND_OPENROUTER: {
        "extract": "google/gemini-2.5-pro",
        "value": "google/gemini-2.5-pro",
        "history": "google/gemini-2.5-flash",
        "image": "google/gemini-2.5-flash-image-preview",
    },
    BACKEND_OPENAI: {
        "extract": "gpt-4o",
        "value": "gpt-4o-search-preview",
        "history": "gpt-4o-mini-search-preview",
        "image": "gpt-image-1",
    },
}

DEFAULT_TIMEOUT_SECONDS = 120


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories still find the
    repository-level `.env`.
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
    """Return key/value pairs of the nearest .env; does not mutate environment."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug("No .env found starting from: %s", os.path.abspath(dotenv_dir))
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if v is not None}
    log.debug("Loaded %d key(s) from .env at %s", len(values), path)
    return values


def _lookup(env: Dict[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        v = os.environ.get(key)
        if v and v.strip():
            return v.strip()
    for key in keys:
        v = env.get(key) or env.get(key.lower())
        if v:
            return v
    return None


@dataclass
class AISettings:
    backend: str
    api_key: Optional[str]
    base_url: Optional[str]
    extract_model: str
    value_model: str
    history_model: str
    image_model: str
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS


def load_ai_settings(dotenv_dir: Optional[str] = None) -> AISettings:
    """Resolve backend, key and model ids from env or .env."""
    env = _read_dotenv(dotenv_dir or os.getcwd())
    backend = (_lookup(env, "NUMIS_AI_BACKEND") or BACKEND_OPENROUTER).lower()
    if backend not in BACKENDS:
        log.warning("Unknown NUMIS_AI_BACKEND=%r; defaulting to '%s'", backend, BACKEND_OPENROUTER)
        backend = BACKEND_OPENROUTER

    if backend == BACKEND_OPENROUTER:
        api_key = _lookup(env, "OPEN_ROUTER_API_KEY")
        base_url = None
    else:
        api_key = _lookup(env, "OPENAI_API_KEY")
        base_url = _lookup(env, "OPENAI_BASE_URL")

    defaults = DEFAULT_MODELS[backend]
    timeout_raw = _lookup(env, "NUMIS_AI_TIMEOUT")
    try:
        timeout = int(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        log.warning("NUMIS_AI_TIMEOUT=%r is not an integer; using %s", timeout_raw, DEFAULT_TIMEOUT_SECONDS)
        timeout = DEFAULT_TIMEOUT_SECONDS

    settings = AISettings(
        backend=backend,
        api_key=api_key,
        base_url=base_url,
        extract_model=_lookup(env, "NUMIS_EXTRACT_MODEL") or defaults["extract"],
        value_model=_lookup(env, "NUMIS_VALUE_MODEL") or defaults["value"],
        history_model=_lookup(env, "NUMIS_HISTORY_MODEL") or defaults["history"],
        image_model=_lookup(env, "NUMIS_IMAGE_MODEL") or defaults["image"],
        timeout_seconds=timeout,
    )
    log.debug(
        "AI backend=%s extract=%s value=%s history=%s image=%s key=%s",
        settings.backend,
        settings.extract_model,
        settings.value_model,
        settings.history_model,
        settings.image_model,
        "set" if settings.api_key else "missing",
    )
    return settings


def load_db_path(dotenv_dir: Optional[str] = None) -> Optional[str]:
    """Return an explicit database path override (NUMIS_DB_PATH) if configured."""
    env = _read_dotenv(dotenv_dir or os.getcwd())
    return _lookup(env, "NUMIS_DB_PATH")
