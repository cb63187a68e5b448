from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"

DEFAULT_MAX_CANDIDATES = 5
DEFAULT_HISTORY_LIMIT = 10
DEFAULT_CURRENCY = "INR"
DEFAULT_WEB_BASE_URL = "http://localhost:8080"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_id_list(raw: str) -> List[int]:
    """Comma separated Telegram user ids; malformed entries are skipped."""
    return [int(part) for part in re.split(r"[,\s]+", raw or "") if part.isdigit()]


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    db_path = os.getenv("PURCHASE_ASSISTANT_DB_PATH")
    if db_path:
        overrides.setdefault("memory", {})["db_path"] = db_path

    web_url = os.getenv("PURCHASE_ASSISTANT_WEB_URL")
    if web_url:
        overrides.setdefault("web", {})["base_url"] = web_url

    ids = _parse_id_list(os.getenv("TELEGRAM_ALLOWED_USER_IDS", ""))
    if ids:
        overrides.setdefault("telegram", {})["allowed_user_ids"] = ids

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("PURCHASE_ASSISTANT_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(data, _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def get_db_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    db_path = str(cfg.get("memory", {}).get("db_path", "data/assistant.db"))
    return resolve_path(db_path)


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config or load_config()
    log_path = str(cfg.get("paths", {}).get("log_file", "logs/purchase-assistant.log"))
    return resolve_path(log_path)


def get_assistant_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    cfg = config or load_config()
    section = cfg.get("assistant") if isinstance(cfg.get("assistant"), dict) else {}
    try:
        max_candidates = int(section.get("max_candidates", DEFAULT_MAX_CANDIDATES))
    except (TypeError, ValueError):
        max_candidates = DEFAULT_MAX_CANDIDATES
    try:
        history_limit = int(section.get("history_limit", DEFAULT_HISTORY_LIMIT))
    except (TypeError, ValueError):
        history_limit = DEFAULT_HISTORY_LIMIT
    return {
        "max_candidates": max(1, max_candidates),
        "history_limit": max(1, history_limit),
        "currency": str(section.get("currency") or DEFAULT_CURRENCY).upper(),
    }


def get_web_base_url(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = config or load_config()
    web_cfg = cfg.get("web") if isinstance(cfg.get("web"), dict) else {}
    return str(web_cfg.get("base_url") or DEFAULT_WEB_BASE_URL).rstrip("/")
