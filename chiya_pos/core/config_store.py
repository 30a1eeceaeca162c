"""Device-local JSON configuration with atomic writes.

Holds the terminal's session context (server URL, active table, the
customer phone remembered on this device, cached subscription status). None
of it is a source of truth for order or bill data.
"""
from __future__ import annotations

import json
import os
import time
from threading import RLock
from typing import Any, Dict, Optional

from .paths import SETTINGS_FILE, ensure_storage_dirs

_LOCK = RLock()
_DEFAULT_CONFIG: Dict[str, Any] = {
    "api_base_url": "http://localhost:3001",
    "ws_url": "",
    "active_table": None,
    "customer_phone": "",
    "subscription_cache": None,
    "cancel_from": ["pending"],
    "sqlite_synchronous": "FULL",
    "last_integrity_check": "",
}

SUBSCRIPTION_CACHE_SECONDS = 60 * 60


def _ensure_file_exists() -> None:
    ensure_storage_dirs()
    if not SETTINGS_FILE.exists():
        _atomic_write_json(_DEFAULT_CONFIG)


def _atomic_write_json(payload: Dict[str, Any]) -> None:
    SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = SETTINGS_FILE.with_suffix(".tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, SETTINGS_FILE)


def load_config() -> Dict[str, Any]:
    with _LOCK:
        _ensure_file_exists()
        try:
            with SETTINGS_FILE.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        merged = {**_DEFAULT_CONFIG, **data}
        if merged != data:
            _atomic_write_json(merged)
        return merged


def save_config(data: Dict[str, Any]) -> None:
    with _LOCK:
        merged = {**_DEFAULT_CONFIG, **data}
        _atomic_write_json(merged)


def get_config_value(key: str, default: Any = None) -> Any:
    config = load_config()
    return config.get(key, default)


def set_config_value(key: str, value: Any) -> None:
    config = load_config()
    if config.get(key) == value:
        return
    config[key] = value
    save_config(config)


# ----- session context -------------------------------------------------------

def get_api_base_url() -> str:
    env_override = os.getenv("CHIYA_API_URL")
    if env_override:
        return env_override.rstrip("/")
    return str(get_config_value("api_base_url", _DEFAULT_CONFIG["api_base_url"])).rstrip("/")


def set_api_base_url(url: str) -> None:
    cleaned = (url or "").strip().rstrip("/")
    if not cleaned:
        raise ValueError("server URL is required")
    set_config_value("api_base_url", cleaned)


def get_active_table() -> Optional[int]:
    value = get_config_value("active_table")
    try:
        table = int(value)
    except (TypeError, ValueError):
        return None
    return table if table > 0 else None


def set_active_table(table: Optional[int]) -> None:
    if table is not None and int(table) <= 0:
        raise ValueError("table number must be positive")
    set_config_value("active_table", None if table is None else int(table))


def get_customer_phone() -> str:
    return str(get_config_value("customer_phone", "") or "")


def set_customer_phone(phone: str) -> None:
    set_config_value("customer_phone", (phone or "").strip())


def get_cached_subscription(now: float | None = None) -> Optional[Dict[str, Any]]:
    """Return the cached subscription status while it is younger than an hour."""
    cached = get_config_value("subscription_cache")
    if not isinstance(cached, dict):
        return None
    status = cached.get("status")
    stamp = cached.get("timestamp")
    if not isinstance(status, dict) or not isinstance(stamp, (int, float)):
        return None
    current = time.time() if now is None else now
    if current - stamp >= SUBSCRIPTION_CACHE_SECONDS:
        return None
    return status


def cache_subscription(status: Dict[str, Any], now: float | None = None) -> None:
    stamp = time.time() if now is None else now
    set_config_value("subscription_cache", {"status": dict(status), "timestamp": stamp})


def get_cancel_from() -> list[str]:
    value = get_config_value("cancel_from", _DEFAULT_CONFIG["cancel_from"])
    if not isinstance(value, list):
        return list(_DEFAULT_CONFIG["cancel_from"])
    return [str(v) for v in value]
