from __future__ import annotations

import json

import pytest

from chiya_pos.core import config_store


def test_defaults_written_on_first_read(data_root):
    config = config_store.load_config()
    assert config["api_base_url"] == "http://localhost:3001"
    assert config["cancel_from"] == ["pending"]
    on_disk = json.loads((data_root / "config" / "settings.json").read_text(encoding="utf-8"))
    assert on_disk["sqlite_synchronous"] == "FULL"


def test_corrupt_file_falls_back_to_defaults(data_root):
    path = data_root / "config" / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")
    assert config_store.load_config()["active_table"] is None


def test_server_url(data_root, monkeypatch):
    config_store.set_api_base_url("http://10.0.0.2:3001/")
    assert config_store.get_api_base_url() == "http://10.0.0.2:3001"
    monkeypatch.setenv("CHIYA_API_URL", "http://override:9000/")
    assert config_store.get_api_base_url() == "http://override:9000"
    with pytest.raises(ValueError):
        config_store.set_api_base_url("   ")


def test_table_and_phone_context(data_root):
    assert config_store.get_active_table() is None
    config_store.set_active_table(7)
    assert config_store.get_active_table() == 7
    config_store.set_active_table(None)
    assert config_store.get_active_table() is None
    with pytest.raises(ValueError):
        config_store.set_active_table(0)

    config_store.set_customer_phone(" 9800000001 ")
    assert config_store.get_customer_phone() == "9800000001"


def test_subscription_cache_expires_after_an_hour(data_root):
    config_store.cache_subscription({"active": True, "plan": "basic"}, now=1000.0)
    assert config_store.get_cached_subscription(now=1000.0 + 3599) == {"active": True, "plan": "basic"}
    assert config_store.get_cached_subscription(now=1000.0 + 3600) is None


def test_cancel_from(data_root):
    assert config_store.get_cancel_from() == ["pending"]
    config_store.set_config_value("cancel_from", ["pending", "preparing"])
    assert config_store.get_cancel_from() == ["pending", "preparing"]
    config_store.set_config_value("cancel_from", "pending")
    assert config_store.get_cancel_from() == ["pending"]
