import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# storage paths are resolved at import time, so point them somewhere disposable first
os.environ.setdefault("CHIYA_DATA_ROOT", tempfile.mkdtemp(prefix="chiya-pos-tests-"))
os.environ.pop("CHIYA_API_URL", None)

from chiya_pos.services.store import AppStore  # noqa: E402

NPT = timezone(timedelta(hours=5, minutes=45))

MENU = [
    {"id": "m-tea", "name": "Masala Tea", "price": 30, "category": "Tea"},
    {"id": "m-momo", "name": "Chicken Momo", "price": 40, "category": "Snacks"},
    {"id": "m-coke", "name": "Coke", "price": 60, "category": "Cold Drink"},
    {"id": "m-cake", "name": "Chocolate Pastry", "price": 120, "category": "Pastry", "available": False},
]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=NPT))


@pytest.fixture()
def store(clock) -> AppStore:
    return AppStore(clock=clock)


@pytest.fixture()
def menu_store(store) -> AppStore:
    store.set_menu_items(MENU)
    return store


@pytest.fixture()
def data_root(tmp_path, monkeypatch):
    """Redirect the config file and database to a per-test directory."""
    import chiya_pos.core.config_store as config_store
    import chiya_pos.core.db as db
    import chiya_pos.core.paths as paths

    config_dir = tmp_path / "config"
    monkeypatch.setattr(paths, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_store, "SETTINGS_FILE", config_dir / "settings.json")
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "data" / "chiya_pos.db")
    return tmp_path
