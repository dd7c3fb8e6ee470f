from __future__ import annotations

import uuid
from types import SimpleNamespace

from muxlink.managers.keepass import KeePassManager
from muxlink.managers.settings import SettingsManager
from muxlink.models import ConnectionConfig

ENTRY = uuid.uuid4()


def _db(*entries):
    return SimpleNamespace(entries=list(entries))


def test_secret_lookup_searches_all_open_databases():
    mgr = KeePassManager()
    mgr.add("work.kdbx", _db(SimpleNamespace(uuid=ENTRY, password="hunter2")))
    mgr.add("home.kdbx", _db())  # becomes active, has nothing
    cfg = ConnectionConfig(name="dev", host="box.lan", keepass_entry_uuid=str(ENTRY))
    assert mgr.get_secret(cfg) == "hunter2"


def test_secret_lookup_misses():
    mgr = KeePassManager()
    mgr.add("work.kdbx", _db())
    assert mgr.get_secret(ConnectionConfig(name="dev", host="h")) is None
    assert mgr.get_secret(ConnectionConfig(name="dev", host="h", keepass_entry_uuid="not-a-uuid")) is None
    mgr.lock()
    assert not mgr.is_open


def test_settings_defaults_and_override(tmp_path):
    path = tmp_path / "settings.json"
    settings = SettingsManager(path)
    assert settings.get("token_parsing") == "strict"
    settings.set("loopback_alias", "")
    assert SettingsManager(path).get("loopback_alias") == ""
