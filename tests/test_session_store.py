from __future__ import annotations

from muxlink.managers.session import SessionStore
from muxlink.models import ConnectionConfig, ConnectMode, Session


def test_save_then_load(tmp_path):
    store = SessionStore(tmp_path / "sessions.json")
    cfg = ConnectionConfig(name="dev", host="box.lan", username="me", secret="pw",
                           connect_mode=ConnectMode.BOOTSTRAP)
    store.save([Session(title="dev", config=cfg, remote_session="dev")])

    loaded = store.load()
    assert len(loaded) == 1
    assert loaded[0].config.host == "box.lan"
    assert loaded[0].config.connect_mode is ConnectMode.BOOTSTRAP
    assert "pw" not in store.path.read_text(encoding="utf-8")


def test_missing_file_loads_empty(tmp_path):
    assert SessionStore(tmp_path / "nope.json").load() == []


def test_corrupt_file_loads_empty(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{not json", encoding="utf-8")
    assert SessionStore(path).load() == []
