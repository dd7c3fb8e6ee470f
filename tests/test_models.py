from __future__ import annotations

import pytest

from muxlink.models import (
    AuthMode,
    CommandResult,
    ConnectionConfig,
    ConnectMode,
    Session,
    slugify,
)


def _cfg(**kw) -> ConnectionConfig:
    base = dict(name="dev", host="box.lan", username="me")
    base.update(kw)
    return ConnectionConfig(**base)


@pytest.mark.parametrize("secret", [None, "", "   "])
def test_secret_mode_requires_secret(secret):
    assert not _cfg(auth_mode=AuthMode.SECRET, secret=secret).validate().ok


@pytest.mark.parametrize("key_path", [None, "", " \t"])
def test_key_file_mode_requires_key_path(key_path):
    assert not _cfg(auth_mode=AuthMode.KEY_FILE, key_path=key_path).validate().ok


def test_validation_ignores_other_fields_unless_strict():
    cfg = _cfg(host="", username="", port=0, secret="pw")
    assert cfg.validate().ok
    assert not cfg.validate(strict=True).ok
    assert _cfg(auth_mode=AuthMode.KEY_FILE, key_path="~/.ssh/id_ed25519").validate().ok


@pytest.mark.parametrize("port, ok", [(0, False), (1, True), (65535, True), (65536, False)])
def test_strict_port_range(port, ok):
    assert _cfg(port=port, secret="pw").validate(strict=True).ok is ok


def test_slugify():
    assert slugify("My Session!") == "my-session"
    assert slugify("  --Work__Box 2--  ") == "work-box-2"
    assert slugify("abc") == slugify("abc")


@pytest.mark.parametrize("text", ["", "!!!", "   "])
def test_slugify_never_empty(text):
    slug = slugify(text)
    assert slug.startswith("session-")
    assert len(slug) == len("session-") + 8


def test_secrets_only_persisted_when_asked():
    cfg = _cfg(secret="pw", key_passphrase="pp", daemon_psk="k")
    d = cfg.to_dict()
    assert d["secret"] is None and d["key_passphrase"] is None and d["daemon_psk"] is None
    assert cfg.secret == "pw"  # the live object keeps it

    kept = _cfg(secret="pw", save_secret=True).to_dict()
    assert kept["secret"] == "pw"


def test_session_from_dict_restores_enums():
    cfg = _cfg(secret="pw", connect_mode=ConnectMode.BOOTSTRAP, auth_mode=AuthMode.SECRET)
    session = Session(title="dev", config=cfg, remote_session="dev", last_token="t")
    restored = Session.from_dict(session.to_dict())
    assert restored.config.connect_mode is ConnectMode.BOOTSTRAP
    assert restored.config.auth_mode is AuthMode.SECRET
    assert restored.remote_session == "dev"
    assert restored.last_token == "t"
    assert restored.config.secret is None


def test_session_status_text():
    s = Session(title="dev", config=_cfg(), remote_session="dev")
    assert s.status_text() == "Not connected"
    s.last_connected = 1
    assert s.status_text() == "Disconnected"
    s.connected = True
    assert s.status_text() == "Connected"
    assert s.display_name() == "dev (box.lan)"


def test_command_result_success_flag():
    assert CommandResult(0, "x").success
    assert not CommandResult(1, "", "boom").success
    assert not CommandResult(0, timed_out=True).success
    assert CommandResult(1, "", "boom").output() == "boom"
