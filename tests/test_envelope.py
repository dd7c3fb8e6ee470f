from __future__ import annotations

import pytest

from muxlink.daemon.envelope import (
    ANNOTATION_CREATE,
    AnnotationAction,
    Envelope,
    EnvelopeDecodeError,
    annotation_envelope,
    decode,
    encode,
    is_ping,
    open_view_envelope,
    payload_kind,
    ping_envelope,
)


def test_ping_envelope_carries_timestamp():
    env = decode(encode(ping_envelope(1_700_000_000_000)))
    assert is_ping(env)
    assert env.ping.timestamp == 1_700_000_000_000


def test_zero_timestamp_ping_is_still_a_ping():
    assert is_ping(decode(encode(ping_envelope(0))))


def test_open_view_envelope():
    env = decode(encode(open_view_envelope("a1", "/assets/a1", "notes.md", markdown=True)))
    assert payload_kind(env) == "open_view"
    assert env.open_view.url == "/assets/a1"
    assert env.open_view.file_type == 1
    assert not is_ping(env)


def test_annotation_envelope():
    env = Envelope()
    env.annotation.file_path = "a1"
    env.annotation.data.body = "looks good"
    env.annotation.data.timestamp = 42
    decoded = decode(encode(env))
    assert payload_kind(decoded) == "annotation"
    assert decoded.annotation.data.body == "looks good"


def test_annotation_envelope_is_a_create_action():
    env = decode(encode(annotation_envelope(
        "a1", "Simulated annotation", target_text="This is interesting",
        context_hash="sha256:dummy", annotation_id="ann-1",
    )))
    assert payload_kind(env) == "annotation"
    assert env.annotation.type == ANNOTATION_CREATE == 0
    assert env.annotation.file_path == "a1"
    assert env.annotation.data.id == "ann-1"
    assert env.annotation.data.target_text == "This is interesting"
    assert env.annotation.data.timestamp > 1_600_000_000


def test_annotation_action_type_is_field_one():
    env = Envelope()
    env.annotation.type = AnnotationAction.DESCRIPTOR.enum_values_by_name["DELETE"].number
    # field 3 of Envelope, then field 1 (varint 2) of AnnotationAction
    assert encode(env) == b"\x1a\x02\x08\x02"


def test_empty_envelope_has_no_kind():
    assert payload_kind(decode(b"")) is None


@pytest.mark.parametrize("frame", [b"\xff\xff\xff", "text frame"])
def test_garbage_raises_decode_error(frame):
    with pytest.raises(EnvelopeDecodeError):
        decode(frame)
