"""Wire envelope for the companion daemon's control channel.

The daemon speaks protobuf over binary websocket frames.  The message types
are declared below as a descriptor and materialised with the protobuf
runtime, so no generated ``_pb2`` module is needed::

    message KeepAlive        { int64 timestamp = 1; }
    message OpenViewRequest  { string asset_id = 1; string url = 2;
                               FileType file_type = 3; string title = 4;
                               enum FileType { IMAGE = 0; MARKDOWN = 1; } }
    message AnnotationData   { string id = 1; string context_hash = 2;
                               string target_text = 3; string body = 4;
                               int64 timestamp = 5; }
    message AnnotationAction { Type type = 1; string file_path = 2;
                               AnnotationData data = 3;
                               enum Type { CREATE = 0; UPDATE = 1; DELETE = 2; } }
    message Envelope {
        oneof payload {
            KeepAlive ping = 1;
            OpenViewRequest open_view = 2;
            AnnotationAction annotation = 3;
        }
    }
"""

from __future__ import annotations

import time
import uuid
from typing import Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, Message

from muxlink.models import now_ms

_PACKAGE = "zelland"

_F = descriptor_pb2.FieldDescriptorProto


def _field(msg, name: str, number: int, ftype: int, type_name: str = "", oneof: Optional[int] = None):
    f = msg.field.add()
    f.name = name
    f.number = number
    f.type = ftype
    f.label = _F.LABEL_OPTIONAL
    if type_name:
        f.type_name = f".{_PACKAGE}.{type_name}"
    if oneof is not None:
        f.oneof_index = oneof
    return f


def _build_pool() -> descriptor_pool.DescriptorPool:
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = "zelland/envelope.proto"
    fdp.package = _PACKAGE
    fdp.syntax = "proto3"

    keep_alive = fdp.message_type.add(name="KeepAlive")
    _field(keep_alive, "timestamp", 1, _F.TYPE_INT64)

    open_view = fdp.message_type.add(name="OpenViewRequest")
    file_type = open_view.enum_type.add(name="FileType")
    file_type.value.add(name="IMAGE", number=0)
    file_type.value.add(name="MARKDOWN", number=1)
    _field(open_view, "asset_id", 1, _F.TYPE_STRING)
    _field(open_view, "url", 2, _F.TYPE_STRING)
    _field(open_view, "file_type", 3, _F.TYPE_ENUM, "OpenViewRequest.FileType")
    _field(open_view, "title", 4, _F.TYPE_STRING)

    annotation = fdp.message_type.add(name="AnnotationData")
    _field(annotation, "id", 1, _F.TYPE_STRING)
    _field(annotation, "context_hash", 2, _F.TYPE_STRING)
    _field(annotation, "target_text", 3, _F.TYPE_STRING)
    _field(annotation, "body", 4, _F.TYPE_STRING)
    _field(annotation, "timestamp", 5, _F.TYPE_INT64)

    action = fdp.message_type.add(name="AnnotationAction")
    action_type = action.enum_type.add(name="Type")
    for number, name in enumerate(("CREATE", "UPDATE", "DELETE")):
        action_type.value.add(name=name, number=number)
    _field(action, "type", 1, _F.TYPE_ENUM, "AnnotationAction.Type")
    _field(action, "file_path", 2, _F.TYPE_STRING)
    _field(action, "data", 3, _F.TYPE_MESSAGE, "AnnotationData")

    envelope = fdp.message_type.add(name="Envelope")
    envelope.oneof_decl.add(name="payload")
    _field(envelope, "ping", 1, _F.TYPE_MESSAGE, "KeepAlive", oneof=0)
    _field(envelope, "open_view", 2, _F.TYPE_MESSAGE, "OpenViewRequest", oneof=0)
    _field(envelope, "annotation", 3, _F.TYPE_MESSAGE, "AnnotationAction", oneof=0)

    pool = descriptor_pool.DescriptorPool()
    pool.Add(fdp)
    return pool


_POOL = _build_pool()


def _message_class(name: str) -> type[Message]:
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}"))


KeepAlive = _message_class("KeepAlive")
OpenViewRequest = _message_class("OpenViewRequest")
AnnotationData = _message_class("AnnotationData")
AnnotationAction = _message_class("AnnotationAction")
Envelope = _message_class("Envelope")

ANNOTATION_CREATE = AnnotationAction.DESCRIPTOR.enum_values_by_name["CREATE"].number


class EnvelopeDecodeError(ValueError):
    pass


def encode(envelope: Message) -> bytes:
    return envelope.SerializeToString()


def decode(data: bytes) -> Message:
    if isinstance(data, str):
        raise EnvelopeDecodeError("text frame where a binary envelope was expected")
    envelope = Envelope()
    try:
        envelope.ParseFromString(data)
    except DecodeError as exc:
        raise EnvelopeDecodeError(str(exc)) from exc
    return envelope


def payload_kind(envelope: Message) -> Optional[str]:
    """``"ping"``, ``"open_view"``, ``"annotation"`` or None for an empty envelope."""
    return envelope.WhichOneof("payload")


def is_ping(envelope: Message) -> bool:
    return payload_kind(envelope) == "ping"


def ping_envelope(timestamp_ms: Optional[int] = None) -> Message:
    envelope = Envelope()
    envelope.ping.SetInParent()
    envelope.ping.timestamp = now_ms() if timestamp_ms is None else timestamp_ms
    return envelope


def open_view_envelope(asset_id: str, url: str, title: str = "", markdown: bool = False) -> Message:
    envelope = Envelope()
    envelope.open_view.asset_id = asset_id
    envelope.open_view.url = url
    envelope.open_view.title = title
    envelope.open_view.file_type = 1 if markdown else 0
    return envelope


def annotation_envelope(
    file_path: str,
    body: str,
    target_text: str = "",
    context_hash: str = "",
    annotation_id: Optional[str] = None,
) -> Message:
    """A CREATE annotation for *file_path* (the daemon accepts an asset id here too).

    The annotation timestamp is in seconds, unlike the ping's milliseconds.
    """
    envelope = Envelope()
    action = envelope.annotation
    action.type = ANNOTATION_CREATE
    action.file_path = file_path
    action.data.id = annotation_id or f"ann-{uuid.uuid4().hex[:12]}"
    action.data.target_text = target_text
    action.data.context_hash = context_hash
    action.data.body = body
    action.data.timestamp = int(time.time())
    return envelope
