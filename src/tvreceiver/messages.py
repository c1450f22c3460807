"""Control message types and their JSON wire codec.

Every frame on the signaling socket is one JSON object whose ``type`` field
selects the message kind.  :func:`decode` turns a raw frame into one of the
dataclasses below (or ``None`` for message types this receiver does not
know), and :func:`encode` produces the wire form of a message.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type, Union

from .types import IceCandidate, Identity, MalformedMessage


@dataclass(frozen=True)
class Identify:
    identity: Identity


@dataclass(frozen=True)
class Identified:
    pass


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class Offer:
    sdp: str


@dataclass(frozen=True)
class Answer:
    sdp: str


@dataclass(frozen=True)
class Candidate:
    candidate: IceCandidate


@dataclass(frozen=True)
class PeerStatus:
    status: str


ControlMessage = Union[Identify, Identified, Ping, Pong, Offer, Answer, Candidate, PeerStatus]

# Closed set of message classes, keyed by their wire ``type``.
MESSAGE_TYPES: Dict[str, Type[Any]] = {
    "identify": Identify,
    "identified": Identified,
    "ping": Ping,
    "pong": Pong,
    "offer": Offer,
    "answer": Answer,
    "candidate": Candidate,
    "peer-status": PeerStatus,
}

_TYPE_NAMES = {cls: name for name, cls in MESSAGE_TYPES.items()}


def type_name(msg: ControlMessage) -> str:
    """Return the wire ``type`` of ``msg``."""
    return _TYPE_NAMES[type(msg)]


# ----------------------
# Encoding
# ----------------------

def to_dict(msg: ControlMessage) -> Dict[str, Any]:
    """Return the JSON-compatible dict for ``msg``."""
    data: Dict[str, Any] = {"type": type_name(msg)}
    if isinstance(msg, Identify):
        payload = {"tvId": msg.identity.tv_id, "name": msg.identity.name or ""}
        data["from"] = "tv"
        data["payload"] = payload
    elif isinstance(msg, (Offer, Answer)):
        data["sdp"] = msg.sdp
    elif isinstance(msg, Candidate):
        data["sdpMid"] = msg.candidate.sdp_mid
        data["sdpMLineIndex"] = msg.candidate.sdp_mline_index
        data["candidate"] = msg.candidate.candidate
    elif isinstance(msg, PeerStatus):
        data["status"] = msg.status
    return data


def encode(msg: ControlMessage) -> str:
    """Serialize ``msg`` to its wire form."""
    return json.dumps(to_dict(msg), ensure_ascii=False)


# ----------------------
# Decoding
# ----------------------

def _require_str(data: Dict[str, Any], key: str, *, non_empty: bool = True) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise MalformedMessage(f"'{key}' must be a string, got {type(value).__name__}")
    if non_empty and not value:
        raise MalformedMessage(f"'{key}' must not be empty")
    return value


def _decode_identify(data: Dict[str, Any]) -> Identify:
    payload = data.get("payload")
    if not isinstance(payload, dict):
        raise MalformedMessage("'payload' must be an object")
    name = payload.get("name")
    if name is not None and not isinstance(name, str):
        raise MalformedMessage("'payload.name' must be a string")
    return Identify(Identity(_require_str(payload, "tvId"), name))


def _decode_candidate(data: Dict[str, Any]) -> Candidate:
    index = data.get("sdpMLineIndex")
    # bool is an int subclass; reject it explicitly
    if not isinstance(index, int) or isinstance(index, bool):
        raise MalformedMessage("'sdpMLineIndex' must be an integer")
    if index < 0:
        raise MalformedMessage("'sdpMLineIndex' must be non-negative")
    return Candidate(IceCandidate(
        candidate=_require_str(data, "candidate"),
        sdp_mid=_require_str(data, "sdpMid", non_empty=False),
        sdp_mline_index=index,
    ))


def _decode_peer_status(data: Dict[str, Any]) -> PeerStatus:
    status = data.get("status", "")
    if not isinstance(status, str):
        raise MalformedMessage("'status' must be a string")
    return PeerStatus(status)


_DECODERS: Dict[str, Callable[[Dict[str, Any]], ControlMessage]] = {
    "identify": _decode_identify,
    "identified": lambda data: Identified(),
    "ping": lambda data: Ping(),
    "pong": lambda data: Pong(),
    "offer": lambda data: Offer(_require_str(data, "sdp")),
    "answer": lambda data: Answer(_require_str(data, "sdp")),
    "candidate": _decode_candidate,
    "peer-status": _decode_peer_status,
}


def decode(raw: Union[str, bytes]) -> Optional[ControlMessage]:
    """Parse one wire frame.

    :param raw: Text (or UTF-8 bytes) frame received from the socket
    :type raw: Union[str, bytes]
    :return: The decoded message, or None when ``type`` is not one this
        receiver understands.
    :rtype: Optional[ControlMessage]
    :raises MalformedMessage: If the frame is not a JSON object, lacks a
        string ``type``, or a known type is missing or mistyping a field.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"frame is not valid UTF-8: {e}") from e
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"frame is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage("frame is not a JSON object")
    kind = data.get("type")
    if not isinstance(kind, str):
        raise MalformedMessage("missing or non-string 'type'")
    decoder = _DECODERS.get(kind)
    if decoder is None:
        return None
    return decoder(data)


__all__ = [
    "Identify",
    "Identified",
    "Ping",
    "Pong",
    "Offer",
    "Answer",
    "Candidate",
    "PeerStatus",
    "ControlMessage",
    "MESSAGE_TYPES",
    "type_name",
    "to_dict",
    "encode",
    "decode",
]
