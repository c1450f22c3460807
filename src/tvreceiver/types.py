"""Shared types and error classes for the TV receiver.

This module defines the receiver identity, session and engine state
enumerations, the connectivity candidate record and the error taxonomy
used across the signaling and negotiation layers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ----------------------
# Error taxonomy
# ----------------------

class ReceiverError(Exception):
    """Base class for all receiver errors."""


class ChannelClosed(ReceiverError):
    """A message was sent while the control channel had no live connection."""


class MalformedMessage(ReceiverError):
    """An inbound frame could not be decoded into a control message."""


class NegotiationError(ReceiverError):
    """The negotiation engine reported a failure at some negotiation step."""


class ConnectivityLost(ReceiverError):
    """The engine connection state became failed or disconnected."""


# ----------------------
# Data types
# ----------------------

@dataclass(frozen=True)
class Identity:
    """Receiver identity announced in the identify handshake.

    :param tv_id: Non-empty receiver identifier
    :type tv_id: str
    :param name: Optional human readable display name
    :type name: Optional[str]
    """
    tv_id: str
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.tv_id, str) or not self.tv_id:
            raise ValueError("Identity.tv_id must be a non-empty string")


@dataclass(frozen=True)
class IceCandidate:
    """Connectivity candidate as exchanged on the wire.

    :param candidate: ICE candidate string, usually ``candidate:...``
    :type candidate: str
    :param sdp_mid: SDP media ID
    :type sdp_mid: str
    :param sdp_mline_index: SDP media line index
    :type sdp_mline_index: int
    """
    candidate: str
    sdp_mid: str
    sdp_mline_index: int


class SessionState(Enum):
    """Negotiation session states tracked by the orchestrator."""
    IDLE = "idle"
    AWAITING_LOCAL_ANSWER = "awaiting-local-answer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class ConnectionState(Enum):
    """Engine peer connection states."""
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class EngineEventKind(Enum):
    """Kinds of asynchronous callbacks emitted by a negotiation engine."""
    REMOTE_DESCRIPTION_SET = "remote-description-set"
    LOCAL_DESCRIPTION_SET = "local-description-set"
    ANSWER_CREATED = "answer-created"
    CANDIDATE_GENERATED = "candidate-generated"
    TRACK_RECEIVED = "track-received"
    CONNECTION_STATE_CHANGED = "connection-state-changed"


__all__ = [
    "ReceiverError",
    "ChannelClosed",
    "MalformedMessage",
    "NegotiationError",
    "ConnectivityLost",
    "Identity",
    "IceCandidate",
    "SessionState",
    "ConnectionState",
    "EngineEventKind",
]
