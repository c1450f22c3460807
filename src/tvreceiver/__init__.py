"""TV receiver package.

A receiver-side WebRTC endpoint: it identifies itself to a signaling
server, answers offers through aiortc and renders the received video.

Main exports:
    ControlChannel: WebSocket connection to the signaling server
    SessionOrchestrator: offer/answer and candidate state machine
    AiortcEngine: negotiation engine backed by aiortc
    VideoSink: consumer for received tracks
"""

from .channel import ControlChannel
from .config import Settings
from .engine import AiortcEngine, EngineEvent, NegotiationEngine, aiortc_engine_factory
from .messages import decode, encode
from .orchestrator import Session, SessionOrchestrator
from .sink import VideoSink
from .types import (
    ChannelClosed,
    ConnectivityLost,
    Identity,
    IceCandidate,
    MalformedMessage,
    NegotiationError,
    SessionState,
)

__all__ = [
    "ControlChannel",
    "Settings",
    "AiortcEngine",
    "EngineEvent",
    "NegotiationEngine",
    "aiortc_engine_factory",
    "decode",
    "encode",
    "Session",
    "SessionOrchestrator",
    "VideoSink",
    "ChannelClosed",
    "ConnectivityLost",
    "Identity",
    "IceCandidate",
    "MalformedMessage",
    "NegotiationError",
    "SessionState",
]
