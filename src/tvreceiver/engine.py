"""Negotiation engine contract and its aiortc implementation.

The orchestrator never awaits engine work.  Every engine operation is
submitted and returns immediately; the outcome arrives later as an
:class:`EngineEvent` tagged with the generation of the session that
requested it.  :class:`AiortcEngine` implements the contract over an
:class:`aiortc.RTCPeerConnection`.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from .types import ConnectionState, EngineEventKind, IceCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineEvent:
    """One asynchronous engine callback.

    :param kind: Which callback this is
    :type kind: EngineEventKind
    :param generation: Generation of the session that owns the engine
    :type generation: int
    :param ok: False when the operation behind the callback failed
    :type ok: bool
    :param sdp: Created answer SDP for ``ANSWER_CREATED``
    :type sdp: Optional[str]
    :param candidate: Local candidate for ``CANDIDATE_GENERATED``
    :type candidate: Optional[IceCandidate]
    :param track: Remote media track for ``TRACK_RECEIVED``
    :type track: Any
    :param state: New state for ``CONNECTION_STATE_CHANGED``
    :type state: Optional[ConnectionState]
    :param error: Failure description when ``ok`` is False
    :type error: Optional[str]
    """
    kind: EngineEventKind
    generation: int
    ok: bool = True
    sdp: Optional[str] = None
    candidate: Optional[IceCandidate] = None
    track: Any = None
    state: Optional[ConnectionState] = None
    error: Optional[str] = None


EventCallback = Callable[[EngineEvent], None]


class NegotiationEngine(ABC):
    """Per-session handle on the media transport engine.

    Implementations must deliver callbacks asynchronously (never from inside
    one of the methods below) and must stop delivering them once
    :meth:`close` has been called.
    """

    generation: int

    @abstractmethod
    def set_remote_description(self, sdp: str) -> None:
        """Apply the remote offer; reports ``REMOTE_DESCRIPTION_SET``."""

    @abstractmethod
    def create_answer(self) -> None:
        """Create a local answer; reports ``ANSWER_CREATED``."""

    @abstractmethod
    def set_local_description(self, sdp: str) -> None:
        """Apply the local answer; reports ``LOCAL_DESCRIPTION_SET``."""

    @abstractmethod
    def add_candidate(self, candidate: IceCandidate) -> None:
        """Add a remote candidate.  Fire-and-forget."""

    @abstractmethod
    def close(self) -> None:
        """Detach callbacks and release the engine in the background."""

    async def aclose(self) -> None:
        """Close and wait for the release to finish."""
        self.close()


EngineFactory = Callable[[int, EventCallback], NegotiationEngine]


def build_configuration(stun_url: Optional[str] = None, turn_url: Optional[str] = None,
                        turn_user: Optional[str] = None,
                        turn_pass: Optional[str] = None) -> RTCConfiguration:
    """Create an :class:`RTCConfiguration` with optional STUN and TURN servers."""
    ice_servers: List[RTCIceServer] = []
    if stun_url:
        ice_servers.append(RTCIceServer(stun_url))
    if turn_url:
        ice_servers.append(RTCIceServer(turn_url, turn_user, turn_pass))
    return RTCConfiguration(iceServers=ice_servers)


def iter_sdp_candidates(sdp: str) -> Iterator[IceCandidate]:
    """Yield the ``a=candidate`` lines of ``sdp`` with their media section."""
    index = -1
    mid = ""
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            index += 1
            mid = str(index)
        elif index < 0:
            continue
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:"):
            yield IceCandidate(candidate=line[2:], sdp_mid=mid, sdp_mline_index=index)


class AiortcEngine(NegotiationEngine):
    """:class:`NegotiationEngine` backed by an aiortc peer connection.

    Operations run one at a time on a worker task so that candidate
    additions keep their order relative to the description operations.
    aiortc gathers candidates during ``setLocalDescription`` instead of
    trickling them; once the local description is applied the gathered
    candidates are reported as ``CANDIDATE_GENERATED`` events.
    """

    def __init__(self, generation: int, emit: EventCallback,
                 configuration: Optional[RTCConfiguration] = None) -> None:
        self.generation = generation
        self._emit: Optional[EventCallback] = emit
        self.pc = RTCPeerConnection(configuration=configuration or build_configuration())
        self._ops: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None

        self.pc.on("track", self._on_track)
        self.pc.on("connectionstatechange", self._on_connection_state)

        self._worker = asyncio.create_task(self._run(), name=f"engine-{generation}")

    # ----------------------
    # Contract
    # ----------------------

    def set_remote_description(self, sdp: str) -> None:
        self._submit(self._set_remote, sdp)

    def create_answer(self) -> None:
        self._submit(self._create_answer)

    def set_local_description(self, sdp: str) -> None:
        self._submit(self._set_local, sdp)

    def add_candidate(self, candidate: IceCandidate) -> None:
        self._submit(self._add_candidate, candidate)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._emit = None
        self._close_task = asyncio.ensure_future(self._release())

    async def aclose(self) -> None:
        self.close()
        if self._close_task:
            await self._close_task

    # ----------------------
    # Worker
    # ----------------------

    def _submit(self, op: Callable[..., Any], *args: Any) -> None:
        if self._closed:
            logger.debug("Engine %d closed, dropping %s", self.generation, op.__name__)
            return
        self._ops.put_nowait((op, args))

    async def _run(self) -> None:
        while True:
            op, args = await self._ops.get()
            await op(*args)

    async def _release(self) -> None:
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        try:
            await self.pc.close()
        except Exception as e:
            logger.debug("Error closing peer connection %d: %s", self.generation, e)
        logger.debug("Engine %d released", self.generation)

    def _dispatch(self, event: EngineEvent) -> None:
        emit = self._emit
        if emit is not None:
            emit(event)

    async def _set_remote(self, sdp: str) -> None:
        kind = EngineEventKind.REMOTE_DESCRIPTION_SET
        try:
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        except Exception as e:
            self._dispatch(EngineEvent(kind, self.generation, ok=False, error=str(e) or type(e).__name__))
            return
        logger.debug("Transceivers after setRemoteDescription: %d", len(self.pc.getTransceivers()))
        self._dispatch(EngineEvent(kind, self.generation))

    async def _create_answer(self) -> None:
        kind = EngineEventKind.ANSWER_CREATED
        try:
            answer = await self.pc.createAnswer()
        except Exception as e:
            self._dispatch(EngineEvent(kind, self.generation, ok=False, error=str(e) or type(e).__name__))
            return
        self._dispatch(EngineEvent(kind, self.generation, sdp=answer.sdp))

    async def _set_local(self, sdp: str) -> None:
        kind = EngineEventKind.LOCAL_DESCRIPTION_SET
        try:
            await self.pc.setLocalDescription(RTCSessionDescription(sdp=sdp, type="answer"))
        except Exception as e:
            self._dispatch(EngineEvent(kind, self.generation, ok=False, error=str(e) or type(e).__name__))
            return
        self._dispatch(EngineEvent(kind, self.generation))
        local = self.pc.localDescription
        if local is None:
            return
        gathered = list(iter_sdp_candidates(local.sdp))
        logger.info("Local description set, %d candidates gathered", len(gathered))
        for candidate in gathered:
            self._dispatch(EngineEvent(EngineEventKind.CANDIDATE_GENERATED, self.generation, candidate=candidate))

    async def _add_candidate(self, candidate: IceCandidate) -> None:
        line = candidate.candidate
        # Handle "candidate:" prefix if present
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        try:
            ice = candidate_from_sdp(line)
            ice.sdpMid = candidate.sdp_mid
            ice.sdpMLineIndex = candidate.sdp_mline_index
            await self.pc.addIceCandidate(ice)
        except Exception as e:
            logger.warning("Failed to add remote candidate %r: %s", candidate.candidate[:50], e)

    # ----------------------
    # Peer connection callbacks
    # ----------------------

    def _on_track(self, track: Any) -> None:
        logger.debug("Track event received: kind=%s", track.kind)
        self._dispatch(EngineEvent(EngineEventKind.TRACK_RECEIVED, self.generation, track=track))

    def _on_connection_state(self) -> None:
        raw = self.pc.connectionState
        logger.info("connectionState -> %s", raw)
        try:
            state = ConnectionState(raw)
        except ValueError:
            logger.debug("Ignoring unknown connection state %r", raw)
            return
        self._dispatch(EngineEvent(EngineEventKind.CONNECTION_STATE_CHANGED, self.generation, state=state))


def aiortc_engine_factory(configuration: Optional[RTCConfiguration] = None) -> EngineFactory:
    """Return an :data:`EngineFactory` creating :class:`AiortcEngine` instances."""

    def factory(generation: int, emit: EventCallback) -> NegotiationEngine:
        return AiortcEngine(generation, emit, configuration)

    return factory


__all__ = [
    "EngineEvent",
    "EventCallback",
    "NegotiationEngine",
    "EngineFactory",
    "AiortcEngine",
    "aiortc_engine_factory",
    "build_configuration",
    "iter_sdp_candidates",
]
