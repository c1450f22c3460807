"""Signaling and negotiation state machine.

:class:`SessionOrchestrator` sits between the control channel and the
negotiation engine.  It owns at most one :class:`Session`, turns inbound
control messages into engine commands, turns engine events into outbound
control messages, and keeps the session state consistent while the two
sides fail independently.

Both entry points, :meth:`SessionOrchestrator.on_control_message` and
:meth:`SessionOrchestrator.on_engine_event`, run to completion under a
single lock and never await.  Engine work is only ever submitted; results
come back later as events tagged with the generation of the session that
asked for them, and events for any other generation are dropped.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import metrics
from .engine import EngineEvent, EngineFactory, NegotiationEngine
from .messages import (
    Answer,
    Candidate,
    ControlMessage,
    Identified,
    Identify,
    Offer,
    PeerStatus,
    Ping,
    Pong,
    type_name,
)
from .types import (
    ConnectionState,
    ConnectivityLost,
    EngineEventKind,
    IceCandidate,
    NegotiationError,
    SessionState,
)

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """The single active negotiation session.

    :param generation: Monotonically increasing session number
    :type generation: int
    :param engine: Engine instance whose lifetime is the session's lifetime
    :type engine: NegotiationEngine
    :param state: Current negotiation state
    :type state: SessionState
    :param remote_description_set: Whether remote candidates may be applied
    :type remote_description_set: bool
    """
    generation: int
    engine: NegotiationEngine
    state: SessionState = SessionState.AWAITING_LOCAL_ANSWER
    remote_description_set: bool = False


class SessionOrchestrator:
    """Drive offer/answer negotiation from control messages and engine events.

    ``channel`` is anything with a non-blocking ``post(message) -> bool``
    and an async ``close()``, normally a
    :class:`~tvreceiver.channel.ControlChannel`.  ``sink`` is anything with
    ``attach(track)``, ``detach()`` and an async ``stop()``, normally a
    :class:`~tvreceiver.sink.VideoSink`.
    """

    def __init__(self, channel: Any, engine_factory: EngineFactory, sink: Optional[Any] = None) -> None:
        """Initialize the orchestrator in the idle state.

        :param channel: Outbound control channel
        :type channel: Any
        :param engine_factory: Creates one engine per session from a
            generation number and the event callback
        :type engine_factory: EngineFactory
        :param sink: Optional presentation sink for received tracks
        :type sink: Optional[Any]
        """
        self.channel = channel
        self.engine_factory = engine_factory
        self.sink = sink
        self._lock = threading.Lock()
        self._session: Optional[Session] = None
        self._generation = 0
        self._closed = False
        self._pending: List[IceCandidate] = []

        self._message_handlers: Dict[type, Callable[[Any], None]] = {
            Identify: self._on_unexpected,
            Identified: self._on_identified,
            Ping: self._on_ping,
            Pong: self._on_unexpected,
            Offer: self._on_offer,
            Answer: self._on_unexpected,
            Candidate: self._on_candidate,
            PeerStatus: self._on_peer_status,
        }
        self._event_handlers: Dict[EngineEventKind, Callable[[Session, EngineEvent], None]] = {
            EngineEventKind.REMOTE_DESCRIPTION_SET: self._on_remote_description_set,
            EngineEventKind.ANSWER_CREATED: self._on_answer_created,
            EngineEventKind.LOCAL_DESCRIPTION_SET: self._on_local_description_set,
            EngineEventKind.CANDIDATE_GENERATED: self._on_candidate_generated,
            EngineEventKind.TRACK_RECEIVED: self._on_track_received,
            EngineEventKind.CONNECTION_STATE_CHANGED: self._on_connection_state_changed,
        }

    # ----------------------
    # Introspection
    # ----------------------

    @property
    def state(self) -> SessionState:
        """Current state; IDLE when no session exists."""
        with self._lock:
            if self._closed:
                return SessionState.CLOSED
            return self._session.state if self._session else SessionState.IDLE

    @property
    def generation(self) -> Optional[int]:
        """Generation of the active session, or None."""
        with self._lock:
            return self._session.generation if self._session else None

    @property
    def pending_candidates(self) -> List[IceCandidate]:
        """Snapshot of the buffered remote candidates in arrival order."""
        with self._lock:
            return list(self._pending)

    # ----------------------
    # Entry points
    # ----------------------

    def on_control_message(self, msg: ControlMessage) -> None:
        """Process one inbound control message.  Never suspends.

        :param msg: Decoded message from the control channel
        :type msg: ControlMessage
        :return: None
        :rtype: None
        """
        with self._lock:
            if self._closed:
                logger.debug("Closed, ignoring inbound %s", type_name(msg))
                return
            self._message_handlers[type(msg)](msg)

    def on_engine_event(self, event: EngineEvent) -> None:
        """Process one engine callback.

        Events whose generation does not match the active session belong to
        a session that has already been torn down and are discarded.

        :param event: Callback delivered by the engine
        :type event: EngineEvent
        :return: None
        :rtype: None
        """
        with self._lock:
            if self._closed:
                return
            session = self._session
            if session is None or event.generation != session.generation:
                logger.debug(
                    "Discarding stale %s for generation %d (current %s)",
                    event.kind.value, event.generation,
                    session.generation if session else None,
                )
                return
            self._event_handlers[event.kind](session, event)

    async def shutdown(self) -> None:
        """Close the active session and the control channel.

        Idempotent.  Once the closed flag is set no further message or
        engine callback is processed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            session, self._session = self._session, None
            self._pending.clear()
        logger.info("Releasing receiver")
        if session:
            await session.engine.aclose()
        if self.sink:
            await self.sink.stop()
        await self.channel.close()

    # ----------------------
    # Control messages
    # ----------------------

    def _send(self, msg: ControlMessage) -> None:
        self.channel.post(msg)

    def _on_ping(self, msg: Ping) -> None:
        self._send(Pong())

    def _on_identified(self, msg: Identified) -> None:
        logger.info("Server acknowledged identify")

    def _on_peer_status(self, msg: PeerStatus) -> None:
        logger.info("Peer status: %s", msg.status)

    def _on_unexpected(self, msg: ControlMessage) -> None:
        logger.debug("Ignoring unexpected inbound %s", type_name(msg))

    def _on_offer(self, msg: Offer) -> None:
        if self._session is not None:
            logger.info(
                "New offer replaces session %d in state %s",
                self._session.generation, self._session.state.value,
            )
            self._teardown()

        self._generation += 1
        generation = self._generation
        try:
            engine = self.engine_factory(generation, self.on_engine_event)
        except Exception as e:
            err = NegotiationError(f"engine creation failed: {e}")
            logger.error("Session %d: %s", generation, err, extra={"generation": generation})
            metrics.negotiation_failures.labels("create").inc()
            return

        self._session = Session(generation, engine)
        metrics.negotiations_started.inc()
        logger.info("Received offer, starting session %d", generation, extra={"generation": generation})
        engine.set_remote_description(msg.sdp)

    def _on_candidate(self, msg: Candidate) -> None:
        session = self._session
        if session is None or not session.remote_description_set:
            self._pending.append(msg.candidate)
            logger.debug("Buffered remote candidate (%d pending)", len(self._pending))
            return
        session.engine.add_candidate(msg.candidate)

    # ----------------------
    # Engine events
    # ----------------------

    def _on_remote_description_set(self, session: Session, event: EngineEvent) -> None:
        if session.state is not SessionState.AWAITING_LOCAL_ANSWER:
            logger.debug("Ignoring remote description result in state %s", session.state.value)
            return
        if not event.ok:
            self._fail(session, "remote-description", event.error)
            return
        session.remote_description_set = True
        pending, self._pending = self._pending, []
        if pending:
            logger.info("Applying %d buffered remote candidates", len(pending))
        for candidate in pending:
            session.engine.add_candidate(candidate)
        session.state = SessionState.NEGOTIATING
        logger.info("Remote offer set, creating answer", extra={"generation": session.generation})
        session.engine.create_answer()

    def _on_answer_created(self, session: Session, event: EngineEvent) -> None:
        if session.state is not SessionState.NEGOTIATING:
            logger.debug("Ignoring answer in state %s", session.state.value)
            return
        if not event.ok or not event.sdp:
            self._fail(session, "create-answer", event.error or "empty answer")
            return
        session.engine.set_local_description(event.sdp)
        self._send(Answer(event.sdp))
        logger.info("Answer sent", extra={"generation": session.generation})

    def _on_local_description_set(self, session: Session, event: EngineEvent) -> None:
        if not event.ok:
            self._fail(session, "local-description", event.error)
            return
        logger.debug("Local answer applied", extra={"generation": session.generation})

    def _on_candidate_generated(self, session: Session, event: EngineEvent) -> None:
        if event.candidate is None:
            logger.debug("Candidate gathering complete")
            return
        self._send(Candidate(event.candidate))

    def _on_track_received(self, session: Session, event: EngineEvent) -> None:
        if self.sink is None:
            logger.info("Track received with no sink attached")
            return
        self.sink.attach(event.track)

    def _on_connection_state_changed(self, session: Session, event: EngineEvent) -> None:
        state = event.state
        if state is ConnectionState.CONNECTED:
            if session.state is not SessionState.CONNECTED:
                session.state = SessionState.CONNECTED
                logger.info("Session %d connected", session.generation, extra={"generation": session.generation})
        elif state in (ConnectionState.FAILED, ConnectionState.DISCONNECTED):
            err = ConnectivityLost(f"connection {state.value}")
            logger.warning(
                "Session %d: %s in state %s, returning to idle",
                session.generation, err, session.state.value,
                extra={"generation": session.generation},
            )
            metrics.connectivity_lost.inc()
            self._teardown()
        else:
            logger.debug("Session %d connection state %s", session.generation, state.value if state else None)

    # ----------------------
    # Teardown
    # ----------------------

    def _fail(self, session: Session, stage: str, error: Optional[str]) -> None:
        err = NegotiationError(f"{stage} failed: {error}")
        logger.error("Session %d: %s", session.generation, err, extra={"generation": session.generation})
        metrics.negotiation_failures.labels(stage).inc()
        self._teardown()

    def _teardown(self) -> None:
        """Drop the active session and any candidates buffered for it."""
        session, self._session = self._session, None
        self._pending.clear()
        if session is None:
            return
        session.engine.close()
        if self.sink:
            self.sink.detach()


__all__ = ["Session", "SessionOrchestrator"]
