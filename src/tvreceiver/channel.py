"""Control channel to the signaling server.

:class:`ControlChannel` keeps one WebSocket connection to a fixed signaling
URL.  It identifies the receiver on every successful connection, decodes
inbound frames and hands them to a callback in arrival order, and writes
outbound messages from a background send loop.  Reconnection is left to
the caller: :meth:`ControlChannel.connect` tries exactly once, and
:meth:`ControlChannel.connect_with_backoff` is the opt-in retry policy.
"""

import asyncio
import contextlib
import logging
import random
from typing import Any, Callable, Optional, Set, Tuple

import websockets
from websockets.protocol import State

from . import metrics
from .messages import ControlMessage, Identify, decode, encode, type_name
from .types import ChannelClosed, Identity, MalformedMessage
from .utils import redact_url

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ControlMessage], None]


class ControlChannel:
    """WebSocket client for the receiver's signaling protocol.

    Each received text frame is decoded with :func:`tvreceiver.messages.decode`
    and passed synchronously to ``on_message``; malformed frames are logged
    and dropped without closing the connection.
    """

    def __init__(self, url: str, identity: Identity,
                 on_message: Optional[MessageCallback] = None, **wsopts: Any) -> None:
        """Initialize the channel without connecting.

        :param url: Signaling endpoint, ``ws://`` or ``wss://``
        :type url: str
        :param identity: Receiver identity sent in the identify handshake
        :type identity: Identity
        :param on_message: Callback receiving each decoded inbound message
        :type on_message: Optional[MessageCallback]
        :param wsopts: Additional WebSocket connection options
        :type wsopts: Any
        """
        self.url = url
        self.identity = identity
        self.on_message = on_message
        self.wsopts = dict(
            ping_interval=30,
            ping_timeout=60,
            max_queue=1024,
            max_size=10_000_000,
            **wsopts
        )
        self.ws: Optional[Any] = None
        self._tasks: Set[asyncio.Task] = set()
        self._sendq: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = asyncio.Event()
        self._closed.set()
        self._shutdown = False

    # ----------------------
    # Lifecycle
    # ----------------------

    async def connect(self) -> "ControlChannel":
        """Open the connection once and send the identify message.

        :return: Self for method chaining.
        :rtype: ControlChannel
        :raises ConnectionError: If the socket cannot be opened or the
            identify message cannot be written.
        :raises ChannelClosed: If the channel has already been closed.
        """
        if self._shutdown:
            raise ChannelClosed("channel has been closed")
        await self._cleanup_tasks()
        stale, self.ws = self.ws, None
        if stale:
            with contextlib.suppress(Exception):
                await stale.close()
        safe_url = redact_url(self.url)
        try:
            ws = await websockets.connect(self.url, **self.wsopts)
        except Exception as e:
            logger.error("WS connect error for %s: %s", safe_url, e)
            raise ConnectionError(f"failed to connect to {safe_url}: {e}") from e

        try:
            await ws.send(encode(Identify(self.identity)))
        except websockets.ConnectionClosed as e:
            logger.error("WS closed before identify: %s", e)
            raise ConnectionError(f"connection to {safe_url} closed during identify") from e
        metrics.messages_sent.labels("identify").inc()
        logger.info("WebSocket connected: %s, sent identify tvId=%s", safe_url, self.identity.tv_id)

        self.ws = ws
        self._loop = asyncio.get_running_loop()
        self._sendq = asyncio.Queue(maxsize=256)
        self._closed.clear()
        self._tasks.add(asyncio.create_task(self._read_loop(ws), name="ws-read"))
        self._tasks.add(asyncio.create_task(self._send_loop(ws, self._sendq), name="ws-send"))
        return self

    async def connect_with_backoff(self) -> "ControlChannel":
        """Call :meth:`connect` until it succeeds or the channel is closed.

        Delays grow exponentially from one second up to thirty, with jitter.

        :return: Self for method chaining.
        :rtype: ControlChannel
        """
        backoff = 1
        while not self._shutdown:
            try:
                return await self.connect()
            except ConnectionError:
                metrics.reconnects.inc()
                jitter = random.uniform(0, max(0.25, backoff * 0.25))
                delay = min(backoff + jitter, 30)
                logger.info("Retrying signaling connection in %.2fs", delay)
                await asyncio.sleep(delay)
                backoff = min(backoff * 2, 30)
        return self

    async def close(self) -> None:
        """Close the connection.  Idempotent, safe when never connected."""
        self._shutdown = True
        self._closed.set()
        await self._cleanup_tasks()
        ws, self.ws = self.ws, None
        if ws:
            with contextlib.suppress(Exception):
                await ws.close()
            logger.info("WebSocket closed")

    async def wait_closed(self) -> None:
        """Wait until the current connection is gone."""
        await self._closed.wait()

    def is_connected(self) -> bool:
        """Check if the WebSocket connection is active.

        :return: True if connected, False otherwise.
        :rtype: bool
        """
        return self.ws is not None and self._ws_is_open() and not self._closed.is_set()

    # ----------------------
    # Outbound
    # ----------------------

    def send(self, msg: ControlMessage) -> None:
        """Queue ``msg`` for transmission.  Never blocks.

        :param msg: Message to transmit
        :type msg: ControlMessage
        :raises ChannelClosed: If there is no live connection.
        """
        if not self.is_connected() or self._sendq is None or self._loop is None:
            raise ChannelClosed(f"cannot send {type_name(msg)}: not connected")
        item = (type_name(msg), encode(msg))
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(self._sendq, item)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, self._sendq, item)

    def post(self, msg: ControlMessage) -> bool:
        """Fire-and-forget :meth:`send`; a closed channel is logged, not raised.

        :return: True if the message was queued.
        :rtype: bool
        """
        try:
            self.send(msg)
        except ChannelClosed as e:
            metrics.messages_dropped.inc()
            logger.warning("Dropping outbound message: %s", e)
            return False
        return True

    @staticmethod
    def _enqueue(queue: asyncio.Queue, item: Tuple[str, str]) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            metrics.messages_dropped.inc()
            logger.warning("Send queue full, dropping %s", item[0])

    # ----------------------
    # Background loops
    # ----------------------

    async def _cleanup_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _deliver(self, raw: Any) -> None:
        try:
            msg = decode(raw)
        except MalformedMessage as e:
            metrics.malformed_messages.inc()
            logger.warning("Dropping malformed frame: %s", e)
            return
        if msg is None:
            metrics.messages_received.labels("unknown").inc()
            logger.debug("Ignoring message of unknown type: %.200r", raw)
            return
        kind = type_name(msg)
        metrics.messages_received.labels(kind).inc()
        logger.debug("WS received: %s", kind)
        if self.on_message is None:
            return
        try:
            self.on_message(msg)
        except Exception:
            logger.exception("Error handling inbound %s", kind)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._deliver(raw)
            logger.warning("WS closed by server")
        except websockets.ConnectionClosed as e:
            logger.warning("WS closed: %s", e)
        except asyncio.CancelledError:
            logger.debug("WS read loop cancelled")
            raise
        finally:
            self._closed.set()

    async def _send_loop(self, ws: Any, queue: asyncio.Queue) -> None:
        try:
            while True:
                kind, data = await queue.get()
                try:
                    await ws.send(data)
                except websockets.ConnectionClosed:
                    metrics.messages_dropped.inc()
                    logger.warning("Send of %s failed: WS closed", kind)
                    break
                metrics.messages_sent.labels(kind).inc()
        except asyncio.CancelledError:
            logger.debug("WS send loop cancelled")
            raise
        finally:
            self._closed.set()

    def _ws_is_open(self) -> bool:
        """Return True when the underlying WebSocket connection is open."""
        if not self.ws:
            return False

        state = getattr(self.ws, "state", None)
        if state is not None:
            return state == State.OPEN

        closed = getattr(self.ws, "closed", None)
        if closed is not None:
            return not closed

        return True


__all__ = ["ControlChannel", "MessageCallback"]
