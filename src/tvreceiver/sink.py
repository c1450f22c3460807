"""Presentation sink for received media tracks.

:class:`VideoSink` stands in for the rendering surface: it reads frames
from the remote video track in a background task, keeps the most recent
one as a Pillow image and can optionally record the incoming media to a
file.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any, Optional, Tuple

from aiortc.contrib.media import MediaBlackhole, MediaRecorder
from PIL import Image

from . import metrics
from .utils import safe_mkdir

logger = logging.getLogger(__name__)


class VideoSink:
    """Consumes remote tracks handed over by the orchestrator.

    Video tracks are read frame by frame; the latest decoded frame is kept
    for :meth:`get` and :meth:`save_snapshot`.  Audio tracks are drained so
    the engine does not buffer them indefinitely.  When ``record_path`` is
    given every attached track is also fed to a
    :class:`~aiortc.contrib.media.MediaRecorder`.
    """

    def __init__(self, record_path: Optional[str] = None) -> None:
        """Initialize the sink.

        :param record_path: Optional file to record received media into
        :type record_path: Optional[str]
        """
        self.record_path = record_path
        self.image: Optional[Image.Image] = None
        self.frame_count = 0
        self.frame_event = asyncio.Event()
        self._lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task] = None
        self._blackhole: Optional[MediaBlackhole] = None
        self._recorder: Optional[MediaRecorder] = None
        self._recorder_started = False
        self._pending: set = set()

    @property
    def frame_size(self) -> Tuple[int, int]:
        """Size of the latest frame as (width, height), (0, 0) before any."""
        return self.image.size if self.image else (0, 0)

    def attach(self, track: Any) -> None:
        """Start consuming ``track``.  Never blocks.

        :param track: Remote :class:`aiortc.MediaStreamTrack`
        :type track: Any
        """
        if track.kind == "video":
            logger.info("Remote video track received")
            if self._reader and not self._reader.done():
                self._reader.cancel()
            self._reader = asyncio.create_task(self._read_frames(track), name="sink-video")
        else:
            logger.info("Remote %s track received, draining", track.kind)
            if self._blackhole is None:
                self._blackhole = MediaBlackhole()
            self._blackhole.addTrack(track)
            self._spawn(self._blackhole.start())
        if self.record_path:
            if self._recorder is None:
                safe_mkdir(Path(self.record_path).parent)
                self._recorder = MediaRecorder(self.record_path)
            self._recorder.addTrack(track)
            if not self._recorder_started:
                self._recorder_started = True
                self._spawn(self._recorder.start())

    def detach(self) -> None:
        """Stop consuming the current tracks.  Never blocks.

        Tracks attached after this call belong to a new set of consumers and
        are not affected by the release of the old ones.
        """
        self._spawn(self._release(*self._take()))

    async def stop(self) -> None:
        """Stop reading, recording and draining; keeps the last frame."""
        await self._release(*self._take())

    def _take(self) -> Tuple[Optional[asyncio.Task], Optional[MediaBlackhole], Optional[MediaRecorder]]:
        taken = (self._reader, self._blackhole, self._recorder)
        self._reader = self._blackhole = self._recorder = None
        self._recorder_started = False
        return taken

    async def _release(
        self,
        reader: Optional[asyncio.Task],
        blackhole: Optional[MediaBlackhole],
        recorder: Optional[MediaRecorder],
    ) -> None:
        if reader and not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if blackhole:
            await blackhole.stop()
        if recorder:
            try:
                await recorder.stop()
            except Exception as e:
                logger.warning("Failed to finalize recording %s: %s", self.record_path, e)

    async def get(self) -> Optional[Image.Image]:
        """Return a copy of the latest frame, or None before the first frame."""
        async with self._lock:
            return self.image.copy() if self.image else None

    async def wait_for_frame(self, timeout: float = 5.0) -> Optional[Image.Image]:
        """Wait for the next frame.

        :param timeout: Maximum time to wait in seconds
        :type timeout: float
        :return: The frame or None if timeout
        :rtype: Optional[Image.Image]
        """
        try:
            await asyncio.wait_for(self.frame_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self.frame_event.clear()
        return await self.get()

    async def save_snapshot(self, path: str) -> bool:
        """Write the latest frame to ``path``; False when there is none yet."""
        img = await self.get()
        if img is None:
            return False
        safe_mkdir(Path(path).parent)
        img.save(path)
        return True

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _read_frames(self, track: Any) -> None:
        try:
            while True:
                frame = await track.recv()
                try:
                    img = frame.to_image().convert("RGB")
                except Exception as e:
                    logger.warning("Frame conversion failed: %s", e)
                    continue
                async with self._lock:
                    self.image = img
                    self.frame_count += 1
                self.frame_event.set()
                metrics.frames_received.inc()
        except Exception as e:
            # MediaStreamError once the remote track ends
            logger.info("Video track ended: %s", e or type(e).__name__)


__all__ = ["VideoSink"]
