import asyncio

import pytest
from aiortc import AudioStreamTrack, VideoStreamTrack

from tvreceiver.sink import VideoSink


@pytest.mark.asyncio
async def test_video_frames_are_kept(tmp_path):
    sink = VideoSink()
    assert await sink.get() is None
    assert await sink.save_snapshot(str(tmp_path / "none.png")) is False

    sink.attach(VideoStreamTrack())
    try:
        img = await sink.wait_for_frame(timeout=5)
        assert img is not None
        assert sink.frame_size == img.size
        assert sink.frame_count >= 1

        target = tmp_path / "shots" / "latest.png"
        assert await sink.save_snapshot(str(target)) is True
        assert target.exists()
    finally:
        await sink.stop()


@pytest.mark.asyncio
async def test_detach_stops_reading():
    sink = VideoSink()
    sink.attach(VideoStreamTrack())
    sink.attach(AudioStreamTrack())
    assert await sink.wait_for_frame(timeout=5) is not None

    sink.detach()
    await asyncio.sleep(0.1)
    count = sink.frame_count
    await asyncio.sleep(0.2)
    assert sink.frame_count == count
    assert sink.image is not None


@pytest.mark.asyncio
async def test_wait_for_frame_times_out():
    sink = VideoSink()
    assert await sink.wait_for_frame(timeout=0.05) is None


@pytest.mark.asyncio
async def test_attach_right_after_detach_keeps_new_tracks():
    sink = VideoSink()
    sink.attach(VideoStreamTrack())
    sink.attach(AudioStreamTrack())
    assert await sink.wait_for_frame(timeout=5) is not None

    sink.detach()
    await asyncio.sleep(0)
    sink.attach(VideoStreamTrack())
    sink.attach(AudioStreamTrack())
    try:
        await asyncio.sleep(0.3)
        assert sink._reader is not None and not sink._reader.done()
        assert sink._blackhole is not None
        count = sink.frame_count
        assert await sink.wait_for_frame(timeout=5) is not None
        assert sink.frame_count > count
    finally:
        await sink.stop()
    assert sink._reader is None and sink._blackhole is None
