import asyncio
import json
import socket

import pytest
import websockets

from tvreceiver.app import TvReceiver, apply_args, build_parser, main
from tvreceiver.config import Settings


def test_cli_flags_override_settings():
    args = build_parser().parse_args([
        "--ws", "ws://10.0.0.5:8080",
        "--tv-id", "bedroom",
        "--name", "Bedroom TV",
        "--reconnect",
        "--metrics-port", "0",
    ])
    settings = apply_args(Settings(metrics_port=9100), args)
    assert settings.signaling_url == "ws://10.0.0.5:8080"
    assert settings.tv_id == "bedroom"
    assert settings.tv_name == "Bedroom TV"
    assert settings.reconnect is True
    assert settings.metrics_port == 0


def test_healthcheck_ok(monkeypatch, capsys):
    monkeypatch.delenv("TVR_SIGNALING_URL", raising=False)
    monkeypatch.delenv("TVR_LOG_FORMAT", raising=False)
    monkeypatch.delenv("TVR_LOGLEVEL", raising=False)
    assert main(["--healthcheck"]) == 0
    assert capsys.readouterr().out.strip() == "ok"


def test_invalid_configuration_exits_nonzero(monkeypatch, capsys):
    monkeypatch.setenv("TVR_SIGNALING_URL", "http://not-a-websocket")
    assert main(["--healthcheck"]) == 1
    assert "TVR_SIGNALING_URL" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_run_without_server_fails_cleanly():
    settings = Settings(signaling_url="ws://127.0.0.1:9")
    receiver = TvReceiver(settings)
    assert await receiver.run() == 1
    assert receiver.orchestrator.state.value == "closed"


def free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.mark.asyncio
async def test_stop_interrupts_reconnect_backoff():
    settings = Settings(signaling_url=f"ws://127.0.0.1:{free_port()}", reconnect=True)
    receiver = TvReceiver(settings)
    task = asyncio.create_task(receiver.run())
    await asyncio.sleep(0.3)
    assert not task.done()

    receiver.stop()
    assert await asyncio.wait_for(task, timeout=2) == 0
    assert receiver.orchestrator.state.value == "closed"


@pytest.mark.asyncio
async def test_run_reidentifies_after_server_drop():
    identifies = []

    async def handler(ws):
        identifies.append(json.loads(await ws.recv()))
        if len(identifies) == 1:
            await ws.close()
            return
        async for _ in ws:
            pass

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        receiver = TvReceiver(Settings(signaling_url=f"ws://127.0.0.1:{port}", reconnect=True))
        task = asyncio.create_task(receiver.run())

        async def reidentified():
            while len(identifies) < 2:
                await asyncio.sleep(0.02)

        await asyncio.wait_for(reidentified(), timeout=3)
        receiver.stop()
        assert await asyncio.wait_for(task, timeout=3) == 0

    assert [m["type"] for m in identifies] == ["identify", "identify"]
