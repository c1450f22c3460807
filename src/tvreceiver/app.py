"""Receiver entry point.

Wires the control channel, orchestrator, aiortc engine and video sink
together and runs until interrupted or, without reconnect, until the
signaling connection drops.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Awaitable, List, Optional

from .channel import ControlChannel
from .config import Settings
from .engine import aiortc_engine_factory, build_configuration
from .logging import setup_logging
from .metrics import start_metrics_server
from .orchestrator import SessionOrchestrator
from .sink import VideoSink

logger = logging.getLogger(__name__)


class TvReceiver:
    """Hosts one orchestrator for the lifetime of the process."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.sink = VideoSink(record_path=settings.record_path)
        self.channel = ControlChannel(settings.signaling_url, settings.identity)
        configuration = build_configuration(
            settings.stun_url, settings.turn_url, settings.turn_user, settings.turn_pass
        )
        self.orchestrator = SessionOrchestrator(
            self.channel, aiortc_engine_factory(configuration), self.sink
        )
        self.channel.on_message = self.orchestrator.on_control_message
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request shutdown; safe to call from a signal handler."""
        self._stop.set()

    async def run(self) -> int:
        """Run until stopped.  Returns a process exit code."""
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s unavailable", sig)

        logger.info("Starting receiver tvId=%s", self.settings.tv_id)
        try:
            while not self._stop.is_set():
                if self.settings.reconnect:
                    if not await self._until_stopped(self.channel.connect_with_backoff()):
                        break
                else:
                    try:
                        if not await self._until_stopped(self.channel.connect()):
                            break
                    except ConnectionError as e:
                        logger.error("Signaling connection failed: %s", e)
                        return 1
                await self._until_stopped(self.channel.wait_closed())
                if not self.settings.reconnect:
                    break
                if not self._stop.is_set():
                    logger.info("Signaling connection lost, reconnecting")
            return 0
        finally:
            await self.orchestrator.shutdown()
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def _until_stopped(self, aw: Awaitable[Any]) -> bool:
        """Await ``aw`` unless :meth:`stop` comes first.

        Returns True when ``aw`` finished (re-raising its exception), False
        when it was cancelled by a stop request.
        """
        stop = asyncio.create_task(self._stop.wait())
        work = asyncio.ensure_future(aw)
        done, pending = await asyncio.wait({stop, work}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if work in done:
            work.result()
            return True
        return False


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("tvreceiver", description="WebRTC video receiver")
    p.add_argument("--ws", help="Signaling URL, ws://host:port")
    p.add_argument("--tv-id", help="Receiver identifier sent on identify")
    p.add_argument("--name", help="Receiver display name")
    p.add_argument("--reconnect", action="store_true", default=None,
                   help="Reconnect to the signaling server with backoff")
    p.add_argument("--record", help="Record received media to this file")
    p.add_argument("--metrics-port", type=int, help="Prometheus metrics port (0 disables)")
    p.add_argument("--loglevel", help="Logging level")
    p.add_argument("--healthcheck", action="store_true", help="Validate configuration and exit")
    return p


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Overlay command line values on ``settings``."""
    if args.ws:
        settings.signaling_url = args.ws
    if args.tv_id:
        settings.tv_id = args.tv_id
    if args.name:
        settings.tv_name = args.name
    if args.reconnect:
        settings.reconnect = True
    if args.record:
        settings.record_path = args.record
    if args.metrics_port is not None:
        settings.metrics_port = args.metrics_port
    if args.loglevel:
        settings.log_level = args.loglevel
    return settings


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, configure logging and metrics, run the receiver."""
    args = build_parser().parse_args(argv)
    settings = apply_args(Settings.from_env(), args)

    errors = settings.validate()
    if args.healthcheck or errors:
        if errors:
            print("Configuration validation failed:", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            return 1
        print("ok")
        return 0

    log = setup_logging(settings.log_level, settings.log_format, settings.log_file, name="tvreceiver")
    if settings.metrics_port:
        start_metrics_server(settings.metrics_port, log)

    async def _run() -> int:
        return await TvReceiver(settings).run()

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        log.info("Interrupted by user")
        return 130


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
