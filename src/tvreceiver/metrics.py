"""Prometheus metrics for the TV receiver.

Counters are module level so the channel, orchestrator and sink can share
them without passing a registry around.
"""

import logging
from typing import Any, Tuple

from prometheus_client import Counter, start_http_server

# Metrics definitions
messages_received = Counter("tvr_messages_received_total", "Control messages received by type", ["type"])
messages_sent = Counter("tvr_messages_sent_total", "Control messages sent by type", ["type"])
malformed_messages = Counter("tvr_malformed_messages_total", "Inbound frames dropped as malformed")
messages_dropped = Counter("tvr_messages_dropped_total", "Outbound messages dropped on a closed channel")
negotiations_started = Counter("tvr_negotiations_started_total", "Offers that started a negotiation session")
negotiation_failures = Counter("tvr_negotiation_failures_total", "Negotiation failures by stage", ["stage"])
connectivity_lost = Counter("tvr_connectivity_lost_total", "Sessions torn down after the connection failed")
reconnects = Counter("tvr_reconnects_total", "Control channel reconnect attempts")
frames_received = Counter("tvr_frames_received_total", "Total video frames received")


def start_metrics_server(port: int, logger: logging.Logger) -> Tuple[Any, Any]:
    """Start the Prometheus metrics server.

    :param port: Port number to bind the metrics server to
    :param logger: Logger instance for recording server startup status
    :return: Tuple of (server, thread) for clean shutdown
    """
    try:
        ret = start_http_server(port)
        if isinstance(ret, tuple) and len(ret) == 2:
            server, thread = ret
        else:
            server, thread = ret, None
        logger.info("Metrics server started on port %d", port)
        return server, thread
    except Exception as e:
        logger.error("Failed to start metrics server on port %d: %s", port, e)
        return None, None


__all__ = [
    "messages_received",
    "messages_sent",
    "malformed_messages",
    "messages_dropped",
    "negotiations_started",
    "negotiation_failures",
    "connectivity_lost",
    "reconnects",
    "frames_received",
    "start_metrics_server",
]
