"""Prometheus instruments for connection lifecycle and responses."""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

LOGGER = logging.getLogger("tlsgate.metrics")

connections_total = Counter(
    'tlsgate_connections_total',
    'Accepted TCP connections'
)

handshake_failures_total = Counter(
    'tlsgate_handshake_failures_total',
    'TLS handshakes that failed or timed out'
)

handshake_seconds = Histogram(
    'tlsgate_handshake_seconds',
    'Time spent completing TLS handshakes'
)

active_connections = Gauge(
    'tlsgate_active_connections',
    'Connections currently owned by a connection task'
)

responses_total = Counter(
    'tlsgate_responses_total',
    'HTTP responses written',
    ['protocol', 'status']
)


def start_exporter(port: int, addr: str = "127.0.0.1") -> None:
    """Expose the default registry over plain HTTP on *addr*:*port*."""
    start_http_server(port, addr=addr)
    LOGGER.info("Metrics exporter listening on http://%s:%s/metrics", addr, port)


__all__ = [
    "connections_total",
    "handshake_failures_total",
    "handshake_seconds",
    "active_connections",
    "responses_total",
    "start_exporter",
]
