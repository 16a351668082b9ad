"""Compose certificate, TLS listener and connection server from settings."""

from __future__ import annotations

import logging

from infrastructure.configuration import Settings
from tlsgate import metrics
from tlsgate.certificates import provision
from tlsgate.connection import ConnectionServer
from tlsgate.http import Handler
from tlsgate.listener import TLSListener
from tlsgate.tickets import policy_for
from tlsgate.tls import TLSServerConfig

from .app import handle

LOGGER = logging.getLogger("tlsgate.server")


def build_listener(settings: Settings, handler: Handler = handle) -> TLSListener:
    """Provision a certificate and return an unstarted listener.

    Raises ``CertificateGenerationError`` or ``ConfigurationError`` when the
    TLS material is unusable.
    """

    bundle = provision(settings.hostnames)
    config = TLSServerConfig(bundle=bundle, ticket_policy=policy_for(settings.tickets))
    connections = ConnectionServer(handler, idle_timeout=settings.idle_timeout)
    return TLSListener(
        config,
        connections.serve,
        host=settings.host,
        port=settings.port,
        handshake_timeout=settings.handshake_timeout,
    )


async def serve(settings: Settings) -> None:
    """Bind and accept connections until the process is terminated."""

    listener = build_listener(settings)
    await listener.start()
    print(f"Starting to serve on {listener.url}", flush=True)
    if settings.metrics_port is not None:
        metrics.start_exporter(settings.metrics_port)
    try:
        await listener.serve_forever()
    finally:
        LOGGER.info("Shutting down listener on %s", listener.url)
        await listener.close()


__all__ = ["build_listener", "serve"]
