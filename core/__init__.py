"""Application route and server composition for tlsgate."""

from .app import SUCCESS_BODY, handle
from .server import build_listener, serve

__all__ = ["handle", "build_listener", "serve", "SUCCESS_BODY"]
