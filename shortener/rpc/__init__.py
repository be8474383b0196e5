"""gRPC surface of the URL shortener."""

from shortener.rpc.client import ShortenerClient
from shortener.rpc.server import create_server
from shortener.rpc.servicer import SERVICE_NAME, ShortenerServicer

__all__ = ["SERVICE_NAME", "ShortenerClient", "ShortenerServicer", "create_server"]
