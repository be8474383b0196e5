"""Construction of the grpc.aio server."""

from typing import TYPE_CHECKING

import grpc

from shortener.rpc.interceptors import AuthInterceptor, LoggingInterceptor, TrustedSubnetInterceptor
from shortener.rpc.servicer import ShortenerServicer, method_path

if TYPE_CHECKING:
    from shortener.dependencies import ServiceManager

__all__ = ["STRICT_METHODS", "PROTECTED_METHODS", "build_interceptors", "create_server"]

STRICT_METHODS = frozenset({method_path("GetUserURLs"), method_path("DeleteUserURLs")})
PROTECTED_METHODS = frozenset({method_path("GetStats")})


def build_interceptors(manager: "ServiceManager") -> list[grpc.aio.ServerInterceptor]:
    logger = manager.logger.getChild("rpc")
    return [
        LoggingInterceptor(logger),
        AuthInterceptor(
            manager.tokens,
            strict_methods=STRICT_METHODS,
            metadata_key=manager.settings.AUTH_COOKIE_NAME,
            logger=logger,
        ),
        TrustedSubnetInterceptor(manager.trusted_subnet, PROTECTED_METHODS),
    ]


def create_server(manager: "ServiceManager", address: str) -> tuple[grpc.aio.Server, int]:
    """Build a server bound to ``address``; the caller starts and stops it.

    Returns:
        tuple[grpc.aio.Server, int]: The server and the bound port (useful with ``:0``).
    """
    server = grpc.aio.server(interceptors=build_interceptors(manager))
    server.add_generic_rpc_handlers((ShortenerServicer(manager).generic_handler(),))
    port = server.add_insecure_port(address)
    return server, port
