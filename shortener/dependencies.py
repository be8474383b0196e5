"""Dependency injection with a per-application service manager.

The manager owns every process-wide resource (logger, storage, deletion
pipeline, token manager, trusted-subnet gate) and lives on
``app.state.manager``. Route handlers receive a lightweight RequestContext
and a request-scoped ShorteningService built from it.

Dependency Graph
================
::
    Request
      ├─ get_service_manager ──▶ app.state.manager
      ├─ get_request_context ──▶ RequestContext(manager, request_id, client_ip, user_id)
      │     └─ get_service ───▶ ShorteningService.from_context(ctx)
      ├─ get_user_id ─────────▶ request.state.user_id (lenient)
      ├─ require_user ────────▶ 401 unless the cookie carried a valid token
      └─ require_trusted_subnet ▶ 403 outside TRUSTED_SUBNET
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Optional

from fastapi import Depends, Request

from shortener.auth import TokenManager
from shortener.config import Settings, get_settings
from shortener.deletion import DeletionPipeline
from shortener.exceptions import UnauthenticatedError
from shortener.service import ShorteningService, generate_short_code
from shortener.storage import URLRepository, create_storage
from shortener.trustednet import TrustedSubnet, client_ip_from

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_service",
    "get_user_id",
    "require_user",
    "require_trusted_subnet",
]

LOGGER_NAME = "shortener"


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Holds shared resources for one application instance.

    ``initialize`` opens storage and starts the deletion pipeline;
    ``cleanup`` stops the pipeline (bounded by DELETE_SHUTDOWN_TIMEOUT_SECONDS)
    and closes storage. Both are idempotent.
    """

    def __init__(self, settings: Optional[Settings] = None, storage: Optional[URLRepository] = None) -> None:
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.tokens = TokenManager(self.settings.JWT_SECRET)
        self.trusted_subnet = TrustedSubnet(
            self.settings.TRUSTED_SUBNET,
            deny_if_not_configured=self.settings.TRUSTED_SUBNET_DENY_IF_NOT_CONFIGURED,
        )
        self.key_generator = partial(generate_short_code, self.settings.SHORT_CODE_LENGTH)
        self.storage = storage or create_storage(self.settings, self.logger.getChild("storage"))
        self.pipeline = DeletionPipeline.from_settings(self.storage, self.settings, self.logger.getChild("deletion"))
        self.service = ShorteningService(self.storage, self.pipeline, self.logger, self.key_generator)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open storage and start background workers once."""
        if self._initialized:
            return
        await self.storage.init()
        self.pipeline.start()
        self._initialized = True
        self.logger.info(f"{self.settings.APP_NAME} started with {self.settings.STORAGE_BACKEND} storage")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger(LOGGER_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Stop the pipeline and close storage."""
        if not self._initialized:
            return
        self._initialized = False
        await self.service.stop(self.settings.DELETE_SHUTDOWN_TIMEOUT_SECONDS)
        self.logger.info(f"{self.settings.APP_NAME} stopped")


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to shared resources.

    Attributes:
        service_manager: Application-wide service manager
        request_id: Unique identifier for this request
        user_id: Caller identity resolved by the auth middleware
        user_agent: Client user agent string
        client_ip: Client IP address (forwarding headers first)
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    tags: list[str] = field(default_factory=list)

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_id": self.user_id,
                "tags": ",".join(self.tags),
            },
        )

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.manager


def _client_ip(request: Request) -> Optional[str]:
    peer = request.client.host if request.client else None
    return client_ip_from(request.headers, peer)


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context.

    Args:
        request: FastAPI Request object for extracting client info
        manager: Application service manager

    Returns:
        RequestContext: Context for the request
    """
    return RequestContext(
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_id=getattr(request.state, "user_id", None),
        user_agent=request.headers.get("user-agent"),
        client_ip=_client_ip(request),
    )


def get_service(ctx: RequestContext = Depends(get_request_context)) -> ShorteningService:
    return ShorteningService.from_context(ctx)


def get_user_id(request: Request) -> str:
    """Lenient auth: the middleware always leaves a user id behind."""
    return request.state.user_id


def require_user(request: Request) -> str:
    """Strict auth: only a user id carried by a valid incoming token is accepted."""
    if not getattr(request.state, "authenticated", False):
        raise UnauthenticatedError("A valid auth token is required")
    return request.state.user_id


def require_trusted_subnet(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    manager.trusted_subnet.check(_client_ip(request))
