"""Token issuing and verification shared by the HTTP and gRPC surfaces.

A token is an HS256 JWT whose only claim is ``user_id``. Tokens do not
expire. The first request without a valid token gets a fresh random user id.

Policies
========
::
    token valid?  ──yes──▶ user_id from claim
         │
         no
         ▼
    issue new token ──▶ lenient: continue as the new user
                    └─▶ strict:  reject with UnauthenticatedError,
                                 new token still returned to the client

Classes:
    AuthResult:  Outcome of authenticating one call.
    TokenManager:  Issues and verifies tokens with a fixed secret.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass

import jwt

from shortener.exceptions import InternalError

__all__ = ["ALGORITHM", "USER_ID_CLAIM", "AuthResult", "TokenManager", "current_user_id"]

ALGORITHM = "HS256"
USER_ID_CLAIM = "user_id"

# Set by the gRPC auth interceptor for the duration of one call.
current_user_id: ContextVar[str | None] = ContextVar("current_user_id", default=None)


@dataclass(frozen=True, slots=True)
class AuthResult:
    user_id: str
    authenticated: bool
    new_token: str | None = None


class TokenManager:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret

    def issue(self, user_id: str | None = None) -> tuple[str, str]:
        """Sign a token for ``user_id`` (a new random id when omitted).

        Returns:
            tuple[str, str]: (token, user_id)
        """
        user_id = user_id or str(uuid.uuid4())
        try:
            token = jwt.encode({USER_ID_CLAIM: user_id}, self._secret, algorithm=ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise InternalError(f"Failed to issue auth token: {exc}") from exc
        return token, user_id

    def verify(self, token: str | None) -> str | None:
        """Return the user id carried by ``token``, or None if it is missing or invalid."""
        if not token:
            return None
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM], options={"require": [USER_ID_CLAIM]})
        except jwt.InvalidTokenError:
            return None
        user_id = claims.get(USER_ID_CLAIM)
        if not isinstance(user_id, str) or not user_id:
            return None
        return user_id

    def authenticate(self, token: str | None) -> AuthResult:
        user_id = self.verify(token)
        if user_id is not None:
            return AuthResult(user_id=user_id, authenticated=True)
        new_token, user_id = self.issue()
        return AuthResult(user_id=user_id, authenticated=False, new_token=new_token)
