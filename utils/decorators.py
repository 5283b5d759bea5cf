"""
Request gates for protected routes.

auth_required() resolves the bearer token to a user and attaches the identity
to flask.g; it either sets g.current_user or rejects the request, never both
and never neither. require_active_subscription() composes after it.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from functools import wraps

from flask import request, g, current_app

from api.errors import (
    ApiError,
    AccountLocked,
    AuthenticationFailed,
    AuthorizationFailed,
    ServerError,
)
from models import credential_store
from models.credential_store import LookupStatus
from utils.security import LockoutPolicy, TokenFailure

logger = logging.getLogger(__name__)

_TOKEN_FAILURE_MESSAGES = {
    TokenFailure.INVALID: "Access denied. Invalid token.",
    TokenFailure.EXPIRED: "Access denied. Token expired.",
    TokenFailure.NOT_ACTIVE: "Access denied. Token not active yet.",
}


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str
    subscription_status: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TokenInfo:
    user_id: str
    iat: int | None
    exp: int | None


def _bearer_token() -> str:
    auth = request.headers.get("Authorization")
    if auth is None:
        raise AuthenticationFailed("Access denied. No authorization header provided.", code="NO_AUTH_HEADER")
    if not auth.startswith("Bearer "):
        raise AuthenticationFailed("Access denied. Invalid authorization format.", code="INVALID_AUTH_FORMAT")
    token = auth[len("Bearer "):].strip()
    if not token:
        raise AuthenticationFailed("Access denied. No token provided.", code="NO_TOKEN")
    return token


def authenticate_request() -> tuple[Identity, TokenInfo]:
    """Resolve the Authorization header into (Identity, TokenInfo) or raise ApiError."""
    token = _bearer_token()
    tokens = current_app.extensions["token_service"]

    verification = tokens.verify_access(token)
    if not verification.ok:
        raise AuthenticationFailed(_TOKEN_FAILURE_MESSAGES[verification.failure], code=verification.failure.value)

    claims = verification.claims
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationFailed("Access denied. Invalid token structure.", code="INVALID_TOKEN_STRUCTURE")

    lookup = credential_store.find_by_id(user_id)
    if lookup.status is LookupStatus.DB_ERROR:
        raise ServerError(code="DATABASE_ERROR")
    if lookup.status is LookupStatus.NOT_FOUND:
        logger.info("Authentication failed: user not found for id=%s", user_id)
        raise AuthenticationFailed("Access denied. User not found.", code="USER_NOT_FOUND")

    user = lookup.user
    if LockoutPolicy.is_locked(user.account_locked_until):
        logger.info("Authentication failed: account locked user_id=%s", user.id)
        raise AccountLocked()

    identity = Identity(
        id=user.id,
        email=user.email,
        name=user.name,
        subscription_status=user.subscription_status,
    )
    return identity, TokenInfo(user_id=user_id, iat=claims.get("iat"), exp=claims.get("exp"))


def auth_required():
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                identity, token_info = authenticate_request()
            except ApiError:
                raise
            except Exception as exc:
                # fail closed: never fall through to the handler
                raise ServerError(code="INTERNAL_ERROR") from exc
            g.current_user = identity
            g.token_info = token_info
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def check_active_subscription(identity: Identity | None) -> ApiError | None:
    """Pure predicate: None when the identity may watch, else the error to raise."""
    if identity is None:
        return AuthenticationFailed("Authentication required.", code="AUTH_REQUIRED")
    if identity.subscription_status != "active":
        return AuthorizationFailed(
            "Active subscription required to access this content.", code="SUBSCRIPTION_REQUIRED"
        )
    return None


def require_active_subscription():
    """Allow only identities whose subscription status is exactly "active".

    Stack it below @auth_required() so g.current_user is populated first.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            error = check_active_subscription(getattr(g, "current_user", None))
            if error is not None:
                raise error
            return fn(*args, **kwargs)

        return wrapper

    return decorator
