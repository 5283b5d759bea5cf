"""
security helpers:
- Argon2 password hashing via argon2-cffi
- access/refresh JWT pairs via PyJWT, signed with two distinct secrets
- failed-login lockout policy
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from models.base_model import as_naive_utc, utcnow

ph = PasswordHasher()

# verified against when the email is unknown so both branches cost one hash
_DUMMY_HASH = ph.hash("not-a-real-password")


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """ Verify a plaintext password using argon2
    """
    try:
        return ph.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def burn_password_check(password: str) -> None:
    verify_password(password, _DUMMY_HASH)


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenFailure(str, Enum):
    INVALID = "INVALID_TOKEN"
    EXPIRED = "TOKEN_EXPIRED"
    NOT_ACTIVE = "TOKEN_NOT_ACTIVE"


@dataclass(frozen=True)
class TokenVerification:
    claims: Optional[Dict[str, Any]] = None
    failure: Optional[TokenFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class TokenService:
    """Issues and verifies access/refresh token pairs.

    Both tokens carry the same claims (sub, iat, nbf, exp, jti) but are signed
    with different secrets, so a leaked access token can never be replayed as
    a refresh token and vice versa.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Both access and refresh secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh secrets must differ")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TokenService":
        return cls(
            access_secret=config["JWT_ACCESS_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            access_ttl=config["JWT_ACCESS_EXPIRES"],
            refresh_ttl=config["JWT_REFRESH_EXPIRES"],
        )

    def _encode(self, user_id: str, secret: str, ttl: timedelta, now: datetime) -> str:
        payload = {
            "sub": str(user_id),
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
            "jti": generate_jti(),
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def issue_token_pair(self, user_id: str) -> TokenPair:
        now = datetime.now(timezone.utc)
        return TokenPair(
            access_token=self._encode(user_id, self.access_secret, self.access_ttl, now),
            refresh_token=self._encode(user_id, self.refresh_secret, self.refresh_ttl, now),
        )

    def _verify(self, token: str, secret: str) -> TokenVerification:
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return TokenVerification(failure=TokenFailure.EXPIRED)
        except jwt.ImmatureSignatureError:
            return TokenVerification(failure=TokenFailure.NOT_ACTIVE)
        except jwt.InvalidTokenError:
            return TokenVerification(failure=TokenFailure.INVALID)
        return TokenVerification(claims=claims)

    def verify_access(self, token: str) -> TokenVerification:
        return self._verify(token, self.access_secret)

    def verify_refresh(self, token: str) -> TokenVerification:
        return self._verify(token, self.refresh_secret)


class LockoutPolicy:
    """Temporary login denial after repeated failed password attempts."""

    def __init__(self, max_attempts: int = 5, lock_duration: timedelta = timedelta(minutes=15)):
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "LockoutPolicy":
        return cls(
            max_attempts=config.get("MAX_FAILED_LOGINS", 5),
            lock_duration=config.get("ACCOUNT_LOCK_DURATION", timedelta(minutes=15)),
        )

    @staticmethod
    def is_locked(locked_until: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if locked_until is None:
            return False
        return (now or utcnow()) < as_naive_utc(locked_until)

    def register_failure(
        self, previous_attempts: int, now: Optional[datetime] = None
    ) -> Tuple[int, Optional[datetime]]:
        """Return the new (attempts, locked_until) after one more failure."""
        attempts = (previous_attempts or 0) + 1
        locked_until = None
        if attempts >= self.max_attempts:
            locked_until = (now or utcnow()) + self.lock_duration
        return attempts, locked_until
