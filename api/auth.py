"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- GET  /auth/me

The implementation:
- Uses argon2 for password hashing (via utils.security)
- Issues short-lived access tokens and longer-lived refresh tokens, signed
  with two different secrets (TokenService in app.extensions)
- Keeps exactly one refresh token per user on the users row, so a login,
  refresh or logout revokes whatever refresh token was issued before
- Locks an account for a cooldown after repeated wrong passwords
- Answers "unknown email" and "wrong password" with the same 401 body
"""
from __future__ import annotations

import logging

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import IntegrityError

from api import limiter
from api.errors import AccountLocked, AuthenticationFailed, ServerError, ValidationFailed
from models import credential_store
from models.credential_store import LookupStatus
from models.schemas.user import LoginSchema, RefreshSchema, RegisterSchema
from utils.decorators import auth_required
from utils.security import TokenFailure, burn_password_check, hash_password, verify_password

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

register_schema = RegisterSchema()
login_schema = LoginSchema()
refresh_schema = RefreshSchema()

INVALID_CREDENTIALS = "Invalid email or password"
DUPLICATE_EMAIL = "User with this email already exists"


def _auth_limit():
    return current_app.config["AUTH_RATE_LIMIT"]


def _refresh_limit():
    return current_app.config["REFRESH_RATE_LIMIT"]


def _invalid_credentials() -> AuthenticationFailed:
    return AuthenticationFailed(INVALID_CREDENTIALS, code="INVALID_CREDENTIALS")


def _lookup_or_fail(lookup):
    if lookup.status is LookupStatus.DB_ERROR:
        raise ServerError(code="DATABASE_ERROR") from lookup.error
    return lookup


@bp.post("/register")
@limiter.limit(_auth_limit)
def register():
    """
    Register a new user and sign them in.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password, name]
          properties:
            email: { type: string, example: "a@b.com" }
            password: { type: string, example: "Abcdef1!" }
            name: { type: string, example: "A B" }
    responses:
      201:
        description: Created; returns accessToken, refreshToken and the public user
      400:
        description: Validation error (VALIDATION_ERROR) or duplicate email (DUPLICATE_EMAIL)
    """
    payload = request.get_json(silent=True) or {}
    data = register_schema.load(payload)

    if credential_store.email_exists(data["email"]):
        logger.info("Registration attempt with existing email")
        raise ValidationFailed(DUPLICATE_EMAIL, code="DUPLICATE_EMAIL")

    try:
        user = credential_store.create_user(
            email=data["email"],
            password_hash=hash_password(data["password"]),
            name=data["name"],
        )
    except IntegrityError:
        # lost a race with a concurrent registration of the same email
        raise ValidationFailed(DUPLICATE_EMAIL, code="DUPLICATE_EMAIL")

    tokens = current_app.extensions["token_service"].issue_token_pair(user.id)
    credential_store.store_refresh_token(user.id, tokens.refresh_token)

    logger.info("User registered id=%s", user.id)
    return jsonify(
        {
            "message": "User created successfully",
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
            "user": user.public(),
        }
    ), 201


@bp.post("/login")
@limiter.limit(_auth_limit)
def login():
    """
    Login: returns accessToken and refreshToken
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password]
          properties:
            email: { type: string }
            password: { type: string }
    responses:
      200:
        description: OK (returns tokens and user with subscription_status)
      400:
        description: Validation error
      401:
        description: Invalid email or password
      423:
        description: Account temporarily locked
    """
    payload = request.get_json(silent=True) or {}
    data = login_schema.load(payload)
    policy = current_app.extensions["lockout_policy"]

    lookup = _lookup_or_fail(credential_store.find_by_email(data["email"]))
    if lookup.status is LookupStatus.NOT_FOUND:
        burn_password_check(data["password"])
        logger.info("Login attempt with unknown email")
        raise _invalid_credentials()

    user = lookup.user
    if policy.is_locked(user.account_locked_until):
        logger.warning("Login attempt on locked account user_id=%s", user.id)
        raise AccountLocked(
            "Account temporarily locked due to multiple failed login attempts. Please try again later."
        )

    if not verify_password(data["password"], user.password_hash):
        # only a successful login resets the counter
        attempts, locked_until = policy.register_failure(user.failed_login_attempts)
        credential_store.record_failed_login(user.id, attempts, locked_until)
        if locked_until is not None:
            logger.warning("Account locked after %d failed attempts user_id=%s", attempts, user.id)
        else:
            logger.info("Failed login attempt %d for user_id=%s", attempts, user.id)
        raise _invalid_credentials()

    tokens = current_app.extensions["token_service"].issue_token_pair(user.id)
    credential_store.record_successful_login(user.id, tokens.refresh_token)

    logger.info("User logged in id=%s", user.id)
    return jsonify(
        {
            "message": "Login successful",
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
            "user": {**user.public(), "subscription_status": user.subscription_status},
        }
    ), 200


@bp.post("/refresh")
@limiter.limit(_refresh_limit)
def refresh():
    """
    Exchange a refresh token for a new token pair (rotation)
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [refreshToken]
          properties:
            refreshToken: { type: string }
    responses:
      200:
        description: New accessToken and refreshToken; the presented token is now dead
      400:
        description: Validation error
      401:
        description: INVALID_TOKEN, TOKEN_EXPIRED or INVALID_OR_EXPIRED_TOKEN
    """
    payload = request.get_json(silent=True) or {}
    presented = refresh_schema.load(payload)["refresh_token"]
    tokens = current_app.extensions["token_service"]

    verification = tokens.verify_refresh(presented)
    if verification.failure is TokenFailure.EXPIRED:
        raise AuthenticationFailed("Refresh token expired", code=TokenFailure.EXPIRED.value)
    if not verification.ok or not verification.claims.get("sub"):
        raise AuthenticationFailed("Invalid refresh token", code=TokenFailure.INVALID.value)

    user_id = verification.claims["sub"]
    lookup = _lookup_or_fail(credential_store.find_by_refresh_token(user_id, presented))
    if lookup.status is LookupStatus.NOT_FOUND:
        logger.warning("Refresh token replay or revoked token for user_id=%s", user_id)
        raise AuthenticationFailed("Invalid or expired refresh token", code="INVALID_OR_EXPIRED_TOKEN")

    user = lookup.user
    pair = tokens.issue_token_pair(user.id)
    if not credential_store.rotate_refresh_token(user.id, presented, pair.refresh_token):
        logger.warning("Concurrent refresh lost rotation for user_id=%s", user.id)
        raise AuthenticationFailed("Invalid or expired refresh token", code="INVALID_OR_EXPIRED_TOKEN")

    logger.info("Token refreshed for user_id=%s", user.id)
    return jsonify(
        {
            "accessToken": pair.access_token,
            "refreshToken": pair.refresh_token,
            "user": {**user.public(), "subscription_status": user.subscription_status},
        }
    ), 200


@bp.post("/logout")
@auth_required()
def logout():
    """
    Logout: revokes the stored refresh token
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Logged out; the access token stays valid until it expires
      401:
        description: Unauthorized
    """
    credential_store.clear_refresh_token(g.current_user.id)
    logger.info("User logged out id=%s", g.current_user.id)
    return jsonify({"message": "Logout successful"}), 200


@bp.get("/me")
@auth_required()
def me():
    """
    Current user identity
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    return jsonify({"user": g.current_user.to_dict()}), 200
