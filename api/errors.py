from flask import jsonify
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

# status -> default machine code for plain werkzeug errors (abort(404) etc.)
STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    423: "ACCOUNT_LOCKED",
    429: "RATE_LIMITED",
}


class ApiError(Exception):
    """Base for errors rendered as {message, code, errors?}."""

    status = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error. Please try again later."

    def __init__(self, message: str | None = None, code: str | None = None, errors: list | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if code:
            self.code = code
        self.errors = errors


class ValidationFailed(ApiError):
    status = 400
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class AuthenticationFailed(ApiError):
    status = 401
    code = "UNAUTHORIZED"
    message = "Authentication required."


class AuthorizationFailed(ApiError):
    status = 403
    code = "FORBIDDEN"
    message = "Access denied."


class NotFound(ApiError):
    status = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class Conflict(ApiError):
    status = 409
    code = "CONFLICT"
    message = "Conflict"


class AccountLocked(ApiError):
    status = 423
    code = "ACCOUNT_LOCKED"
    message = "Account temporarily locked. Please try again later."


class RateLimited(ApiError):
    status = 429
    code = "RATE_LIMITED"
    message = "Too many requests. Please try again later."


class ServerError(ApiError):
    status = 500


class ServiceUnavailable(ApiError):
    status = 503
    code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable."


def error_response(code: str, message: str, status: int, errors: list | None = None):
    payload = {"message": message, "code": code}
    if errors:
        payload["errors"] = errors
    return jsonify(payload), status


def flatten_validation_messages(messages, prefix: str = "") -> list:
    """Turn marshmallow's nested {field: [msg]} into [{field, message}]."""
    flat = []
    if isinstance(messages, dict):
        for key, value in messages.items():
            field = f"{prefix}.{key}" if prefix else str(key)
            flat.extend(flatten_validation_messages(value, field))
    elif isinstance(messages, (list, tuple)):
        for item in messages:
            if isinstance(item, (dict, list, tuple)):
                flat.extend(flatten_validation_messages(item, prefix))
            else:
                flat.append({"field": prefix or "_schema", "message": str(item)})
    else:
        flat.append({"field": prefix or "_schema", "message": str(messages)})
    return flat


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        if err.status >= 500:
            logger.error("%s: %s", err.code, err.message, exc_info=err.__cause__ or err)
        return error_response(err.code, err.message, err.status, err.errors)

    # Marshmallow validation errors map to 400 with every violated field listed
    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        return error_response(
            "VALIDATION_ERROR",
            "Validation failed",
            400,
            errors=flatten_validation_messages(err.messages),
        )

    # Werkzeug HTTPExceptions (abort(), 404 routing, 405, Flask-Limiter 429)
    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        status = err.code or 500
        code = STATUS_CODES.get(status, "HTTP_ERROR")
        message = err.description or err.name
        if status == 429:
            message = RateLimited.message
        return error_response(code, message, status)

    # Data-layer failures never leak driver detail
    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(err: SQLAlchemyError):
        logger.exception("Database error", exc_info=err)
        return error_response("DATABASE_ERROR", ServerError.message, 500)

    # 500 Internal Error (catch-all)
    @app.errorhandler(Exception)
    def internal_error(err: Exception):
        logger.exception("Unhandled exception", exc_info=err)
        return error_response("INTERNAL_ERROR", ServerError.message, 500)
