import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from models import storage

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)

API_VERSION = "1.0.0"


@bp.get("/health")
def health():
    """
    Liveness plus a database round trip
    ---
    tags:
      - Health
    responses:
      200:
        description: "{status: ok, message, version}"
      503:
        description: Database unreachable
    """
    try:
        storage.execute(text("SELECT 1"))
    except SQLAlchemyError:
        storage.rollback()
        logger.exception("Health check could not reach the database")
        return jsonify({"status": "degraded", "database": "unavailable", "version": API_VERSION}), 503
    return jsonify({"status": "ok", "message": "Streamflix API is running", "version": API_VERSION}), 200
