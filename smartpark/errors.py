import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class SmartParkError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(SmartParkError):
    """Missing or malformed request data."""
    status_code = 400


class ConflictError(SmartParkError):
    """The operation would break a parking invariant."""
    status_code = 400


class NotFoundError(SmartParkError):
    status_code = 404


class AuthError(SmartParkError):
    status_code = 401


class ForbiddenError(SmartParkError):
    status_code = 403


def register_error_handlers(app):
    from app_factory import db

    @app.errorhandler(SmartParkError)
    def handle_smartpark_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code

        db.session.rollback()
        logger.exception("Unhandled error: %s", e)
        return jsonify({"error": "Something went wrong!"}), 500
