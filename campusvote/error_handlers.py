"""
Error Handlers Module

Provides centralized error handling for the JSON service.
Handles HTTP errors, service-layer errors, database errors, and unexpected
exceptions with:
- A single JSON error body shape for every response
- Security logging integration
- Production-safe error messages
"""

from flask import request, jsonify, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from campusvote.exceptions import ServiceError
from campusvote.logging_config import log_security_event


def log_error_event(error_code, error_message, exception=None):
    """
    Log error event to the security log.

    Args:
        error_code: HTTP status code
        error_message: Error message
        exception: Original exception object (if any)
    """
    severity_map = {
        400: 'WARNING',
        401: 'WARNING',
        403: 'WARNING',
        404: 'INFO',
        429: 'WARNING',
        500: 'ERROR',
        503: 'ERROR',
    }
    severity = severity_map.get(error_code, 'ERROR')

    # 404s are noise unless they come from the API
    if error_code == 404 and not request.path.startswith('/api/'):
        return

    event_type_map = {
        401: 'UNAUTHORIZED_ACCESS',
        403: 'PERMISSION_DENIED',
        429: 'RATE_LIMIT_EXCEEDED',
    }
    event_type = event_type_map.get(error_code, 'SYSTEM_ERROR')

    description = f"HTTP {error_code}: {error_message} ({request.method} {request.path})"
    if exception is not None and current_app.debug:
        description += f" - {type(exception).__name__}: {exception}"

    log_security_event(
        event_type,
        ip_address=request.remote_addr,
        description=description,
        severity=severity
    )


def create_error_response(error_code, title, message, details=None):
    """
    Create a JSON error response.

    Args:
        error_code: HTTP status code
        title: Error title
        message: Short error message
        details: Optional machine-readable reason

    Returns:
        Flask response object
    """
    response = {
        'error': {
            'code': error_code,
            'title': title,
            'message': message,
        }
    }
    if details:
        response['error']['details'] = details

    return jsonify(response), error_code


# ==================== HTTP Error Handlers ====================

def handle_400(e):
    """Handle 400 Bad Request errors."""
    log_error_event(400, "Bad Request", e)
    return create_error_response(
        400,
        "Bad Request",
        "The request could not be understood by the server.",
        getattr(e, 'description', None)
    )


def handle_401(e):
    """Handle 401 Unauthorized errors."""
    log_error_event(401, "Unauthorized", e)
    return create_error_response(
        401,
        "Authentication Required",
        "A valid voter credential is required."
    )


def handle_403(e):
    """Handle 403 Forbidden errors."""
    log_error_event(403, "Forbidden", e)
    return create_error_response(
        403,
        "Access Forbidden",
        "You don't have permission to access this resource."
    )


def handle_404(e):
    """Handle 404 Not Found errors."""
    log_error_event(404, "Not Found", e)
    return create_error_response(
        404,
        "Not Found",
        "The requested resource does not exist.",
        'not_found'
    )


def handle_405(e):
    log_error_event(405, "Method Not Allowed", e)
    return create_error_response(
        405,
        "Method Not Allowed",
        "The method is not allowed for the requested URL."
    )


def handle_429(e):
    """Handle 429 Too Many Requests errors (rate limiting)."""
    log_error_event(429, "Rate Limit Exceeded", e)

    description = "Please wait a moment before trying again."
    if hasattr(e, 'description') and e.description:
        description = e.description

    return create_error_response(
        429,
        "Too Many Requests",
        "You've made too many requests in a short period of time.",
        description
    )


def handle_500(e):
    """Handle 500 Internal Server Error."""
    current_app.logger.error(
        f"Internal Server Error: {str(e)}",
        exc_info=True
    )

    log_error_event(500, "Internal Server Error", e)

    # In production, don't expose internal error details
    if current_app.debug:
        message = str(e)
    else:
        message = "An unexpected error occurred on our end."

    return create_error_response(500, "Internal Server Error", message)


def handle_503(e):
    """Handle 503 Service Unavailable errors."""
    log_error_event(503, "Service Unavailable", e)
    return create_error_response(
        503,
        "Service Unavailable",
        "The service is temporarily unavailable."
    )


# ==================== Service Error Handler ====================

def handle_service_error(e):
    """
    Handle errors raised by the service layer.

    The exception's ``reason`` becomes ``error.details`` so API clients can
    tell an already-voted refusal apart from any other 409.
    """
    if e.status_code >= 500:
        current_app.logger.error(f"Service error: {e.message}", exc_info=True)
    else:
        current_app.logger.info(f"Service refused {request.method} {request.path}: {e.reason}")

    return create_error_response(e.status_code, "Request Refused", e.message, e.reason)


# ==================== Database Error Handlers ====================

def handle_database_error(e):
    """
    Handle SQLAlchemy database errors.

    Args:
        e: SQLAlchemy exception

    Returns:
        Flask response object
    """
    from campusvote.extensions import db
    db.session.rollback()

    current_app.logger.error(
        f"Database error: {str(e)}",
        exc_info=True
    )

    log_error_event(500, "Database Error", e)

    # In production, don't expose database details
    if current_app.debug:
        message = f"Database error: {str(e)}"
    else:
        message = "A database error occurred. Please try again."

    return create_error_response(500, "Database Error", message)


# ==================== Generic Exception Handler ====================

def handle_generic_exception(e):
    """
    Handle any uncaught exceptions.

    This is the catch-all handler for unexpected errors.
    """
    # Werkzeug HTTP errors already have a dedicated handler or a sane default
    if isinstance(e, HTTPException):
        return create_error_response(e.code, e.name, e.description)

    current_app.logger.error(
        f"Unhandled exception: {type(e).__name__}: {str(e)}",
        exc_info=True
    )

    log_error_event(500, f"Unhandled Exception: {type(e).__name__}", e)

    return create_error_response(
        500,
        "Internal Server Error",
        "An unexpected error occurred."
    )


# ==================== Registration Function ====================

def register_error_handlers(app):
    """
    Register all error handlers with the Flask application.

    Args:
        app: Flask application instance
    """
    app.register_error_handler(400, handle_400)
    app.register_error_handler(401, handle_401)
    app.register_error_handler(403, handle_403)
    app.register_error_handler(404, handle_404)
    app.register_error_handler(405, handle_405)
    app.register_error_handler(429, handle_429)
    app.register_error_handler(500, handle_500)
    app.register_error_handler(503, handle_503)

    app.register_error_handler(ServiceError, handle_service_error)

    app.register_error_handler(SQLAlchemyError, handle_database_error)

    # Only register catch-all outside debug mode to allow the debugger
    if not app.debug:
        app.register_error_handler(Exception, handle_generic_exception)

    app.logger.info("Error handlers registered successfully")
