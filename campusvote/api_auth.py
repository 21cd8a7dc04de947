"""
API Authentication Module

Identifies the voter behind each request to the JSON API from a bearer
credential. How the credential was obtained (login, OTP) is not this
module's concern.
"""

from functools import wraps
from flask import request, jsonify, g, current_app

from campusvote.models import VoterCredential
from campusvote.logging_config import log_security_event


def get_token_from_request():
    """
    Extract the voter credential from the request.

    Checks for the credential in (priority order):
    1. Authorization header (Bearer token)
    2. X-API-Key header

    Returns:
        str: Credential string or None
    """
    auth_header = request.headers.get('Authorization')
    if auth_header and auth_header.startswith('Bearer '):
        return auth_header[7:]

    api_key_header = request.headers.get('X-API-Key')
    if api_key_header:
        return api_key_header

    return None


def authenticate_token():
    """
    Authenticate the voter credential from the request.

    Returns:
        tuple: (VoterCredential object or None, error_message or None)
    """
    raw_token = get_token_from_request()

    if not raw_token:
        return None, "No voter credential provided"

    credential = VoterCredential.verify_token(raw_token)

    if not credential:
        return None, "Invalid or expired voter credential"

    return credential, None


def credential_required(f):
    """
    Decorator to require a valid voter credential for an endpoint.

    Usage:
        @credential_required
        def my_endpoint():
            # Access the voter via g.current_student
            pass
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        credential, error = authenticate_token()

        if error:
            log_security_event(
                'UNAUTHORIZED_ACCESS',
                ip_address=request.remote_addr,
                description=f"{request.method} {request.path}: {error}"
            )
            return api_error('Authentication required', 401, error)

        g.credential = credential
        g.current_student = credential.student

        credential.record_usage(request.remote_addr)

        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """
    Decorator to require an admin voter credential.

    Usage:
        @credential_required
        @admin_required
        def admin_endpoint():
            pass
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, 'current_student'):
            current_app.logger.error(
                f"@admin_required used without @credential_required on {f.__name__}"
            )
            return api_error('Internal server error', 500)

        student = g.current_student
        if not student.is_admin:
            log_security_event(
                'PERMISSION_DENIED',
                user_id=student.id,
                ip_address=request.remote_addr,
                description=f"Non-admin credential attempted {request.method} {request.path}",
                severity='ERROR'
            )
            return api_error('Admin access required', 403, 'This endpoint requires admin permissions')

        return f(*args, **kwargs)

    return decorated_function


# Helper functions for API responses

def api_success(data=None, message=None, status_code=200):
    """
    Create a standardized success API response.

    Args:
        data: Response data (optional)
        message: Success message (optional)
        status_code: HTTP status code (default: 200)

    Returns:
        tuple: (response, status_code)
    """
    response = {}

    if message:
        response['message'] = message

    if data is not None:
        response['data'] = data

    return jsonify(response), status_code


def api_error(message, code=400, details=None):
    """
    Create a standardized error API response.

    ``details`` carries the machine-readable reason clients switch on
    (``already_voted``, ``election_not_active``, ...).

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'error': {
            'code': code,
            'message': message
        }
    }

    if details:
        response['error']['details'] = details

    return jsonify(response), code
