"""
Shared-secret bearer authentication for the trigger and status endpoints.
"""

import hmac
from functools import wraps
from flask import current_app, jsonify, request


def verify_bearer(header_value: str, secret: str) -> bool:
    """
    Check an Authorization header against the shared secret.

    Args:
        header_value: Raw Authorization header (may be None)
        secret: Configured shared secret

    Returns:
        True only if a secret is configured and the header carries it
    """
    if not secret or not header_value:
        return False

    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        return False

    return hmac.compare_digest(token.strip().encode(), secret.encode())


def secret_required(view):
    """Reject requests without the BACKUP_TRIGGER_SECRET bearer token."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        secret = current_app.config.get('BACKUP_TRIGGER_SECRET')
        if not verify_bearer(request.headers.get('Authorization'), secret):
            return jsonify({'ok': False, 'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)

    return wrapped
