"""
Admin / event-writer authentication.

Admin access: session flag set by POST /login, or HTTP basic credentials
matching ADMIN_USERNAME / ADMIN_PASSWORD. Event writes additionally accept
the ``x-events-token`` header when EVENTS_WRITE_TOKEN is set.

No ADMIN_PASSWORD configured means open access (local dev).
"""
import hmac
import logging
from functools import wraps

from flask import current_app, request, session

from leadfunnel.errors import AuthenticationError

logger = logging.getLogger('routes.auth')

WRITE_TOKEN_HEADER = 'x-events-token'


def _same(a, b):
    return hmac.compare_digest(str(a).encode('utf-8'), str(b).encode('utf-8'))


def check_credentials(username, password):
    expected = current_app.config.get('ADMIN_PASSWORD')
    if not expected or not password:
        return False
    return _same(username or '', current_app.config.get('ADMIN_USERNAME', '')) and _same(password, expected)


def is_admin():
    if not current_app.config.get('ADMIN_PASSWORD'):
        return True
    if session.get('authenticated'):
        return True
    auth = request.authorization
    if auth is not None and auth.type == 'basic':
        return check_credentials(auth.username, auth.password)
    return False


def has_write_token():
    expected = current_app.config.get('EVENTS_WRITE_TOKEN')
    supplied = request.headers.get(WRITE_TOKEN_HEADER)
    return bool(expected) and bool(supplied) and _same(supplied, expected)


def require_admin(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_admin():
            logger.info("Rejected unauthenticated %s %s", request.method, request.path)
            raise AuthenticationError('Authentication required')
        return view(*args, **kwargs)
    return wrapper


def require_event_writer(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not (has_write_token() or is_admin()):
            logger.info("Rejected event write from %s", request.remote_addr)
            raise AuthenticationError('Unauthorized')
        return view(*args, **kwargs)
    return wrapper
