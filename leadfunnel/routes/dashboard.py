"""
Dashboard routes — health check and admin session login/logout.
"""
import logging

from flask import Blueprint, current_app, jsonify, request, session

from leadfunnel.auth import check_credentials
from leadfunnel.errors import AuthenticationError
from leadfunnel.services.circuit_breaker import OPEN, get_all_breakers

logger = logging.getLogger('routes.dashboard')

bp = Blueprint('dashboard', __name__)


@bp.route('/health')
@bp.route('/api/health')
def health_check():
    """Liveness plus breaker states and the active event store tier."""
    analytics = current_app.extensions['analytics']
    breakers = {name: cb.get_health() for name, cb in get_all_breakers().items()}
    degraded = not analytics.event_store.durable or any(b['state'] == OPEN for b in breakers.values())
    return jsonify({
        'status': 'degraded' if degraded else 'healthy',
        'eventStore': {
            'persistence': analytics.persistence,
            'durable': analytics.event_store.durable,
        },
        'breakers': breakers,
    }), 200


@bp.route('/login', methods=['POST'])
def login():
    """Accepts JSON or form ``username`` / ``password``."""
    data = request.get_json(silent=True) or request.form
    username = data.get('username', '')
    if not check_credentials(username, data.get('password')):
        logger.warning("Failed admin login for %r", username)
        raise AuthenticationError('Invalid credentials')
    session['authenticated'] = True
    return jsonify({'success': True})


@bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True})
