"""
Event routes — behavioral event ingestion and lookup.
"""
from flask import Blueprint, current_app, jsonify, request

from leadfunnel.auth import require_admin, require_event_writer
from leadfunnel.config import EVENTS_DEFAULT_LIMIT
from leadfunnel.errors import ValidationError
from leadfunnel.models.filters import FilterSpec

bp = Blueprint('events', __name__)


def _analytics():
    return current_app.extensions['analytics']


def _limit_arg():
    raw = request.args.get('limit')
    if raw is None or raw.strip() == '':
        return EVENTS_DEFAULT_LIMIT
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("'limit' must be an integer", {'limit': raw})


@bp.route('/api/events', methods=['POST'])
@require_event_writer
def record_event():
    """Append one event; 201 with its id and the storage tier it landed in."""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError('Request body must be a JSON object')
    result = _analytics().record_event(payload)
    return jsonify(result.to_dict()), 201


@bp.route('/api/events', methods=['GET'])
@require_admin
def list_events():
    spec = FilterSpec.from_mapping(request.args)
    analytics = _analytics()
    events = analytics.query_events(spec, limit=_limit_arg())
    return jsonify({
        'success': True,
        'rows': [e.to_dict() for e in events],
        'persistence': analytics.persistence,
    })
