"""
Metrics routes — revenue summary, time series, attribution and dashboard
aggregates over the ledger and the event stream.

Every endpoint takes the same FilterSpec query arguments
(start, end, course, paymentMethod, language, utm_campaign, status, search).
"""
from flask import Blueprint, current_app, jsonify, request

from leadfunnel.auth import require_admin
from leadfunnel.models.filters import FilterSpec

bp = Blueprint('metrics', __name__, url_prefix='/api/metrics')


def _analytics():
    return current_app.extensions['analytics']


def _spec():
    return FilterSpec.from_mapping(request.args)


@bp.route('/')
@bp.route('/summary')
@require_admin
def summary():
    return jsonify(_analytics().summary(_spec()))


@bp.route('/timeseries')
@require_admin
def timeseries():
    """?metric=daily_revenue|daily_inquiries|daily_conversions|daily_funnel"""
    return jsonify(_analytics().timeseries(request.args.get('metric'), _spec()))


@bp.route('/attribution')
@require_admin
def attribution():
    return jsonify(_analytics().attribution(_spec()))


@bp.route('/courses')
@require_admin
def courses():
    return jsonify(_analytics().course_statistics(_spec()))


@bp.route('/dashboard')
@require_admin
def dashboard():
    """Overall vs. filtered KPIs plus breakdowns for the admin view."""
    return jsonify(_analytics().dashboard(_spec()))
