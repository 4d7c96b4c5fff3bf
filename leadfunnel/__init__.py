"""
Flask application factory.

Creates and configures the Flask app, wires the analytics service and
registers all blueprints.
"""
import logging

from flask import Flask, jsonify


def create_app(analytics=None):
    """Create and configure the Flask application.

    ``analytics`` lets callers (tests, scripts) inject a prebuilt
    AnalyticsService; by default one is built from the environment.
    """
    from leadfunnel import config
    from leadfunnel.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    app.secret_key = config.SECRET_KEY
    app.config.update(
        ADMIN_USERNAME=config.ADMIN_USERNAME,
        ADMIN_PASSWORD=config.ADMIN_PASSWORD,
        EVENTS_WRITE_TOKEN=config.EVENTS_WRITE_TOKEN,
    )

    # Initialize circuit breakers for the ledger upstream
    from leadfunnel.extensions import redis_client
    from leadfunnel.services.circuit_breaker import get_breaker, init_breakers
    init_breakers(redis_client)

    if analytics is None:
        from leadfunnel.services.analytics import build_analytics_service
        analytics = build_analytics_service(config.EngineConfig.from_env(), breaker=get_breaker('sheets'))
    app.extensions['analytics'] = analytics

    # ── Error handlers ──────────────────────────────────────────────────
    from leadfunnel.errors import LeadFunnelError

    @app.errorhandler(LeadFunnelError)
    def handle_leadfunnel_error(error):
        level = logging.WARNING if error.status_code < 500 else logging.ERROR
        app.logger.log(level, "%s: %s", type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    # Register blueprints
    from leadfunnel.routes.dashboard import bp as dashboard_bp
    from leadfunnel.routes.events import bp as events_bp
    from leadfunnel.routes.metrics import bp as metrics_bp

    app.register_blueprint(dashboard_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(metrics_bp)

    return app
