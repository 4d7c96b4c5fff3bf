"""
Logging setup for the leadfunnel service.

configure_logging() runs once per process from create_app(). LOG_LEVEL picks
the threshold (INFO when unset or unknown); LOG_FORMAT=json switches stderr
output to one JSON object per line.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import has_request_context, request

SERVICE_NAME = 'leadfunnel'

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s — %(message)s'
TEXT_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Sheets discovery, HTTP transport and SQL echo log every call at INFO
_QUIETED_LOGGERS = (
    'urllib3',
    'googleapiclient',
    'googleapiclient.discovery_cache',
    'google.auth',
    'sqlalchemy.engine',
)


class JSONFormatter(logging.Formatter):

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'service': SERVICE_NAME,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if has_request_context():
            entry['method'] = request.method
            entry['path'] = request.path
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def resolve_level(name) -> int:
    level = getattr(logging, (name or '').upper(), None)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(app=None):
    level = resolve_level(os.getenv('LOG_LEVEL', 'INFO'))
    as_json = os.getenv('LOG_FORMAT', 'text').lower() == 'json'

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if as_json else logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.setLevel(level)
