"""
Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status the blueprints answer with.
"""


class LeadFunnelError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(LeadFunnelError):
    """Malformed or missing required filter / event field."""

    status_code = 400


class UpstreamError(LeadFunnelError):
    """Ledger collaborator unreachable or returned unusable data."""

    status_code = 502


class StorageError(LeadFunnelError):
    """Event store I/O failure."""

    status_code = 503


class AuthenticationError(LeadFunnelError):
    """Missing or wrong admin credentials / write token."""

    status_code = 401
