"""
Ledger reader — pulls lead/payment rows from the spreadsheet and normalizes
them into LedgerRecord.

Row normalization never raises: bad numbers become 0, bad dates None, missing
text the declared default. Only an unreachable or unusable upstream fails the
read, and then the whole read fails (UpstreamError).
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from leadfunnel.config import LANGUAGES
from leadfunnel.errors import UpstreamError
from leadfunnel.models.ledger import LedgerRecord
from leadfunnel.services.circuit_breaker import CircuitOpenError

logger = logging.getLogger('services.ledger')


# ── Pure normalization helpers ───────────────────────────────────────────────

_COURSE_KEYWORDS = (
    ('pmp', 'PMP'),
    ('planning', 'Planning'),
    ('qse', 'QSE'),
    ('soft', 'Soft Skills'),
)

_STATUS_ALIASES = {
    'paid': 'paid',
    'pending': 'pending',
    'pending_cashplus': 'pending',
    'failed': 'failed',
    'canceled': 'canceled',
    'cancelled': 'canceled',
}

_MISSING_MARKERS = ('', 'undefined', 'null', 'none')

# fr-CA toLocaleString output, e.g. "2024-01-15 10 h 30 min 05 s"
_FR_CA_TIMESTAMP = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[ ,T]+(\d{1,2}) h (\d{1,2}) min(?: (\d{1,2}) s)?$'
)
_LEADING_NUMBER = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?')

_FALLBACK_FORMATS = (
    '%Y-%m-%d, %H:%M:%S',
    '%Y/%m/%d %H:%M:%S',
    '%Y/%m/%d',
    '%m/%d/%Y, %I:%M:%S %p',
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y',
)


def _text(value):
    if value is None:
        return ''
    return str(value).strip()


def normalize_course(raw) -> str:
    """Map free-text course names onto PMP / Planning / QSE / Soft Skills."""
    text = _text(raw)
    if not text:
        return 'Other'
    lower = text.lower()
    for keyword, canonical in _COURSE_KEYWORDS:
        if keyword in lower:
            return canonical
    return text


def _to_naive_utc(dt):
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(raw) -> Optional[datetime]:
    """
    Parse a spreadsheet/event timestamp into a naive UTC datetime.

    Accepts ISO-8601 (with Z or an offset), "YYYY-MM-DD HH:MM:SS", the fr-CA
    "10 h 30 min 05 s" form and a few slash formats. Returns None when
    nothing matches.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return _to_naive_utc(raw)

    text = _text(raw)
    if not text:
        return None

    match = _FR_CA_TIMESTAMP.match(text)
    if match:
        day, hour, minute, second = match.groups()
        text = f'{day}T{int(hour):02d}:{int(minute):02d}:{int(second or 0):02d}'

    candidate = text[:-1] + '+00:00' if text.endswith(('Z', 'z')) else text
    try:
        return _to_naive_utc(datetime.fromisoformat(candidate))
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_status(raw) -> str:
    status = _text(raw).lower()
    return _STATUS_ALIASES.get(status, 'pending')


def normalize_payment_method(raw) -> str:
    method = _text(raw).lower()
    if not method:
        return 'other'
    compact = method.replace(' ', '').replace('-', '').replace('_', '')
    if 'cashplus' in compact:
        return 'cashplus'
    if 'card' in method or method in ('cb', 'visa', 'mastercard'):
        return 'card'
    if method == 'cash':
        return 'cash'
    if 'bank' in method or 'virement' in method:
        return 'bank_transfer'
    return 'other'


def normalize_language(raw, default='ar') -> str:
    language = _text(raw).lower()
    return language if language in LANGUAGES else default


def parse_amount(raw) -> float:
    """Leading-number parse; anything unparseable is 0."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
    else:
        match = _LEADING_NUMBER.match(_text(raw).replace(' ', ''))
        if not match:
            return 0.0
        value = float(match.group(0))
    return value if math.isfinite(value) else 0.0


def clean_attribution(raw) -> str:
    """UTM cell value, with literal 'undefined'/'null' treated as missing."""
    text = _text(raw)
    return '' if text.lower() in _MISSING_MARKERS else text


# ── Upstream collaborator ────────────────────────────────────────────────────

class LedgerSource:
    """Returns every ledger row as a dict keyed by column header."""

    def fetch_rows(self) -> List[Dict[str, str]]:
        raise NotImplementedError


class SheetsLedgerSource(LedgerSource):
    """
    Google Sheets collaborator, authenticated as a service account.

    Reads the tab named ``sheet_title`` (first tab if it does not exist). The
    HTTP transport carries ``timeout`` so a stuck call cannot hang a request.
    """

    SCOPES = ['https://www.googleapis.com/auth/spreadsheets.readonly']

    def __init__(self, sheet_id, service_account_email, private_key,
                 sheet_title='Leads', timeout=15.0):
        self.sheet_id = sheet_id
        self.service_account_email = service_account_email
        self.private_key = private_key
        self.sheet_title = sheet_title
        self.timeout = timeout

    @property
    def configured(self):
        return bool(self.sheet_id and self.service_account_email and self.private_key)

    def _build_service(self):
        import google_auth_httplib2
        import httplib2
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        credentials = service_account.Credentials.from_service_account_info(
            {
                'type': 'service_account',
                'client_email': self.service_account_email,
                'private_key': self.private_key,
                'token_uri': 'https://oauth2.googleapis.com/token',
            },
            scopes=self.SCOPES,
        )
        http = google_auth_httplib2.AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout))
        return build('sheets', 'v4', http=http, cache_discovery=False)

    def _resolve_title(self, service):
        meta = service.spreadsheets().get(
            spreadsheetId=self.sheet_id, fields='sheets.properties.title',
        ).execute()
        titles = [s.get('properties', {}).get('title') for s in meta.get('sheets', [])]
        titles = [t for t in titles if t]
        if self.sheet_title in titles:
            return self.sheet_title
        if titles:
            logger.warning("Sheet '%s' not found, falling back to '%s'", self.sheet_title, titles[0])
            return titles[0]
        raise UpstreamError('No sheet found in the ledger spreadsheet')

    def fetch_rows(self):
        if not self.configured:
            raise UpstreamError('Missing Google Sheets credentials')

        # httplib2 is not thread-safe, so every read gets its own transport
        service = self._build_service()
        title = self._resolve_title(service)
        result = service.spreadsheets().values().get(
            spreadsheetId=self.sheet_id, range=f"'{title}'",
        ).execute()

        values = result.get('values', [])
        if not values:
            return []
        header = [_text(h) for h in values[0]]
        rows = []
        for raw in values[1:]:
            cells = list(raw) + [''] * (len(header) - len(raw))
            rows.append({name: cells[i] for i, name in enumerate(header) if name})
        return rows


# ── Reader ───────────────────────────────────────────────────────────────────

class LedgerReader:
    """Fetch + normalize. The only place LedgerRecord objects are built."""

    def __init__(self, source: LedgerSource, breaker=None, default_language='ar'):
        self.source = source
        self.breaker = breaker
        self.default_language = default_language

    def fetch_all(self) -> List[LedgerRecord]:
        rows = self._fetch_rows()
        if not isinstance(rows, list):
            raise UpstreamError('Ledger returned unusable data',
                                {'type': type(rows).__name__})

        records = []
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                logger.warning("Skipping ledger row %d: not a mapping", index)
                continue
            records.append(self.normalize_row(row))
        logger.debug("Fetched %d ledger records", len(records))
        return records

    def _fetch_rows(self):
        try:
            if self.breaker is not None:
                return self.breaker.call(self.source.fetch_rows)
            return self.source.fetch_rows()
        except UpstreamError:
            raise
        except CircuitOpenError as e:
            raise UpstreamError('Ledger temporarily unavailable',
                                {'retry_after': e.retry_after}) from e
        except Exception as e:
            logger.error("Ledger fetch failed: %s", e, exc_info=True)
            raise UpstreamError('Ledger unreachable') from e

    def normalize_row(self, row: Mapping[str, object]) -> LedgerRecord:
        get = row.get
        timestamp = _text(get('Timestamp'))
        amount = parse_amount(get('Amount'))
        course = _text(get('Selected Course'))
        return LedgerRecord(
            timestamp=timestamp,
            parsed_date=parse_date(timestamp),
            inquiry_id=_text(get('Inquiry ID')),
            transaction_id=_text(get('Transaction ID')),
            status=normalize_status(get('Payment Status')),
            payment_method=normalize_payment_method(get('Payment Method')),
            amount=amount,
            final_amount=amount,
            currency=_text(get('Currency')) or 'MAD',
            course=course,
            normalized_course=normalize_course(course),
            language=normalize_language(get('Lang'), self.default_language),
            customer_name=_text(get('Full Name')),
            customer_email=_text(get('Email')),
            customer_phone=_text(get('Phone Number')),
            qualification=_text(get('Qualification')),
            experience=_text(get('Experience')),
            cashplus_code=_text(get('CashPlus Code')),
            last4=_text(get('Last4Digits')),
            utm_source=clean_attribution(get('utm_source')),
            utm_medium=clean_attribution(get('utm_medium')),
            utm_campaign=clean_attribution(get('utm_campaign')),
            utm_term=clean_attribution(get('utm_term')),
            utm_content=clean_attribution(get('utm_content')),
        )
