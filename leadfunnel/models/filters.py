"""
FilterSpec — caller-supplied narrowing criteria for ledger records and events.

A field left as None means "no constraint". Dates are inclusive; the end date
covers the whole day up to 23:59:59.
"""
import json
from dataclasses import asdict, dataclass, fields, replace
from datetime import date, datetime, time
from typing import Any, Mapping, Optional

from leadfunnel.errors import ValidationError

END_OF_DAY = time(23, 59, 59)

# query-string name -> FilterSpec field
_QUERY_ALIASES = {
    'start': 'start',
    'end': 'end',
    'course': 'course',
    'paymentMethod': 'payment_method',
    'payment_method': 'payment_method',
    'language': 'language',
    'lang': 'language',
    'utm_campaign': 'utm_campaign',
    'status': 'status',
    'eventType': 'event_type',
    'event_type': 'event_type',
    'inquiryId': 'inquiry_id',
    'inquiry_id': 'inquiry_id',
    'search': 'search',
    'q': 'search',
}

_LOWERCASED = ('payment_method', 'language', 'status')


def _parse_day(name, value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"'{name}' must be a YYYY-MM-DD date", {name: str(value)})


@dataclass(frozen=True)
class FilterSpec:
    start: Optional[date] = None
    end: Optional[date] = None
    course: Optional[str] = None
    payment_method: Optional[str] = None
    language: Optional[str] = None
    utm_campaign: Optional[str] = None
    status: Optional[str] = None
    event_type: Optional[str] = None
    inquiry_id: Optional[str] = None
    search: Optional[str] = None

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, str):
                value = value.strip() or None
                if value is not None and f.name in _LOWERCASED:
                    value = value.lower()
                object.__setattr__(self, f.name, value)
        if self.start is not None:
            object.__setattr__(self, 'start', _parse_day('start', self.start))
        if self.end is not None:
            object.__setattr__(self, 'end', _parse_day('end', self.end))
        if self.start and self.end and self.start > self.end:
            raise ValidationError("'start' must not be after 'end'",
                                  {'start': self.start.isoformat(), 'end': self.end.isoformat()})

    @classmethod
    def from_mapping(cls, args: Mapping[str, Any]) -> 'FilterSpec':
        """Build from request args; unknown keys are ignored."""
        values = {}
        for key, field_name in _QUERY_ALIASES.items():
            raw = args.get(key)
            if raw is None or str(raw).strip() == '':
                continue
            values.setdefault(field_name, raw)
        return cls(**values)

    @property
    def is_empty(self):
        return all(getattr(self, f.name) is None for f in fields(self))

    @property
    def has_date_bounds(self):
        return self.start is not None or self.end is not None

    @property
    def start_bound(self) -> Optional[datetime]:
        return datetime.combine(self.start, time.min) if self.start else None

    @property
    def end_bound(self) -> Optional[datetime]:
        return datetime.combine(self.end, END_OF_DAY) if self.end else None

    @property
    def start_iso(self) -> Optional[str]:
        return self.start.isoformat() + 'T00:00:00' if self.start else None

    @property
    def end_iso(self) -> Optional[str]:
        return self.end.isoformat() + 'T23:59:59' if self.end else None

    def dates_only(self) -> 'FilterSpec':
        """Keep only the date window (event-stream aggregations)."""
        return FilterSpec(start=self.start, end=self.end)

    def without(self, *names) -> 'FilterSpec':
        return replace(self, **{name: None for name in names})

    def to_dict(self):
        out = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            out[key] = value.isoformat() if isinstance(value, date) else value
        return out

    def cache_key(self) -> str:
        """Deterministic serialization; absent fields are omitted."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
