"""
Event model — one row per behavioral fact, append-only.

EventRow is the SQL table shared by the durable and embedded tiers; Event is
the immutable value every tier hands back to callers.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import Column, Index, Integer, Text

from leadfunnel.database import Base
from leadfunnel.errors import ValidationError
from leadfunnel.services.ledger import parse_date


class EventRow(Base):
    __tablename__ = 'events'
    __table_args__ = (
        Index('idx_events_inquiry', 'inquiry_id'),
        Index('idx_events_type', 'event_type'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Text)
    inquiry_id = Column(Text, nullable=True)
    session_id = Column(Text, nullable=True)
    course = Column(Text, nullable=True)
    timestamp = Column(Text)              # canonical_timestamp() of the caller's value
    metadata_json = Column('metadata', Text, nullable=True)
    utm_source = Column(Text, nullable=True)
    utm_medium = Column(Text, nullable=True)
    utm_campaign = Column(Text, nullable=True)
    created_at = Column(Text)             # ingestion time, ISO-8601 UTC


STORED_TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S'
# LIKE pattern every canonical timestamp satisfies
STORED_TIMESTAMP_PATTERN = '____-__-__T__:__:__'


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def canonical_timestamp(raw):
    """
    Text form an event timestamp is stored under.

    Parseable input becomes UTC "YYYY-MM-DDTHH:MM:SS", so comparing the text
    against day bounds agrees with comparing parsed datetimes. Anything else
    is kept verbatim.
    """
    parsed = parse_date(raw)
    if parsed is None:
        return raw
    return parsed.strftime(STORED_TIMESTAMP_FORMAT)


def _optional_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class EventInput:
    """Validated ingestion payload, before an id is assigned."""

    event_type: str
    inquiry_id: Optional[str] = None
    session_id: Optional[str] = None
    course: Optional[str] = None
    timestamp: Optional[str] = None
    metadata: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'EventInput':
        """
        Build from a JSON body. Accepts eventType or type; defaults to 'unknown'.

        metadata may be an object (serialized here) or a pre-serialized
        metadataString. Only a non-object body is rejected.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError('Event payload must be a JSON object')

        event_type = _optional_text(payload.get('eventType') or payload.get('type')) or 'unknown'

        metadata = payload.get('metadata')
        if metadata is not None and not isinstance(metadata, str):
            try:
                metadata = json.dumps(metadata, sort_keys=True, default=str)
            except (TypeError, ValueError) as e:
                raise ValidationError('metadata is not serializable', {'metadata': str(e)})
        elif metadata is None:
            metadata = payload.get('metadataString') or None

        return cls(
            event_type=event_type,
            inquiry_id=_optional_text(payload.get('inquiryId')),
            session_id=_optional_text(payload.get('sessionId')),
            course=_optional_text(payload.get('course')),
            timestamp=_optional_text(payload.get('timestamp')),
            metadata=metadata,
            utm_source=_optional_text(payload.get('utm_source')),
            utm_medium=_optional_text(payload.get('utm_medium')),
            utm_campaign=_optional_text(payload.get('utm_campaign')),
        )


@dataclass(frozen=True)
class Event:
    id: int
    event_type: str
    inquiry_id: Optional[str]
    session_id: Optional[str]
    course: Optional[str]
    timestamp: str
    metadata: Optional[str]
    utm_source: Optional[str]
    utm_medium: Optional[str]
    utm_campaign: Optional[str]
    created_at: str
    parsed_date: Optional[datetime] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_row(cls, row: EventRow) -> 'Event':
        return cls(
            id=row.id,
            event_type=row.event_type,
            inquiry_id=row.inquiry_id,
            session_id=row.session_id,
            course=row.course,
            timestamp=row.timestamp,
            metadata=row.metadata_json,
            utm_source=row.utm_source,
            utm_medium=row.utm_medium,
            utm_campaign=row.utm_campaign,
            created_at=row.created_at,
            parsed_date=parse_date(row.timestamp),
        )

    @property
    def metadata_dict(self) -> Dict[str, Any]:
        if not self.metadata:
            return {}
        try:
            value = json.loads(self.metadata)
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'event_type': self.event_type,
            'inquiry_id': self.inquiry_id,
            'session_id': self.session_id,
            'course': self.course,
            'timestamp': self.timestamp,
            'metadata': self.metadata,
            'utm_source': self.utm_source,
            'utm_medium': self.utm_medium,
            'utm_campaign': self.utm_campaign,
            'created_at': self.created_at,
        }


@dataclass(frozen=True)
class AppendResult:
    id: int
    persistence: str
    durable: bool

    def to_dict(self):
        return {'success': True, 'id': self.id, 'persistence': self.persistence, 'durable': self.durable}
