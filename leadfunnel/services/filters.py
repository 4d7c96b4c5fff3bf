"""
Filter engine — the one predicate every read path narrows records with.

Works on LedgerRecord and Event alike. A record matches when it satisfies
every constraint present on the FilterSpec; a record without a parseable
timestamp fails any date-bounded filter. A constraint on a field the record
type does not carry (e.g. payment_method on an event) excludes the record.
"""
from typing import Iterable, List, TypeVar

from leadfunnel.models.filters import FilterSpec
from leadfunnel.services.ledger import normalize_course

R = TypeVar('R')

_SEARCH_FIELDS = (
    'customer_name',
    'customer_email',
    'customer_phone',
    'course',
    'inquiry_id',
    'utm_source',
)


def _course_of(record):
    normalized = getattr(record, 'normalized_course', None)
    if normalized is not None:
        return normalized
    return normalize_course(getattr(record, 'course', None))


def _search_haystack(record):
    parts = (getattr(record, name, None) for name in _SEARCH_FIELDS)
    return ' '.join(str(p) for p in parts if p).lower()


def _equals(record, attribute, expected):
    return getattr(record, attribute, None) == expected


def matches(record, spec: FilterSpec) -> bool:
    if spec.course is not None and _course_of(record) != spec.course:
        return False
    if spec.payment_method is not None and not _equals(record, 'payment_method', spec.payment_method):
        return False
    if spec.language is not None and not _equals(record, 'language', spec.language):
        return False
    if spec.utm_campaign is not None and not _equals(record, 'utm_campaign', spec.utm_campaign):
        return False
    if spec.status is not None and not _equals(record, 'status', spec.status):
        return False
    if spec.event_type is not None and not _equals(record, 'event_type', spec.event_type):
        return False
    if spec.inquiry_id is not None and not _equals(record, 'inquiry_id', spec.inquiry_id):
        return False
    if spec.search is not None and spec.search.lower() not in _search_haystack(record):
        return False

    if spec.has_date_bounds:
        when = getattr(record, 'parsed_date', None)
        if when is None:
            return False
        if spec.start is not None and when < spec.start_bound:
            return False
        if spec.end is not None and when > spec.end_bound:
            return False
    return True


def apply(records: Iterable[R], spec: FilterSpec) -> List[R]:
    """Ordered subset of ``records`` matching ``spec``."""
    if spec.is_empty:
        return list(records)
    return [record for record in records if matches(record, spec)]
