"""
Aggregation engine — reduces filtered ledger records / event counts into the
shapes the admin dashboard renders: summary KPIs, per-dimension revenue,
funnel KPIs, daily series and campaign attribution rollups.

Everything here is pure; callers do the fetching and filtering.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping

from leadfunnel.config import PAYMENT_METHODS

ORGANIC_CAMPAIGN = 'Organic/Direct'
DIRECT_SOURCE = 'Direct'
NO_MEDIUM = '-'
NOT_SPECIFIED = 'Not Specified'

EXPERIENCE_LABELS = {
    'less_than_5': '< 5 years',
    'between_5_10': '5-10 years',
    'more_than_10': '> 10 years',
}


def _money(value):
    return round(value, 2)


def conversion_rate(converted, inquiries):
    if inquiries <= 0:
        return 0
    return round(converted / inquiries, 4)


def average(total, count):
    return round(total / count, 2) if count > 0 else 0


# ── Summary KPIs ─────────────────────────────────────────────────────────────

def summary_kpis(records) -> Dict[str, float]:
    revenue = defaultdict(float)
    counts = defaultdict(int)
    for record in records:
        revenue[record.status] += record.final_amount
        counts[record.status] += 1

    paid_revenue = _money(revenue['paid'])
    return {
        'totalRevenue': paid_revenue,
        'paidRevenue': paid_revenue,
        'pendingRevenue': _money(revenue['pending']),
        'failedRevenue': _money(revenue['failed']),
        'canceledRevenue': _money(revenue['canceled']),
        'totalTransactions': sum(counts.values()),
        'successfulTransactions': counts['paid'],
        'pendingTransactions': counts['pending'],
        'failedTransactions': counts['failed'],
        'canceledTransactions': counts['canceled'],
        'averageOrderValue': average(revenue['paid'], counts['paid']),
    }


def revenue_rollups(records) -> Dict[str, Dict[str, float]]:
    """Paid revenue grouped by course, payment method and language."""
    per_course = defaultdict(float)
    per_method = defaultdict(float)
    per_language = defaultdict(float)
    for record in records:
        if not record.is_paid:
            continue
        per_course[record.normalized_course or 'Other'] += record.final_amount
        per_method[record.payment_method or 'other'] += record.final_amount
        per_language[record.language or 'unknown'] += record.final_amount

    def _rounded(bucket):
        return {key: _money(value) for key, value in bucket.items()}

    return {
        'revenuePerCourse': _rounded(per_course),
        'revenuePerPaymentMethod': _rounded(per_method),
        'revenuePerLanguage': _rounded(per_language),
    }


def funnel_kpis(counts) -> Dict[str, float]:
    return {
        'inquiries': counts.inquiries,
        'converted': counts.converted,
        'payments': counts.payments,
        'conversionRate': conversion_rate(counts.converted, counts.inquiries),
    }


# ── Time series ──────────────────────────────────────────────────────────────

def to_series(by_day: Mapping[str, float]) -> Dict[str, list]:
    labels = sorted(by_day)
    return {'labels': labels, 'series': [by_day[label] for label in labels]}


def revenue_series(records) -> Dict[str, list]:
    """Paid revenue per UTC day; records without a date are left out."""
    by_day = defaultdict(float)
    for record in records:
        if record.is_paid and record.parsed_date is not None:
            by_day[record.parsed_date.date().isoformat()] += record.final_amount
    return to_series({day: _money(total) for day, total in by_day.items()})


def merge_daily_funnel(inquiries: Mapping[str, int], conversions: Mapping[str, int]):
    """Align two daily count maps over the union of their dates, 0-filled."""
    labels = sorted(set(inquiries) | set(conversions))
    return {
        'labels': labels,
        'series': {
            'inquiries': [inquiries.get(day, 0) for day in labels],
            'conversions': [conversions.get(day, 0) for day in labels],
        },
    }


# ── Attribution ──────────────────────────────────────────────────────────────

def _group():
    return {'count': 0, 'paidCount': 0, 'paidRevenue': 0.0}


def _bump(group, record):
    group['count'] += 1
    if record.is_paid:
        group['paidCount'] += 1
        group['paidRevenue'] += record.final_amount


def _ranked(groups: Mapping[str, dict], key_name) -> List[dict]:
    rows = [
        {key_name: key, 'count': g['count'], 'paidCount': g['paidCount'],
         'paidRevenue': _money(g['paidRevenue'])}
        for key, g in groups.items()
    ]
    rows.sort(key=lambda row: row['paidCount'], reverse=True)
    return rows


def campaign_attribution(records) -> List[dict]:
    """
    Campaign -> (source / medium, content, term) rollup.

    Campaigns are ranked by paid revenue, sub-groups by paid count, both
    descending. Ties keep first-seen order.
    """
    campaigns = {}
    for record in records:
        name = record.utm_campaign or ORGANIC_CAMPAIGN
        campaign = campaigns.get(name)
        if campaign is None:
            campaign = campaigns[name] = {
                'totals': _group(),
                'sourceMedium': defaultdict(_group),
                'content': defaultdict(_group),
                'term': defaultdict(_group),
            }

        source = record.utm_source or DIRECT_SOURCE
        medium = record.utm_medium or NO_MEDIUM
        _bump(campaign['totals'], record)
        _bump(campaign['sourceMedium'][f'{source} / {medium}'], record)
        _bump(campaign['content'][record.utm_content or NOT_SPECIFIED], record)
        _bump(campaign['term'][record.utm_term or NOT_SPECIFIED], record)

    result = []
    for name, campaign in campaigns.items():
        totals = campaign['totals']
        result.append({
            'campaign': name,
            'count': totals['count'],
            'paidCount': totals['paidCount'],
            'paidRevenue': _money(totals['paidRevenue']),
            'averageOrderValue': average(totals['paidRevenue'], totals['paidCount']),
            'conversionRate': conversion_rate(totals['paidCount'], totals['count']),
            'sourceMedium': _ranked(campaign['sourceMedium'], 'sourceMedium'),
            'content': _ranked(campaign['content'], 'content'),
            'term': _ranked(campaign['term'], 'term'),
        })
    result.sort(key=lambda row: row['paidRevenue'], reverse=True)
    return result


# ── Breakdowns ───────────────────────────────────────────────────────────────

def course_statistics(records) -> List[dict]:
    stats = defaultdict(lambda: {'total': 0, 'paid': 0, 'revenue': 0.0})
    for record in records:
        entry = stats[record.normalized_course]
        entry['total'] += 1
        if record.is_paid:
            entry['paid'] += 1
            entry['revenue'] += record.final_amount
    rows = [
        {'course': course, 'total': s['total'], 'paid': s['paid'], 'revenue': _money(s['revenue'])}
        for course, s in stats.items()
    ]
    rows.sort(key=lambda row: row['revenue'], reverse=True)
    return rows


def payment_method_distribution(records: Iterable) -> Dict[str, int]:
    counts = {method: 0 for method in PAYMENT_METHODS}
    for record in records:
        counts[record.payment_method if record.payment_method in counts else 'other'] += 1
    return counts


def language_breakdown(records) -> Dict[str, int]:
    counts = defaultdict(int)
    for record in records:
        counts[record.language or 'unknown'] += 1
    return dict(counts)


def experience_breakdown(records) -> Dict[str, int]:
    counts = defaultdict(int)
    for record in records:
        raw = (record.experience or '').strip()
        counts[EXPERIENCE_LABELS.get(raw, raw or 'Not specified')] += 1
    return dict(counts)
