"""
Analytics service — wires the event store, ledger reader, filter engine,
aggregations and result cache together.

One instance is built per process by build_analytics_service() and stored on
the Flask app; request handlers get it through current_app.
"""
import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from leadfunnel.config import EVENTS_DEFAULT_LIMIT, TIMESERIES_METRICS
from leadfunnel.errors import StorageError, ValidationError
from leadfunnel.models.event import EventInput
from leadfunnel.models.filters import FilterSpec
from leadfunnel.services import aggregation, filters
from leadfunnel.services.cache import ResultCache, make_cache_key
from leadfunnel.services.event_store import build_event_backend
from leadfunnel.services.ledger import LedgerReader, SheetsLedgerSource

logger = logging.getLogger('services.analytics')

# Ledger records carry no event type
_LEDGER_IGNORED = ('event_type',)


class AnalyticsService:
    def __init__(self, event_store, ledger_reader, cache=None):
        self.event_store = event_store
        self.ledger_reader = ledger_reader
        self.cache = cache if cache is not None else ResultCache()

    @property
    def persistence(self):
        return self.event_store.persistence

    # ── Events ────────────────────────────────────────────────────────────

    def record_event(self, payload):
        event = EventInput.from_payload(payload)
        result = self.event_store.append(event)
        if not result.durable:
            logger.warning("Event %s (%s) stored in volatile memory tier", result.id, event.event_type)
        return result

    def query_events(self, spec: FilterSpec, limit=EVENTS_DEFAULT_LIMIT):
        return self.event_store.query(spec, limit=limit)

    # ── Ledger ────────────────────────────────────────────────────────────

    def ledger_records(self, spec: FilterSpec) -> List:
        records = self.ledger_reader.fetch_all()
        return filters.apply(records, spec.without(*_LEDGER_IGNORED))

    def _cached(self, namespace, spec, compute, *extra):
        key = make_cache_key(namespace, spec, *extra)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.cache.set(key, value)
        return value

    # ── Summary ───────────────────────────────────────────────────────────

    def funnel(self, spec: FilterSpec):
        counts = self.event_store.funnel_counts(spec.dates_only())
        return aggregation.funnel_kpis(counts)

    def _try_funnel(self, spec):
        try:
            return self.funnel(spec)
        except (StorageError, SQLAlchemyError) as e:
            logger.error("Funnel unavailable, returning summary without it: %s", e)
            return None

    def summary(self, spec: FilterSpec):
        def compute():
            records = self.ledger_records(spec)
            result = {
                'success': True,
                'summary': aggregation.summary_kpis(records),
                'count': len(records),
                'persistence': self.persistence,
            }
            result.update(aggregation.revenue_rollups(records))
            funnel = self._try_funnel(spec)
            if funnel is not None:
                result['funnel'] = funnel
            return result

        return self._cached('summary', spec, compute)

    # ── Time series ───────────────────────────────────────────────────────

    def timeseries(self, metric, spec: FilterSpec):
        metric = (metric or 'daily_revenue').strip().lower()
        if metric not in TIMESERIES_METRICS:
            raise ValidationError(f"Unknown metric '{metric}'", {'allowed': list(TIMESERIES_METRICS)})

        def compute():
            if metric == 'daily_revenue':
                data = aggregation.revenue_series(self.ledger_records(spec))
            else:
                window = spec.dates_only()
                if metric == 'daily_inquiries':
                    data = aggregation.to_series(self.event_store.daily_distinct_inquiries(window))
                elif metric == 'daily_conversions':
                    data = aggregation.to_series(
                        self.event_store.daily_distinct_inquiries(window, conversions_only=True))
                else:
                    data = aggregation.merge_daily_funnel(
                        self.event_store.daily_distinct_inquiries(window),
                        self.event_store.daily_distinct_inquiries(window, conversions_only=True),
                    )
            return {'success': True, 'metric': metric, **data}

        return self._cached('timeseries', spec, compute, metric)

    # ── Breakdowns ────────────────────────────────────────────────────────

    def attribution(self, spec: FilterSpec):
        def compute():
            records = self.ledger_records(spec)
            return {'success': True, 'campaigns': aggregation.campaign_attribution(records),
                    'count': len(records)}

        return self._cached('attribution', spec, compute)

    def course_statistics(self, spec: FilterSpec):
        def compute():
            records = self.ledger_records(spec)
            return {'success': True, 'courses': aggregation.course_statistics(records)}

        return self._cached('courses', spec, compute)

    def dashboard(self, spec: FilterSpec):
        """
        Overall vs. filtered view for the admin dashboard.

        Reuses the same filter predicate and aggregations as the summary
        endpoints over a single ledger fetch.
        """
        def compute():
            everything = self.ledger_reader.fetch_all()
            filtered = filters.apply(everything, spec.without(*_LEDGER_IGNORED))
            return {
                'success': True,
                'overall': aggregation.summary_kpis(everything),
                'filtered': aggregation.summary_kpis(filtered),
                'isFiltered': len(filtered) != len(everything),
                'dailyRevenue': aggregation.revenue_series(filtered),
                'paymentMethods': aggregation.payment_method_distribution(filtered),
                'languages': aggregation.language_breakdown(filtered),
                'experience': aggregation.experience_breakdown(filtered),
                'courses': aggregation.course_statistics(filtered),
                'campaigns': aggregation.campaign_attribution(filtered),
                'courseOptions': sorted({r.normalized_course for r in everything}),
                'count': len(filtered),
            }

        return self._cached('dashboard', spec, compute)


def build_analytics_service(config, breaker=None):
    """Construct the per-process service from an EngineConfig."""
    source = SheetsLedgerSource(
        sheet_id=config.sheet_id,
        service_account_email=config.service_account_email,
        private_key=config.private_key,
        sheet_title=config.sheet_title,
        timeout=config.ledger_timeout_seconds,
    )
    if not source.configured:
        logger.warning("Google Sheets credentials not set — ledger reads will fail")
    reader = LedgerReader(source, breaker=breaker, default_language=config.default_language)
    return AnalyticsService(
        event_store=build_event_backend(config),
        ledger_reader=reader,
        cache=ResultCache(ttl_seconds=config.cache_ttl_seconds),
    )
