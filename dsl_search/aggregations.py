"""
Aggregation evaluator.

Runs one grouped or scalar query per requested aggregation over the
structurally filtered event set. Free-text and fuzzy relevance never narrow
aggregations. A failing aggregation yields an empty result for its own key
and never affects the others.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .compiler import QueryCompiler, is_identifier
from .models import AggKind, AggSpec, NormalizedQuery
from .store import EventStore

DEFAULT_TERMS_SIZE = 10

# SQLite strftime formats for the supported histogram granularities.
INTERVAL_FORMATS = {
    'minute': '%Y-%m-%d %H:%M',
    'hour': '%Y-%m-%d %H',
    'day': '%Y-%m-%d',
}

INTERVAL_ALIASES = {
    '1m': 'minute',
    'minute': 'minute',
    '1h': 'hour',
    'hour': 'hour',
    '1d': 'day',
    'day': 'day',
}

METRIC_FUNCTIONS = {
    AggKind.AVG: 'AVG',
    AggKind.SUM: 'SUM',
    AggKind.COUNT: 'COUNT',
}


def empty_result(spec: AggSpec) -> Dict[str, Any]:
    """Return the safe default for a failed aggregation."""
    if spec.kind in (AggKind.TERMS, AggKind.DATE_HISTOGRAM):
        return {'buckets': []}
    return {'value': 0}


def resolve_interval(interval: Optional[str]) -> str:
    """Map a requested interval to a supported granularity, defaulting to hour."""
    if isinstance(interval, str):
        return INTERVAL_ALIASES.get(interval.strip().lower(), 'hour')
    return 'hour'


class AggregationEvaluator:
    """Evaluates aggregation specs against the event store."""

    def __init__(
        self,
        store: EventStore,
        compiler: QueryCompiler,
        terms_default_size: int = DEFAULT_TERMS_SIZE,
        max_workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the evaluator.

        Args:
            store: Event store used to run the aggregation queries
            compiler: Compiler providing the shared filter translation
            terms_default_size: Bucket limit for terms aggregations without a size
            max_workers: Aggregations evaluated concurrently; 1 runs them in order
            logger: Logger for per-aggregation failures
        """
        self.store = store
        self.compiler = compiler
        self.terms_default_size = terms_default_size
        self.max_workers = max(1, max_workers)
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(
        self,
        aggregations: Dict[str, AggSpec],
        query: NormalizedQuery,
    ) -> Dict[str, Dict[str, Any]]:
        """Evaluate every aggregation independently.

        Args:
            aggregations: Aggregation specs keyed by name
            query: The normalized query whose filters scope the aggregations

        Returns:
            Aggregation results keyed by name, in request order
        """
        if not aggregations:
            return {}

        names = list(aggregations)
        if self.max_workers == 1 or len(names) == 1:
            return {name: self._evaluate_one(name, aggregations[name], query) for name in names}

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
            futures = {
                name: pool.submit(self._evaluate_one, name, aggregations[name], query)
                for name in names
            }
            return {name: futures[name].result() for name in names}

    def _evaluate_one(self, name: str, spec: AggSpec, query: NormalizedQuery) -> Dict[str, Any]:
        try:
            if spec.kind is AggKind.TERMS:
                return self._terms(spec, query)
            elif spec.kind is AggKind.DATE_HISTOGRAM:
                return self._date_histogram(spec, query)
            elif spec.kind in METRIC_FUNCTIONS:
                return self._metric(spec, query)
            raise ValueError(f"Unsupported aggregation kind: {spec.kind}")
        except Exception as e:
            self.logger.warning(f"Aggregation '{name}' ({spec.kind.value}) failed: {e}")
            return empty_result(spec)

    def _terms(self, spec: AggSpec, query: NormalizedQuery) -> Dict[str, Any]:
        field_name = self._require_field(spec.field)
        size = spec.size if spec.size is not None else self.terms_default_size

        params: List[Any] = []
        sql = self.compiler.base_select(f'{field_name} AS bucket_key, COUNT(*) AS doc_count')
        sql += self.compiler.where_clause(query.filters, params)
        sql += f' GROUP BY {field_name} ORDER BY doc_count DESC, bucket_key ASC LIMIT ?'
        params.append(size)

        rows = self.store.query(sql, params)
        return {
            'buckets': [
                {'key': row['bucket_key'], 'doc_count': row['doc_count']}
                for row in rows
            ]
        }

    def _date_histogram(self, spec: AggSpec, query: NormalizedQuery) -> Dict[str, Any]:
        field_name = self._require_field(spec.field or 'timestamp')
        date_format = INTERVAL_FORMATS[resolve_interval(spec.interval)]
        bucket_expr = f"strftime('{date_format}', {field_name})"

        params: List[Any] = []
        sql = self.compiler.base_select(f'{bucket_expr} AS bucket_key, COUNT(*) AS doc_count')
        sql += self.compiler.where_clause(query.filters, params)
        sql += f' GROUP BY {bucket_expr} ORDER BY bucket_key'

        rows = self.store.query(sql, params)
        return {
            'buckets': [
                {'key': row['bucket_key'], 'key_as_string': row['bucket_key'], 'doc_count': row['doc_count']}
                for row in rows
            ]
        }

    def _metric(self, spec: AggSpec, query: NormalizedQuery) -> Dict[str, Any]:
        function = METRIC_FUNCTIONS[spec.kind]
        target = '*' if spec.kind is AggKind.COUNT else self._require_field(spec.field)

        params: List[Any] = []
        sql = self.compiler.base_select(f'{function}({target}) AS value')
        sql += self.compiler.where_clause(query.filters, params)

        row = self.store.get(sql, params)
        value = row.get('value') if row else None
        return {'value': value if value is not None else 0}

    @staticmethod
    def _require_field(field_name: Optional[str]) -> str:
        if not is_identifier(field_name):
            raise ValueError(f"Invalid aggregation field: {field_name!r}")
        return field_name
