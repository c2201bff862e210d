"""
Query-DSL Search Engine Package.

Parses Elasticsearch-style search requests, compiles them to parameterized
SQL, and evaluates them against an event store with fuzzy ranking,
aggregations and result caching.
"""

from .aggregations import AggregationEvaluator
from .cache import ResultCache
from .compiler import QueryCompiler, compile_query
from .config import SearchConfig, load_config
from .engine import SearchEngine
from .fuzzy import FuzzyRanker
from .models import (
    AggKind,
    AggSpec,
    CompiledQuery,
    FilterKind,
    HitDoc,
    NormalizedQuery,
    RangeFilter,
    SearchResponse,
    SortSpec,
    TermFilter,
    TextSearch,
    WildcardFilter,
)
from .parser import ClauseParser, parse_query
from .store import EventStore, SQLiteEventStore
from .templates import list_templates

__all__ = [
    'AggKind',
    'AggSpec',
    'AggregationEvaluator',
    'ClauseParser',
    'CompiledQuery',
    'EventStore',
    'FilterKind',
    'FuzzyRanker',
    'HitDoc',
    'NormalizedQuery',
    'QueryCompiler',
    'RangeFilter',
    'ResultCache',
    'SQLiteEventStore',
    'SearchConfig',
    'SearchEngine',
    'SearchResponse',
    'SortSpec',
    'TermFilter',
    'TextSearch',
    'WildcardFilter',
    'compile_query',
    'list_templates',
    'load_config',
    'parse_query',
]
