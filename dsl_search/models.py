"""
Data models for the query-DSL search engine.

Defines the normalized intermediate representation produced by the parser,
the compiled backend query, and the hit/response shapes returned to callers.
"""

import json
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class FilterKind(str, Enum):
    """Kinds of normalized filter predicates."""
    TERM = 'term'
    RANGE = 'range'
    WILDCARD = 'wildcard'


class AggKind(str, Enum):
    """Kinds of supported aggregations."""
    TERMS = 'terms'
    DATE_HISTOGRAM = 'date_histogram'
    AVG = 'avg'
    SUM = 'sum'
    COUNT = 'count'


@dataclass
class TermFilter:
    """Exact equality predicate.

    Attributes:
        field: Column name (e.g., 'severity', 'source')
        value: Scalar value the column must equal
    """
    field: str
    value: Any
    kind: FilterKind = field(default=FilterKind.TERM, init=False)


@dataclass
class RangeFilter:
    """Bounded comparison predicate.

    Attributes:
        field: Column name
        gte: Inclusive lower bound
        lte: Inclusive upper bound
        gt: Exclusive lower bound
        lt: Exclusive upper bound
    """
    field: str
    gte: Any = None
    lte: Any = None
    gt: Any = None
    lt: Any = None
    kind: FilterKind = field(default=FilterKind.RANGE, init=False)

    def bounds(self) -> List[Tuple[str, Any]]:
        """Return the (operator, value) pairs that are set, in gte/lte/gt/lt order."""
        pairs = [('>=', self.gte), ('<=', self.lte), ('>', self.gt), ('<', self.lt)]
        return [(op, value) for op, value in pairs if value is not None]

    @property
    def has_bounds(self) -> bool:
        return bool(self.bounds())


@dataclass
class WildcardFilter:
    """Glob pattern predicate using '*' and '?'."""
    field: str
    pattern: str
    kind: FilterKind = field(default=FilterKind.WILDCARD, init=False)


Filter = Union[TermFilter, RangeFilter, WildcardFilter]


@dataclass
class TextSearch:
    """Free-text search clause.

    Attributes:
        field: Column the text is matched against
        query: The text (or query-string mini syntax) to search for
        fuzziness: Declared tolerance for approximate matching, 0 means exact
        is_query_string: Whether query carries the query_string mini syntax
    """
    field: str
    query: str
    fuzziness: float = 0
    is_query_string: bool = False


@dataclass
class AggSpec:
    """A single aggregation request."""
    kind: AggKind
    field: Optional[str] = None
    size: Optional[int] = None
    interval: Optional[str] = None


@dataclass
class SortSpec:
    """One ORDER BY entry; direction is 'ASC' or 'DESC'."""
    field: str
    direction: str = 'DESC'


@dataclass
class NormalizedQuery:
    """Intermediate representation consumed by the compiler and evaluators."""
    filters: List[Filter] = field(default_factory=list)
    text_search: Optional[TextSearch] = None
    fuzzy: bool = False
    aggregations: Dict[str, AggSpec] = field(default_factory=dict)
    sort: List[SortSpec] = field(default_factory=list)
    size: int = 100
    from_: int = 0


@dataclass(frozen=True)
class CompiledQuery:
    """Backend-ready query text plus its positional parameters."""
    text: str
    params: Tuple[Any, ...] = ()


@dataclass
class HitDoc:
    """A single search hit wrapping a store row.

    Attributes:
        id: The row identifier
        source: All other row columns
        score: Similarity score, set only by fuzzy ranking
        matches: Match locations, set only by fuzzy ranking
    """
    id: Any
    source: Dict[str, Any]
    score: Optional[float] = None
    matches: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'HitDoc':
        """Build a hit from a store row, decoding the JSON metadata column."""
        source = {key: value for key, value in row.items() if key != 'id'}
        metadata = source.get('metadata')
        if isinstance(metadata, str):
            try:
                source['metadata'] = json.loads(metadata) if metadata else {}
            except ValueError:
                pass
        elif 'metadata' in source and metadata is None:
            source['metadata'] = {}
        return cls(id=row.get('id'), source=source)

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {'_id': self.id, '_source': self.source}
        if self.score is not None:
            doc['_score'] = self.score
        if self.matches is not None:
            doc['_matches'] = self.matches
        return doc


@dataclass
class SearchResponse:
    """Result of a search call.

    Attributes:
        total: Number of hits in the full ranked result set
        hits: The requested page of hits
        aggregations: Aggregation results keyed by aggregation name
        took_ms: Execution time in milliseconds
    """
    total: int
    hits: List[HitDoc]
    aggregations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    took_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hits': {
                'total': self.total,
                'hits': [hit.to_dict() for hit in self.hits],
            },
            'aggregations': self.aggregations,
            'took': self.took_ms,
        }


@dataclass(frozen=True)
class CacheEntry:
    """A cached response and the clock reading at which it was stored."""
    response: SearchResponse
    stored_at: float


@dataclass
class DateMath:
    """Relative time expression such as 'now-1h'.

    Attributes:
        value: The signed numeric offset
        unit: The time unit (s/m/h/d/w)
    """
    value: int
    unit: str

    def to_timedelta(self) -> timedelta:
        """Convert the offset to a timedelta object."""
        multipliers = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400, 'w': 604800}
        seconds = self.value * multipliers.get(self.unit, 1)
        return timedelta(seconds=seconds)
