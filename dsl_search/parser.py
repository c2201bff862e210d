"""
Clause parser for Elasticsearch-style search requests.

Normalizes either a structured query document or a compact ``field:value``
string into a NormalizedQuery. Parsing is lenient: unrecognized clauses and
aggregation kinds are skipped rather than raising, so a partially malformed
request still yields a best-effort query.

Known approximation: the ``must``, ``should``, ``must_not`` and ``filter``
lists of a bool clause are all flattened into one conjunctive filter list.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    AggKind,
    AggSpec,
    NormalizedQuery,
    RangeFilter,
    SortSpec,
    TermFilter,
    TextSearch,
    WildcardFilter,
)

logger = logging.getLogger(__name__)

DEFAULT_TEXT_FIELD = 'message'
DEFAULT_DATE_FIELDS = ('timestamp', 'created_at', 'updated_at', 'date')
DEFAULT_SIZE = 100
DEFAULT_FUZZY_FUZZINESS = 2

BOOLEAN_KEYWORDS = frozenset({'AND', 'OR', 'NOT'})

# Largest value SQLite can bind as an INTEGER
MAX_SQL_INTEGER = 2 ** 63 - 1
BOOL_SECTIONS = ('must', 'should', 'must_not', 'filter')
FREE_TEXT_FIELDS = frozenset({'_all', 'q'})

DATE_MATH_PATTERN = re.compile(r'^now(?:[+-]\d+[smhdw])?$')


class Tokenizer:
    """Splits a compact query string on whitespace, keeping quoted spans."""

    TOKEN_PATTERN = re.compile(r'''(?:[^\s"']+|"[^"]*"|'[^']*')+''')

    def __init__(self, query: str):
        self.query = query
        self.tokens: List[str] = self.TOKEN_PATTERN.findall(query)

    def get_tokens(self) -> List[str]:
        """Return the list of tokens."""
        return self.tokens


def coerce_fuzziness(value: Any) -> float:
    """Convert a declared fuzziness to a number; 'AUTO' counts as 2."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if value.strip().upper().startswith('AUTO'):
            return float(DEFAULT_FUZZY_FUZZINESS)
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def parse_date(value: str) -> str:
    """Normalize a date string to ISO-8601 UTC.

    Date-math expressions ('now', 'now-1h') are returned unchanged and are
    resolved at compile time. Unparseable values are returned as given.
    """
    if DATE_MATH_PATTERN.match(value):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def _non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return min(max(0, number), MAX_SQL_INTEGER)


def _scalar_bound(value: Any) -> Any:
    """Keep a range bound only if it can be bound as a single SQL value."""
    return value if isinstance(value, (str, int, float, bool)) else None


def _unwrap_value(value: Any, key: str = 'value') -> Any:
    """Accept both the short ``{field: x}`` and long ``{field: {value: x}}`` forms."""
    if isinstance(value, dict) and key in value:
        return value[key]
    return value


class ClauseParser:
    """Parses raw search requests into NormalizedQuery objects."""

    def __init__(
        self,
        text_field: str = DEFAULT_TEXT_FIELD,
        date_fields: Sequence[str] = DEFAULT_DATE_FIELDS,
        default_size: int = DEFAULT_SIZE,
    ):
        """Initialize the parser.

        Args:
            text_field: Canonical free-text column used when none is given
            date_fields: Field names treated as dates in compact strings
            default_size: Page size used when the request omits one
        """
        self.text_field = text_field
        self.date_fields = frozenset(date_fields)
        self.default_size = default_size

        self._clause_handlers = [
            ('bool', self._parse_bool),
            ('match', self._parse_match),
            ('term', self._parse_term),
            ('range', self._parse_range),
            ('wildcard', self._parse_wildcard),
            ('fuzzy', self._parse_fuzzy),
            ('query_string', self._parse_query_string),
            ('match_all', self._parse_match_all),
        ]

    def parse(self, raw_query: Any) -> NormalizedQuery:
        """Parse a structured document or compact string.

        Args:
            raw_query: A dict query document or a compact query string

        Returns:
            The normalized query; anything unrecognized is left out
        """
        if isinstance(raw_query, str):
            return self.parse_compact(raw_query)

        parsed = NormalizedQuery(size=self.default_size)
        if not isinstance(raw_query, dict):
            logger.debug(f"Ignoring unsupported raw query type: {type(raw_query).__name__}")
            return parsed

        if 'query' in raw_query:
            self._parse_clause(raw_query['query'], parsed)

        aggregations = raw_query.get('aggs', raw_query.get('aggregations'))
        if isinstance(aggregations, dict):
            parsed.aggregations = self._parse_aggregations(aggregations)

        if raw_query.get('sort') is not None:
            parsed.sort = self._parse_sort(raw_query['sort'])

        if raw_query.get('size') is not None:
            parsed.size = _non_negative_int(raw_query['size'], self.default_size)
        if raw_query.get('from') is not None:
            parsed.from_ = _non_negative_int(raw_query['from'], 0)

        return parsed

    def parse_compact(self, query: str) -> NormalizedQuery:
        """Parse a compact string such as ``severity:error source:api disk``.

        Boolean keywords are recognized and dropped; they are not evaluated.
        """
        parsed = NormalizedQuery(
            sort=[SortSpec('timestamp', 'DESC')],
            size=self.default_size,
        )

        for token in Tokenizer(query).get_tokens():
            if ':' in token:
                field_name, value = token.split(':', 1)
                if field_name in FREE_TEXT_FIELDS:
                    parsed.text_search = TextSearch(self.text_field, _strip_quotes(value))
                elif field_name in self.date_fields:
                    parsed.filters.append(
                        RangeFilter(field_name, gte=parse_date(_strip_quotes(value)))
                    )
                else:
                    parsed.filters.append(TermFilter(field_name, _strip_quotes(value)))
            elif token.upper() not in BOOLEAN_KEYWORDS:
                parsed.text_search = TextSearch(self.text_field, _strip_quotes(token))

        return parsed

    def _parse_clause(self, clause: Any, parsed: NormalizedQuery) -> None:
        if not isinstance(clause, dict):
            return
        for kind, handler in self._clause_handlers:
            if kind in clause:
                body = clause[kind]
                if isinstance(body, dict):
                    handler(body, parsed)
                return
        logger.debug(f"Skipping unrecognized clause: {sorted(clause)}")

    def _parse_bool(self, bool_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for section in BOOL_SECTIONS:
            clauses = bool_query.get(section)
            if clauses is None:
                continue
            if not isinstance(clauses, list):
                clauses = [clauses]
            for sub_clause in clauses:
                self._parse_clause(sub_clause, parsed)

    def _parse_match(self, match_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for field_name, value in match_query.items():
            if isinstance(value, dict):
                if value.get('query') is None:
                    continue
                fuzziness = coerce_fuzziness(value.get('fuzziness', 0))
                parsed.text_search = TextSearch(field_name, str(value['query']), fuzziness)
                if fuzziness > 0:
                    parsed.fuzzy = True
            elif value is not None:
                parsed.text_search = TextSearch(field_name, str(value))

    def _parse_term(self, term_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for field_name, value in term_query.items():
            value = _unwrap_value(value)
            if isinstance(value, (dict, list)):
                continue
            parsed.filters.append(TermFilter(field_name, value))

    def _parse_range(self, range_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for field_name, bounds in range_query.items():
            if not isinstance(bounds, dict):
                continue
            range_filter = RangeFilter(
                field_name,
                gte=_scalar_bound(bounds.get('gte')),
                lte=_scalar_bound(bounds.get('lte')),
                gt=_scalar_bound(bounds.get('gt')),
                lt=_scalar_bound(bounds.get('lt')),
            )
            if range_filter.has_bounds:
                parsed.filters.append(range_filter)

    def _parse_wildcard(self, wildcard_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for field_name, pattern in wildcard_query.items():
            pattern = _unwrap_value(pattern)
            if isinstance(pattern, dict):
                pattern = pattern.get('wildcard')
            if isinstance(pattern, str):
                parsed.filters.append(WildcardFilter(field_name, pattern))

    def _parse_fuzzy(self, fuzzy_query: Dict[str, Any], parsed: NormalizedQuery) -> None:
        for field_name, config in fuzzy_query.items():
            if isinstance(config, dict):
                value = config.get('value')
                fuzziness = coerce_fuzziness(config.get('fuzziness', DEFAULT_FUZZY_FUZZINESS))
            else:
                value = config
                fuzziness = float(DEFAULT_FUZZY_FUZZINESS)
            if value is None:
                continue
            parsed.text_search = TextSearch(field_name, str(value), fuzziness)
            parsed.fuzzy = True

    def _parse_query_string(self, query_string: Dict[str, Any], parsed: NormalizedQuery) -> None:
        query = query_string.get('query')
        if query is None:
            return
        fields = query_string.get('fields') or []
        field_name = query_string.get('default_field') or (fields[0] if fields else None)
        parsed.text_search = TextSearch(
            field_name or self.text_field,
            str(query),
            is_query_string=True,
        )

    def _parse_match_all(self, match_all: Dict[str, Any], parsed: NormalizedQuery) -> None:
        """match_all narrows nothing."""

    def _parse_aggregations(self, aggregations: Dict[str, Any]) -> Dict[str, AggSpec]:
        specs: Dict[str, AggSpec] = {}
        for name, config in aggregations.items():
            spec = self._parse_aggregation(config) if isinstance(config, dict) else None
            if spec is None:
                logger.debug(f"Skipping unrecognized aggregation '{name}'")
                continue
            specs[name] = spec
        return specs

    def _parse_aggregation(self, config: Dict[str, Any]) -> Optional[AggSpec]:
        for kind in AggKind:
            if kind.value not in config:
                continue
            body = config[kind.value]
            if not isinstance(body, dict):
                body = {}
            if kind is AggKind.TERMS:
                size = body.get('size')
                return AggSpec(
                    kind,
                    field=body.get('field'),
                    size=_non_negative_int(size, 10) if size is not None else None,
                )
            if kind is AggKind.DATE_HISTOGRAM:
                interval = (
                    body.get('interval')
                    or body.get('fixed_interval')
                    or body.get('calendar_interval')
                )
                return AggSpec(kind, field=body.get('field'), interval=interval)
            return AggSpec(kind, field=body.get('field'))
        return None

    def _parse_sort(self, sort: Any) -> List[SortSpec]:
        entries = sort if isinstance(sort, list) else [sort]
        specs: List[SortSpec] = []
        for entry in entries:
            if isinstance(entry, str):
                specs.append(SortSpec(entry, 'DESC'))
            elif isinstance(entry, dict):
                for field_name, direction in entry.items():
                    if isinstance(direction, dict):
                        direction = direction.get('order')
                    specs.append(SortSpec(field_name, _normalize_direction(direction)))
        return specs


def _normalize_direction(direction: Any) -> str:
    if isinstance(direction, str) and direction.strip().lower() == 'asc':
        return 'ASC'
    return 'DESC'


def _strip_quotes(value: str) -> str:
    return value.replace('"', '').replace("'", '')


def parse_query(raw_query: Any, text_field: str = DEFAULT_TEXT_FIELD) -> NormalizedQuery:
    """Parse a raw search request with default settings.

    Args:
        raw_query: Structured query document or compact query string
        text_field: Canonical free-text column

    Returns:
        The normalized query
    """
    return ClauseParser(text_field=text_field).parse(raw_query)
