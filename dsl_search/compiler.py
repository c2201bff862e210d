"""
Backend query compiler.

Turns a NormalizedQuery into parameterized SQL for the event store. Every
caller-supplied value is bound as a positional parameter; field names are
only emitted when they are plain identifiers, otherwise the filter or sort
entry is skipped.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from .models import (
    CompiledQuery,
    DateMath,
    Filter,
    NormalizedQuery,
    RangeFilter,
    SortSpec,
    TermFilter,
    TextSearch,
    WildcardFilter,
)
from .parser import BOOLEAN_KEYWORDS, DEFAULT_TEXT_FIELD, MAX_SQL_INTEGER

logger = logging.getLogger(__name__)

DEFAULT_TABLE = 'log_events'

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
DATE_MATH_PATTERN = re.compile(r'^now(?:([+-])(\d+)([smhdw]))?$')


def is_identifier(name: Any) -> bool:
    """Return True if name can be emitted verbatim as a column name."""
    return isinstance(name, str) and IDENTIFIER_PATTERN.match(name) is not None


def translate_wildcard(pattern: str) -> str:
    """Translate a glob pattern to LIKE syntax ('*' -> '%', '?' -> '_')."""
    return pattern.replace('*', '%').replace('?', '_')


def parse_date_math(value: str) -> Optional[DateMath]:
    """Parse 'now', 'now-15m' or 'now+1d' into a signed offset."""
    match = DATE_MATH_PATTERN.match(value)
    if not match:
        return None
    sign, amount, unit = match.groups()
    if amount is None:
        return DateMath(value=0, unit='s')
    offset = int(amount)
    return DateMath(value=-offset if sign == '-' else offset, unit=unit)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryCompiler:
    """Compiles normalized queries into parameterized SQL."""

    def __init__(
        self,
        table: str = DEFAULT_TABLE,
        text_field: str = DEFAULT_TEXT_FIELD,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize the compiler.

        Args:
            table: Event table name
            text_field: Column unqualified query-string tokens are matched against
            clock: Source of the current time for date-math bounds
        """
        if not is_identifier(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.table = table
        self.text_field = text_field
        self.clock = clock

    def compile(self, query: NormalizedQuery) -> CompiledQuery:
        """Build the hit query for a normalized query.

        Args:
            query: The normalized query

        Returns:
            CompiledQuery with SQL text and bound parameters
        """
        params: List[Any] = []
        sql = self.base_select('*') + self.where_clause(query.filters, params)

        if query.text_search is not None and not query.fuzzy:
            condition = self._text_condition(query.text_search, params)
            if condition:
                sql += f' AND {condition}'

        order_by = self._order_by(query.sort)
        if order_by:
            sql += f' ORDER BY {order_by}'

        sql += ' LIMIT ?'
        params.append(min(query.size + query.from_, MAX_SQL_INTEGER))

        return CompiledQuery(text=sql, params=tuple(params))

    def base_select(self, columns: str) -> str:
        """Return the SELECT prefix with an always-true WHERE."""
        return f'SELECT {columns} FROM {self.table} WHERE 1=1'

    def where_clause(self, filters: List[Filter], params: List[Any]) -> str:
        """Return ' AND <cond>' for each filter, appending bound values to params.

        Shared by the hit query and every aggregation query.
        """
        clause = ''
        for query_filter in filters:
            condition = self.filter_condition(query_filter, params)
            if condition:
                clause += f' AND {condition}'
        return clause

    def filter_condition(self, query_filter: Filter, params: List[Any]) -> Optional[str]:
        """Build the SQL condition for one filter.

        Returns:
            The condition text, or None when the filter contributes nothing
        """
        if not is_identifier(query_filter.field):
            logger.debug(f"Skipping filter on invalid field name: {query_filter.field!r}")
            return None

        if isinstance(query_filter, TermFilter):
            params.append(query_filter.value)
            return f'{query_filter.field} = ?'
        elif isinstance(query_filter, RangeFilter):
            conditions = []
            for operator, value in query_filter.bounds():
                params.append(self._resolve_bound(value))
                conditions.append(f'{query_filter.field} {operator} ?')
            return ' AND '.join(conditions) or None
        elif isinstance(query_filter, WildcardFilter):
            params.append(translate_wildcard(query_filter.pattern))
            return f'{query_filter.field} LIKE ?'

        logger.debug(f"Skipping unknown filter type: {type(query_filter).__name__}")
        return None

    def _resolve_bound(self, value: Any) -> Any:
        if isinstance(value, str):
            date_math = parse_date_math(value)
            if date_math is not None:
                moment = self.clock() + date_math.to_timedelta()
                return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
        return value

    def _text_condition(self, text_search: TextSearch, params: List[Any]) -> Optional[str]:
        if text_search.is_query_string:
            return self._query_string_condition(text_search, params)

        if not is_identifier(text_search.field):
            logger.debug(f"Skipping text search on invalid field name: {text_search.field!r}")
            return None
        params.append(f'%{text_search.query}%')
        return f'{text_search.field} LIKE ?'

    def _query_string_condition(self, text_search: TextSearch, params: List[Any]) -> Optional[str]:
        default_field = text_search.field if is_identifier(text_search.field) else self.text_field
        conditions = []

        for term in text_search.query.split():
            if term.upper() in BOOLEAN_KEYWORDS:
                continue
            if ':' in term:
                field_name, value = term.split(':', 1)
                if not is_identifier(field_name):
                    continue
            else:
                field_name, value = default_field, term
            params.append(f'%{value}%')
            conditions.append(f'{field_name} LIKE ?')

        return ' AND '.join(conditions) or None

    def _order_by(self, sort: List[SortSpec]) -> str:
        entries = []
        for spec in sort:
            if not is_identifier(spec.field):
                continue
            direction = 'ASC' if spec.direction == 'ASC' else 'DESC'
            entries.append(f'{spec.field} {direction}')
        return ', '.join(entries)


def compile_query(query: NormalizedQuery, table: str = DEFAULT_TABLE) -> CompiledQuery:
    """Compile a normalized query with default settings."""
    return QueryCompiler(table=table).compile(query)
