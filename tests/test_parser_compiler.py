"""
Unit tests for the clause parser and the backend query compiler.

Covers structured and compact parsing, lenient handling of malformed input,
parameter binding, range/wildcard/query-string translation and sorting.
"""

import json
from datetime import datetime, timezone

import pytest

from dsl_search import (
    AggKind,
    ClauseParser,
    FilterKind,
    NormalizedQuery,
    QueryCompiler,
    RangeFilter,
    SortSpec,
    TermFilter,
    TextSearch,
    WildcardFilter,
    compile_query,
    parse_query,
)
from dsl_search.parser import MAX_SQL_INTEGER


class TestStructuredParser:
    """Test cases for parsing structured query documents."""

    def test_parse_bool_must(self):
        """Test parsing term and range clauses under bool.must."""
        parsed = parse_query({
            "query": {
                "bool": {
                    "must": [
                        {"term": {"severity": "error"}},
                        {"range": {"timestamp": {"gte": "2025-01-01T00:00:00Z"}}},
                    ]
                }
            }
        })

        assert parsed.filters == [
            TermFilter("severity", "error"),
            RangeFilter("timestamp", gte="2025-01-01T00:00:00Z"),
        ]
        assert parsed.filters[0].kind is FilterKind.TERM
        assert parsed.filters[1].kind is FilterKind.RANGE
        assert parsed.text_search is None
        assert parsed.fuzzy is False

    def test_bool_sections_are_flattened(self):
        """Test that should, must_not and filter all feed the same filter list."""
        parsed = parse_query({
            "query": {
                "bool": {
                    "should": [{"term": {"source": "api"}}],
                    "must_not": {"term": {"severity": "debug"}},
                    "filter": [{"wildcard": {"device_id": "dev-*"}}],
                }
            }
        })

        assert parsed.filters == [
            TermFilter("source", "api"),
            TermFilter("severity", "debug"),
            WildcardFilter("device_id", "dev-*"),
        ]

    def test_nested_bool(self):
        """Test recursion into nested bool clauses."""
        parsed = parse_query({
            "query": {"bool": {"must": [{"bool": {"must": [{"term": {"source": "db"}}]}}]}}
        })

        assert parsed.filters == [TermFilter("source", "db")]

    def test_defaults_are_materialized(self):
        """Test default size, from, sort and aggregations."""
        parsed = parse_query({})

        assert parsed.size == 100
        assert parsed.from_ == 0
        assert parsed.sort == []
        assert parsed.aggregations == {}
        assert parsed.filters == []

    def test_match_scalar(self):
        """Test a scalar match becomes a non-fuzzy text search."""
        parsed = parse_query({"query": {"match": {"message": "timeout"}}})

        assert parsed.text_search == TextSearch("message", "timeout")
        assert parsed.fuzzy is False

    def test_match_with_fuzziness(self):
        """Test a match with fuzziness sets the fuzzy flag."""
        parsed = parse_query({
            "query": {"match": {"message": {"query": "timeot", "operator": "and", "fuzziness": 1}}}
        })

        assert parsed.text_search.query == "timeot"
        assert parsed.text_search.fuzziness == 1
        assert parsed.fuzzy is True

    def test_match_with_auto_fuzziness(self):
        """Test 'AUTO' fuzziness counts as fuzzy."""
        parsed = parse_query({"query": {"match": {"message": {"query": "x", "fuzziness": "AUTO"}}}})

        assert parsed.fuzzy is True
        assert parsed.text_search.fuzziness == 2

    def test_match_with_zero_fuzziness(self):
        """Test that zero fuzziness is exact."""
        parsed = parse_query({"query": {"match": {"message": {"query": "x", "fuzziness": 0}}}})

        assert parsed.fuzzy is False

    def test_term_long_form(self):
        """Test the {field: {value: x}} term form."""
        parsed = parse_query({"query": {"term": {"severity": {"value": "warning"}}}})

        assert parsed.filters == [TermFilter("severity", "warning")]

    def test_range_keeps_present_bounds(self):
        """Test that only the bounds given are retained."""
        parsed = parse_query({"query": {"range": {"timestamp": {"gt": "a", "lt": "b"}}}})

        range_filter = parsed.filters[0]
        assert range_filter.gt == "a"
        assert range_filter.lt == "b"
        assert range_filter.gte is None
        assert range_filter.lte is None

    def test_range_without_bounds_is_dropped(self):
        """Test that a range with no bounds never becomes a filter."""
        parsed = parse_query({"query": {"range": {"timestamp": {"format": "strict_date"}}}})

        assert parsed.filters == []

    def test_range_drops_non_scalar_bounds(self):
        """Test that object or list bounds are discarded."""
        parsed = parse_query({"query": {"bool": {"must": [
            {"range": {"timestamp": {"gte": {"x": 1}, "lt": "2025-02-01T00:00:00Z"}}},
            {"range": {"id": {"gt": [1, 2]}}},
        ]}}})

        assert parsed.filters == [RangeFilter("timestamp", lt="2025-02-01T00:00:00Z")]

    def test_wildcard_is_not_translated_at_parse_time(self):
        """Test that glob patterns are stored verbatim."""
        parsed = parse_query({"query": {"wildcard": {"source": "ap?-*"}}})

        assert parsed.filters == [WildcardFilter("source", "ap?-*")]
        assert parsed.filters[0].kind is FilterKind.WILDCARD

    def test_fuzzy_scalar_defaults_to_fuzziness_two(self):
        """Test that a fuzzy clause always sets fuzzy."""
        parsed = parse_query({"query": {"fuzzy": {"message": "databse"}}})

        assert parsed.fuzzy is True
        assert parsed.text_search == TextSearch("message", "databse", 2)

    def test_fuzzy_with_config(self):
        """Test the {value, fuzziness} fuzzy form."""
        parsed = parse_query({"query": {"fuzzy": {"source": {"value": "apj", "fuzziness": 1}}}})

        assert parsed.fuzzy is True
        assert parsed.text_search == TextSearch("source", "apj", 1)

    def test_query_string_default_field(self):
        """Test query_string with an explicit default field."""
        parsed = parse_query({
            "query": {"query_string": {"query": "disk AND full", "default_field": "category"}}
        })

        assert parsed.text_search == TextSearch("category", "disk AND full", is_query_string=True)

    def test_query_string_falls_back_to_fields_then_message(self):
        """Test query_string field resolution order."""
        from_fields = parse_query({"query": {"query_string": {"query": "x", "fields": ["source"]}}})
        from_default = parse_query({"query": {"query_string": {"query": "x"}}})

        assert from_fields.text_search.field == "source"
        assert from_default.text_search.field == "message"

    def test_unknown_clause_is_skipped(self):
        """Test that unrecognized clauses contribute nothing."""
        parsed = parse_query({
            "query": {
                "bool": {
                    "must": [
                        {"geo_distance": {"distance": "10km"}},
                        {"term": {"source": "api"}},
                        "not a clause",
                    ]
                }
            }
        })

        assert parsed.filters == [TermFilter("source", "api")]

    def test_match_all_is_a_no_op(self):
        """Test that match_all adds no filter or text search."""
        parsed = parse_query({"query": {"match_all": {}}})

        assert parsed.filters == []
        assert parsed.text_search is None

    def test_non_dict_raw_query(self):
        """Test that unsupported raw query types yield an empty query."""
        parsed = parse_query(42)

        assert parsed == NormalizedQuery()

    def test_aggregations(self):
        """Test parsing every supported aggregation kind."""
        parsed = parse_query({
            "aggs": {
                "by_source": {"terms": {"field": "source", "size": 5}},
                "over_time": {"date_histogram": {"field": "timestamp", "fixed_interval": "1d"}},
                "mean": {"avg": {"field": "id"}},
                "total": {"sum": {"field": "id"}},
                "rows": {"count": {}},
                "odd": {"percentiles": {"field": "id"}},
            }
        })

        assert set(parsed.aggregations) == {"by_source", "over_time", "mean", "total", "rows"}
        assert parsed.aggregations["by_source"].kind is AggKind.TERMS
        assert parsed.aggregations["by_source"].size == 5
        assert parsed.aggregations["over_time"].interval == "1d"
        assert parsed.aggregations["rows"].kind is AggKind.COUNT

    def test_aggregations_long_key(self):
        """Test that 'aggregations' is accepted as well as 'aggs'."""
        parsed = parse_query({"aggregations": {"n": {"count": {}}}})

        assert list(parsed.aggregations) == ["n"]

    def test_sort_forms(self):
        """Test bare, pair and order-object sort entries."""
        parsed = parse_query({
            "sort": ["severity", {"timestamp": "asc"}, {"source": {"order": "desc"}}, {"id": "sideways"}]
        })

        assert parsed.sort == [
            SortSpec("severity", "DESC"),
            SortSpec("timestamp", "ASC"),
            SortSpec("source", "DESC"),
            SortSpec("id", "DESC"),
        ]

    def test_single_sort_object(self):
        """Test a sort given as a single object rather than a list."""
        parsed = parse_query({"sort": {"timestamp": "asc"}})

        assert parsed.sort == [SortSpec("timestamp", "ASC")]

    def test_pagination_coercion(self):
        """Test size/from coercion and clamping."""
        assert parse_query({"size": "5", "from": 2}).size == 5
        assert parse_query({"size": -3}).size == 0
        assert parse_query({"size": "many"}).size == 100
        assert parse_query({"from": None}).from_ == 0

    def test_pagination_out_of_range_values(self):
        """Test infinite and oversized size/from values stay bindable."""
        parsed = parse_query(json.loads('{"query": {"match_all": {}}, "size": Infinity, "from": NaN}'))
        huge = parse_query({"size": 10 ** 20, "from": 10 ** 20})

        assert parsed.size == 100
        assert parsed.from_ == 0
        assert huge.size == MAX_SQL_INTEGER
        assert huge.from_ == MAX_SQL_INTEGER
        assert compile_query(huge).params == (MAX_SQL_INTEGER,)

    def test_parse_is_deterministic(self):
        """Test that parsing the same request twice gives identical results."""
        raw = {
            "query": {"bool": {"must": [{"term": {"a": 1}}, {"wildcard": {"b": "x*"}}, {"range": {"c": {"lt": 3}}}]}},
            "aggs": {"t": {"terms": {"field": "a"}}},
            "sort": [{"c": "asc"}],
        }

        assert parse_query(raw) == parse_query(raw)

    def test_custom_text_field(self):
        """Test that the parser's text field is used for query_string fallback."""
        parser = ClauseParser(text_field="body")
        parsed = parser.parse({"query": {"query_string": {"query": "x"}}})

        assert parsed.text_search.field == "body"


class TestCompactParser:
    """Test cases for parsing compact query strings."""

    def test_terms_and_boolean_keywords(self):
        """Test that AND contributes no filter."""
        parsed = parse_query("severity:error AND source:api")

        assert parsed.filters == [
            TermFilter("severity", "error"),
            TermFilter("source", "api"),
        ]
        assert parsed.filters[0].kind is FilterKind.TERM
        assert parsed.text_search is None

    def test_lowercase_keywords_are_ignored(self):
        """Test boolean keyword matching is case-insensitive."""
        parsed = parse_query("timeout or not")

        assert parsed.text_search.query == "timeout"

    def test_default_sort(self):
        """Test compact strings sort by descending timestamp."""
        parsed = parse_query("severity:error")

        assert parsed.sort == [SortSpec("timestamp", "DESC")]
        assert parsed.size == 100
        assert parsed.from_ == 0

    def test_free_text_last_wins(self):
        """Test that the last bare term is the free-text search."""
        parsed = parse_query("error timeout")

        assert parsed.text_search == TextSearch("message", "timeout")

    def test_quoted_value(self):
        """Test that quoted spans stay in one token and quotes are stripped."""
        parsed = parse_query('message:"disk full" source:\'db\'')

        assert parsed.filters == [
            TermFilter("message", "disk full"),
            TermFilter("source", "db"),
        ]

    def test_date_field_becomes_range(self):
        """Test date-like fields produce a gte range filter."""
        parsed = parse_query("timestamp:2025-01-01")

        assert parsed.filters == [RangeFilter("timestamp", gte="2025-01-01T00:00:00Z")]

    def test_date_field_with_time_and_colons(self):
        """Test that only the first colon separates field from value."""
        parsed = parse_query("created_at:2025-01-01T10:30:00+02:00")

        assert parsed.filters == [RangeFilter("created_at", gte="2025-01-01T08:30:00Z")]

    def test_date_math_is_kept(self):
        """Test relative dates are left for the compiler."""
        parsed = parse_query("timestamp:now-1h")

        assert parsed.filters == [RangeFilter("timestamp", gte="now-1h")]

    def test_free_text_field_alias(self):
        """Test the q: prefix sets the free-text search."""
        parsed = parse_query("q:disk severity:error")

        assert parsed.text_search == TextSearch("message", "disk")
        assert parsed.filters == [TermFilter("severity", "error")]

    def test_empty_string(self):
        """Test that an empty string parses to no filters."""
        parsed = parse_query("")

        assert parsed.filters == []
        assert parsed.text_search is None


class TestQueryCompiler:
    """Test cases for compiling normalized queries to SQL."""

    def test_filters_in_declaration_order(self):
        """Test base select, filter conditions and limit."""
        compiled = compile_query(NormalizedQuery(filters=[
            TermFilter("severity", "error"),
            RangeFilter("timestamp", gte="2025-01-01T00:00:00Z"),
        ]))

        assert compiled.text == (
            "SELECT * FROM log_events WHERE 1=1 AND severity = ? AND timestamp >= ? LIMIT ?"
        )
        assert compiled.params == ("error", "2025-01-01T00:00:00Z", 100)

    def test_values_are_never_interpolated(self):
        """Test that attacker-controlled values only appear as parameters."""
        attack = "'; DROP TABLE logs; --"
        parsed = parse_query({
            "query": {
                "bool": {
                    "must": [
                        {"term": {"source": attack}},
                        {"wildcard": {"device_id": attack}},
                        {"range": {"timestamp": {"gte": attack}}},
                        {"match": {"message": attack}},
                    ]
                }
            }
        })
        compiled = compile_query(parsed)

        assert attack not in compiled.text
        assert "DROP" not in compiled.text
        assert attack in compiled.params
        assert compiled.text.count("?") == len(compiled.params)

    def test_compact_string_values_are_bound(self):
        """Test parameter binding for compact strings."""
        compiled = compile_query(parse_query('source:"x; DELETE FROM log_events"'))

        assert "DELETE" not in compiled.text
        assert "x; DELETE FROM log_events" in compiled.params

    def test_invalid_field_names_are_skipped(self):
        """Test that non-identifier field names never reach the SQL text."""
        parsed = NormalizedQuery(
            filters=[TermFilter("severity = 1 OR 1", "x"), TermFilter("source", "api")],
            sort=[SortSpec("timestamp; DROP TABLE log_events", "ASC")],
        )
        compiled = compile_query(parsed)

        assert compiled.text == "SELECT * FROM log_events WHERE 1=1 AND source = ? LIMIT ?"
        assert compiled.params == ("api", 100)

    def test_range_with_two_bounds(self):
        """Test that gte and lte produce two independent conditions."""
        compiled = compile_query(NormalizedQuery(filters=[RangeFilter("id", gte=2, lte=4)]))

        assert "id >= ? AND id <= ?" in compiled.text
        assert compiled.params == (2, 4, 100)

    def test_range_with_all_bounds(self):
        """Test the order of all four range comparisons."""
        compiled = compile_query(NormalizedQuery(filters=[RangeFilter("id", gte=1, lte=9, gt=0, lt=10)]))

        assert "id >= ? AND id <= ? AND id > ? AND id < ?" in compiled.text
        assert compiled.params == (1, 9, 0, 10, 100)

    def test_range_without_bounds_emits_nothing(self):
        """Test that an unbounded range is absent from the compiled query."""
        compiled = compile_query(NormalizedQuery(filters=[RangeFilter("timestamp")]))

        assert compiled.text == "SELECT * FROM log_events WHERE 1=1 LIMIT ?"
        assert compiled.params == (100,)

    def test_wildcard_translation(self):
        """Test glob to LIKE translation."""
        compiled = compile_query(NormalizedQuery(filters=[WildcardFilter("source", "ap?-*")]))

        assert "source LIKE ?" in compiled.text
        assert compiled.params[0] == "ap_-%"

    def test_text_search(self):
        """Test the substring condition for a plain text search."""
        compiled = compile_query(NormalizedQuery(text_search=TextSearch("message", "timeout")))

        assert compiled.text.endswith("AND message LIKE ? LIMIT ?")
        assert compiled.params == ("%timeout%", 100)

    def test_query_string_tokens(self):
        """Test per-token conditions with boolean keywords discarded."""
        compiled = compile_query(NormalizedQuery(
            text_search=TextSearch("message", "database AND source:api OR NOT timeout", is_query_string=True)
        ))

        assert compiled.text == (
            "SELECT * FROM log_events WHERE 1=1 "
            "AND message LIKE ? AND source LIKE ? AND message LIKE ? LIMIT ?"
        )
        assert compiled.params == ("%database%", "%api%", "%timeout%", 100)

    def test_query_string_only_keywords(self):
        """Test a query string made only of keywords adds no condition."""
        compiled = compile_query(NormalizedQuery(
            text_search=TextSearch("message", "AND OR", is_query_string=True)
        ))

        assert compiled.text == "SELECT * FROM log_events WHERE 1=1 LIMIT ?"

    def test_fuzzy_skips_text_condition(self):
        """Test that fuzzy searches fetch the structurally filtered set only."""
        compiled = compile_query(parse_query({
            "query": {"bool": {"must": [{"term": {"severity": "error"}}, {"fuzzy": {"message": "databse"}}]}}
        }))

        assert "LIKE" not in compiled.text
        assert compiled.params == ("error", 100)

    def test_sort_and_limit(self):
        """Test ORDER BY rendering and the size+from limit."""
        compiled = compile_query(parse_query({
            "sort": [{"severity": "asc"}, "timestamp"],
            "size": 10,
            "from": 20,
        }))

        assert compiled.text == (
            "SELECT * FROM log_events WHERE 1=1 ORDER BY severity ASC, timestamp DESC LIMIT ?"
        )
        assert compiled.params == (30,)

    def test_date_math_bounds_are_resolved(self):
        """Test relative range bounds become absolute timestamps."""
        fixed_now = datetime(2025, 1, 2, 12, 0, 0, tzinfo=timezone.utc)
        compiler = QueryCompiler(clock=lambda: fixed_now)

        compiled = compiler.compile(NormalizedQuery(filters=[
            RangeFilter("timestamp", gte="now-1h", lt="now"),
            RangeFilter("created_at", lte="now+2d"),
        ]))

        assert compiled.params == (
            "2025-01-02T11:00:00Z",
            "2025-01-02T12:00:00Z",
            "2025-01-04T12:00:00Z",
            100,
        )

    def test_custom_table(self):
        """Test compiling against a differently named table."""
        compiled = compile_query(NormalizedQuery(), table="events")

        assert compiled.text.startswith("SELECT * FROM events WHERE 1=1")

    def test_invalid_table_name(self):
        """Test that a non-identifier table is rejected."""
        with pytest.raises(ValueError):
            QueryCompiler(table="events; DROP TABLE x")
