"""
Search engine facade.

Ties together parsing, compilation, store execution, fuzzy post-filtering,
aggregation and response caching behind a single search() call.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .aggregations import AggregationEvaluator
from .cache import ResultCache
from .compiler import QueryCompiler
from .config import SearchConfig
from .fuzzy import FuzzyRanker
from .models import HitDoc, NormalizedQuery, SearchResponse
from .parser import ClauseParser
from .store import EventStore
from .templates import list_templates


class SearchEngine:
    """Executes query-DSL searches against an event store."""

    def __init__(
        self,
        store: EventStore,
        config: Optional[SearchConfig] = None,
        cache: Optional[ResultCache] = None,
        ranker: Optional[FuzzyRanker] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the engine.

        Args:
            store: Event store to query (not owned by the engine)
            config: Engine settings, defaults when omitted
            cache: Result cache; a fresh one using config.cache_ttl_seconds when omitted
            ranker: Fuzzy ranker; a default one built from config when omitted
            logger: Logger for diagnostics
        """
        self.store = store
        self.config = config or SearchConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.cache = cache if cache is not None else ResultCache(self.config.cache_ttl_seconds)
        self.ranker = ranker if ranker is not None else FuzzyRanker(
            keys=self.config.fuzzy_keys,
            base_threshold=self.config.fuzzy_base_threshold,
        )

        self.parser = ClauseParser(
            text_field=self.config.text_field,
            date_fields=self.config.date_fields,
            default_size=self.config.default_size,
        )
        self.compiler = QueryCompiler(
            table=self.config.table,
            text_field=self.config.text_field,
        )
        self.aggregator = AggregationEvaluator(
            store,
            self.compiler,
            terms_default_size=self.config.terms_default_size,
            max_workers=self.config.aggregation_workers,
            logger=self.logger,
        )

    def search(self, raw_query: Any, use_cache: bool = True) -> SearchResponse:
        """Run a search.

        Args:
            raw_query: Structured query document or compact query string
            use_cache: Whether to read and populate the result cache

        Returns:
            SearchResponse with the requested page of hits and aggregations

        Raises:
            Exception: Any store failure on the hit query, unchanged
        """
        start_time = time.perf_counter()

        if use_cache:
            cached = self.cache.get(raw_query)
            if cached is not None:
                self.logger.debug("Search served from cache")
                return cached

        parsed = self.parser.parse(raw_query)
        hits = self._fetch_hits(parsed)

        if parsed.fuzzy and parsed.text_search is not None and hits:
            hits = self._apply_fuzzy(hits, parsed)

        aggregations: Dict[str, Dict[str, Any]] = {}
        if parsed.aggregations:
            aggregations = self.aggregator.evaluate(parsed.aggregations, parsed)

        response = SearchResponse(
            total=len(hits),
            hits=hits[parsed.from_:parsed.from_ + parsed.size],
            aggregations=aggregations,
            took_ms=(time.perf_counter() - start_time) * 1000,
        )

        if use_cache:
            self.cache.put(raw_query, response)

        return response

    def list_templates(self) -> Dict[str, Any]:
        """Return the named query templates."""
        return list_templates()

    def _fetch_hits(self, parsed: NormalizedQuery) -> List[HitDoc]:
        compiled = self.compiler.compile(parsed)
        self.logger.debug(f"Executing: {compiled.text} with {len(compiled.params)} params")
        try:
            rows = self.store.query(compiled.text, list(compiled.params))
        except Exception as e:
            self.logger.error(f"Search execution failed: {e}")
            raise
        return [HitDoc.from_row(row) for row in rows]

    def _apply_fuzzy(self, hits: List[HitDoc], parsed: NormalizedQuery) -> List[HitDoc]:
        try:
            return self.ranker.rank(hits, parsed.text_search)
        except Exception as e:
            self.logger.warning(f"Fuzzy ranking failed, returning exact matches: {e}")
            return hits
