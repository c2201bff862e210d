"""
Fuzzy post-filter.

Scores exact-match hits against the free-text query with approximate
substring matching and drops hits whose best distance exceeds the
threshold derived from the declared fuzziness.
"""

import difflib
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import HitDoc, TextSearch

DEFAULT_KEYS = ('message', 'source', 'device_id', 'category')
DEFAULT_BASE_THRESHOLD = 0.2
MAX_THRESHOLD = 0.8


def partial_ratio(query: str, text: str) -> Tuple[float, Optional[Tuple[int, int]]]:
    """Best similarity of query against any same-length window of text.

    Returns:
        (similarity in [0, 1], (start, end) of the best window or None)
    """
    query = query.lower()
    text = text.lower()
    if not query or not text:
        return 0.0, None

    index = text.find(query)
    if index >= 0:
        return 1.0, (index, index + len(query) - 1)

    if len(text) <= len(query):
        ratio = difflib.SequenceMatcher(None, query, text).ratio()
        return ratio, (0, len(text) - 1)

    best_ratio = 0.0
    best_window: Optional[Tuple[int, int]] = None
    matcher = difflib.SequenceMatcher(None, query, text)
    for a, b, size in matcher.get_matching_blocks():
        if size == 0:
            continue
        start = max(0, min(b - a, len(text) - len(query)))
        window = text[start:start + len(query)]
        ratio = difflib.SequenceMatcher(None, query, window).ratio()
        if ratio > best_ratio:
            best_ratio = ratio
            best_window = (start, start + len(query) - 1)

    return best_ratio, best_window


class FuzzyRanker:
    """Filters and ranks hits by approximate similarity to the search text."""

    def __init__(
        self,
        keys: Sequence[str] = DEFAULT_KEYS,
        base_threshold: float = DEFAULT_BASE_THRESHOLD,
    ):
        """Initialize the ranker.

        Args:
            keys: Source fields searched for the query text
            base_threshold: Maximum distance allowed at fuzziness 0
        """
        self.keys = tuple(keys)
        self.base_threshold = base_threshold

    def threshold(self, fuzziness: float) -> float:
        """Maximum accepted distance; higher fuzziness is looser."""
        return min(MAX_THRESHOLD, max(0.0, self.base_threshold + 0.1 * fuzziness))

    def rank(self, hits: List[HitDoc], text_search: TextSearch) -> List[HitDoc]:
        """Score, filter and sort hits.

        Args:
            hits: Exact-match hits from the store
            text_search: The free-text search carrying query and fuzziness

        Returns:
            Surviving hits sorted by descending score, each with _score and _matches
        """
        threshold = self.threshold(text_search.fuzziness)
        keys = self.keys if text_search.field in self.keys else self.keys + (text_search.field,)

        ranked = []
        for hit in hits:
            best_distance = 1.0
            matches: List[Dict[str, Any]] = []

            for key in keys:
                value = hit.source.get(key)
                if value is None:
                    continue
                similarity, window = partial_ratio(text_search.query, str(value))
                distance = 1.0 - similarity
                if distance <= threshold and window is not None:
                    matches.append({'key': key, 'value': str(value), 'indices': [list(window)]})
                best_distance = min(best_distance, distance)

            if best_distance <= threshold:
                ranked.append(HitDoc(
                    id=hit.id,
                    source=hit.source,
                    score=round(1.0 - best_distance, 6),
                    matches=matches,
                ))

        ranked.sort(key=lambda hit: hit.score, reverse=True)
        return ranked
