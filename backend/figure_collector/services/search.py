"""Search engine: word-wheel (prefix autocomplete) and partial (substring) search.

Both modes are read-only and scoped to the query's owner. Word-wheel search
is served from the in-process SearchIndex when it is available and falls back
to a direct prefix scan of the store otherwise; partial search always
filters the store directly because substrings are not indexable by the
prefix structure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from figure_collector.models.figure import Figure
from figure_collector.services.figure_store import FigureStore
from figure_collector.services.query_validator import SearchQuery
from figure_collector.services.search_index import (
    INDEXED_FIELDS,
    SearchIndex,
    figure_tokens,
    normalize,
    shortest_match,
)

logger = logging.getLogger(__name__)


class SearchMode(str, Enum):
    WORD_WHEEL = "word_wheel"
    PARTIAL = "partial"


class IndexInconsistent(Exception):
    """The index returned a candidate the store does not confirm for this owner.

    Never raised to callers; recorded and used to schedule a section rebuild.
    """

    def __init__(self, owner_id: str, figure_ids: set[str]) -> None:
        super().__init__(
            f"{len(figure_ids)} stale index entr{'y' if len(figure_ids) == 1 else 'ies'} "
            f"for owner {owner_id}"
        )
        self.owner_id = owner_id
        self.figure_ids = figure_ids


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Ordered, bounded result page."""
    figures: list[Figure]
    mode: SearchMode

    @property
    def count(self) -> int:
        return len(self.figures)


def _name_key(figure: Figure) -> tuple:
    return (figure.name.casefold(), figure.name, figure.created_at, figure.id)


class SearchEngine:
    """Executes validated SearchQuery objects against the index and store."""

    __slots__ = ("store", "index")

    def __init__(self, store: FigureStore, index: SearchIndex | None = None) -> None:
        self.store = store
        self.index = index

    # -- word wheel ----------------------------------------------------------

    def word_wheel_search(self, query: SearchQuery) -> SearchResult:
        """First-N autocomplete suggestions whose name/manufacturer token starts with the query.

        Ranked by shortest matching token, then name, then creation time.
        Offset is ignored.
        """
        prefix = normalize(query.text)
        figures = self._index_candidates(query.owner_id, prefix)
        if figures is None:
            figures = self._prefix_scan(query.owner_id, prefix)

        ranked: list[tuple[int, tuple, Figure]] = []
        for figure in figures:
            match_length = shortest_match(figure_tokens(figure), prefix)
            if match_length is not None:
                ranked.append((match_length, _name_key(figure), figure))
        ranked.sort(key=lambda item: (item[0], item[1]))

        return SearchResult(
            figures=[figure for _, _, figure in ranked[: query.limit]],
            mode=SearchMode.WORD_WHEEL,
        )

    def _index_candidates(self, owner_id: str, prefix: str) -> list[Figure] | None:
        """Resolve index candidates to figures, or None when the index cannot serve."""
        if self.index is None:
            return None

        if not self.index.is_ready(owner_id):
            since = self.index.generation(owner_id)
            snapshot = self.store.find_all_by_owner(owner_id)
            if not self.index.rebuild(owner_id, snapshot, since=since):
                return None

        candidate_ids = self.index.lookup_prefix(owner_id, prefix)
        if not candidate_ids:
            return []

        figures = self.store.get_many(owner_id, sorted(candidate_ids))
        confirmed = [
            f for f in figures
            if shortest_match(figure_tokens(f), prefix) is not None
        ]
        stale = candidate_ids - {f.id for f in confirmed}
        if stale:
            self._handle_inconsistency(IndexInconsistent(owner_id, stale))
        return confirmed

    def _handle_inconsistency(self, error: IndexInconsistent) -> None:
        logger.warning("%s; scheduling index rebuild", error)
        if self.index is not None:
            self.index.invalidate(error.owner_id)

    def _prefix_scan(self, owner_id: str, prefix: str) -> list[Figure]:
        seen: dict[str, Figure] = {}
        for field_name in INDEXED_FIELDS:
            for figure in self.store.find_by_owner_prefix(owner_id, field_name, prefix):
                seen.setdefault(figure.id, figure)
        return list(seen.values())

    # -- partial -------------------------------------------------------------

    def partial_search(self, query: SearchQuery) -> SearchResult:
        """Figures whose name or manufacturer contains the query text, paged by limit/offset.

        Ordered by name, then creation time, so repeated calls page stably.
        """
        needle = normalize(query.text)
        # whitespace runs are collapsed on both sides, so pre-filter on one word
        prefilter = needle.split(" ")[0]
        matches: dict[str, Figure] = {}
        for field_name in INDEXED_FIELDS:
            for figure in self.store.find_by_owner_substring(query.owner_id, field_name, prefilter):
                if figure.id in matches:
                    continue
                if any(needle in normalize(getattr(figure, f) or "") for f in INDEXED_FIELDS):
                    matches[figure.id] = figure

        ordered = sorted(matches.values(), key=_name_key)
        page = ordered[query.offset: query.offset + query.limit]
        return SearchResult(figures=page, mode=SearchMode.PARTIAL)
