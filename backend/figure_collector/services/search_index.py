"""In-process word-wheel index: per-user prefix map over figure name/manufacturer.

The index is a derived cache of the figure store. Each user owns an
independent section guarded by its own lock; sections for different users
never share a lock and never share figure ids.

Tokens are the case-folded whitespace-separated words of each indexed field
plus the whole (whitespace-collapsed) field value, so "hatsune mi" matches
"Hatsune Miku" as a multi-word prefix. Every prefix of every token maps to
the set of figure ids carrying that token.
"""
from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

INDEXED_FIELDS = ("name", "manufacturer")


class IndexableFigure(Protocol):
    id: str
    owner_id: str
    name: str
    manufacturer: str


def normalize(text: str) -> str:
    """Case-fold, trim, and collapse internal whitespace."""
    return " ".join(text.casefold().split())


def tokenize(text: str) -> frozenset[str]:
    """Words of text plus the full normalized value as one token."""
    normalized = normalize(text)
    if not normalized:
        return frozenset()
    words = normalized.split(" ")
    return frozenset(words) | {normalized}


def figure_tokens(figure: IndexableFigure) -> frozenset[str]:
    tokens: set[str] = set()
    for field_name in INDEXED_FIELDS:
        tokens |= tokenize(getattr(figure, field_name) or "")
    return frozenset(tokens)


def shortest_match(tokens: Iterable[str], prefix: str) -> int | None:
    """Length of the shortest token starting with prefix, or None if none does."""
    lengths = [len(t) for t in tokens if t.startswith(prefix)]
    return min(lengths) if lengths else None


@dataclass
class _Section:
    """One user's slice of the index."""
    generation: int          # stamp of the last mutation, unique across the index
    lock: threading.RLock = field(default_factory=threading.RLock)
    prefixes: dict[str, set[str]] = field(default_factory=dict)
    tokens_by_figure: dict[str, frozenset[str]] = field(default_factory=dict)
    ready: bool = False      # fully built by rebuild() and not invalidated since
    evicted: bool = False    # dropped from the registry; holders must re-resolve


class SearchIndex:
    """Per-user prefix index supporting incremental upsert/remove and full rebuild.

    The registry holds one section per user that has searched or written
    since startup. With ``max_sections`` set, the least recently used section
    is dropped once the bound is exceeded; a dropped section is rebuilt from
    the store on that user's next search.
    """

    def __init__(self, max_sections: int | None = None) -> None:
        if max_sections is not None and max_sections < 1:
            raise ValueError("max_sections must be >= 1")
        self._sections: OrderedDict[str, _Section] = OrderedDict()
        self._registry_lock = threading.Lock()
        self._max_sections = max_sections
        self._stamps = itertools.count(1)

    def _stamp(self) -> int:
        with self._registry_lock:
            return next(self._stamps)

    def _resolve(self, owner_id: str, create: bool) -> _Section | None:
        with self._registry_lock:
            section = self._sections.get(owner_id)
            if section is not None:
                self._sections.move_to_end(owner_id)
                return section
            if not create:
                return None
            section = _Section(generation=next(self._stamps))
            self._sections[owner_id] = section
            victims = []
            while self._max_sections is not None and len(self._sections) > self._max_sections:
                _, victim = self._sections.popitem(last=False)
                victims.append(victim)
        for victim in victims:
            with victim.lock:
                victim.evicted = True
        return section

    @contextmanager
    def _locked(self, owner_id: str, create: bool = True) -> Iterator[_Section | None]:
        """Hold the lock of the owner's live section (None if absent and not created)."""
        while True:
            section = self._resolve(owner_id, create)
            if section is None:
                yield None
                return
            with section.lock:
                if not section.evicted:
                    yield section
                    return

    # -- mutation (caller holds section.lock) --------------------------------

    @staticmethod
    def _retract(section: _Section, figure_id: str) -> None:
        tokens = section.tokens_by_figure.pop(figure_id, None)
        if not tokens:
            return
        for prefix in _prefixes_of(tokens):
            ids = section.prefixes.get(prefix)
            if ids is None:
                continue
            ids.discard(figure_id)
            if not ids:
                del section.prefixes[prefix]

    @staticmethod
    def _insert(section: _Section, figure_id: str, tokens: frozenset[str]) -> None:
        if not tokens:
            return
        section.tokens_by_figure[figure_id] = tokens
        for prefix in _prefixes_of(tokens):
            section.prefixes.setdefault(prefix, set()).add(figure_id)

    # -- public API ----------------------------------------------------------

    def upsert(self, figure: IndexableFigure) -> None:
        """Index a figure, replacing any previous associations of its id."""
        tokens = figure_tokens(figure)
        with self._locked(figure.owner_id) as section:
            self._retract(section, figure.id)
            self._insert(section, figure.id, tokens)
            section.generation = self._stamp()

    def remove(self, figure_id: str, owner_id: str) -> None:
        """Drop a figure id from every prefix of the owner's section. No-op if unknown."""
        with self._locked(owner_id, create=False) as section:
            if section is None:
                return
            self._retract(section, figure_id)
            section.generation = self._stamp()

    def lookup_prefix(self, owner_id: str, prefix: str) -> set[str]:
        """Figure ids with a token starting with prefix, scoped to owner_id."""
        key = normalize(prefix)
        if not key:
            return set()
        with self._locked(owner_id, create=False) as section:
            if section is None:
                return set()
            return set(section.prefixes.get(key, ()))

    def rebuild(
        self,
        owner_id: str,
        figures: Iterable[IndexableFigure],
        *,
        since: int | None = None,
    ) -> bool:
        """Replace the owner's section with one built from a full snapshot.

        When ``since`` is given and the section was mutated after that
        generation, the snapshot is considered outdated and nothing is
        installed. Returns True when the new contents were installed.
        """
        prefixes: dict[str, set[str]] = {}
        tokens_by_figure: dict[str, frozenset[str]] = {}
        for figure in figures:
            if figure.owner_id != owner_id:
                logger.warning(
                    "Skipping figure %s owned by %s during rebuild of %s",
                    figure.id, figure.owner_id, owner_id,
                )
                continue
            tokens = figure_tokens(figure)
            if not tokens:
                continue
            tokens_by_figure[figure.id] = tokens
            for prefix in _prefixes_of(tokens):
                prefixes.setdefault(prefix, set()).add(figure.id)

        with self._locked(owner_id) as section:
            if since is not None and section.generation != since:
                logger.info(
                    "Abandoned index rebuild for owner %s: section changed during snapshot",
                    owner_id,
                )
                return False
            section.prefixes = prefixes
            section.tokens_by_figure = tokens_by_figure
            section.ready = True
            section.generation = self._stamp()
        logger.debug(
            "Rebuilt search index for owner %s: %d figures, %d prefixes",
            owner_id, len(tokens_by_figure), len(prefixes),
        )
        return True

    def generation(self, owner_id: str) -> int:
        with self._locked(owner_id) as section:
            return section.generation

    def is_ready(self, owner_id: str) -> bool:
        with self._locked(owner_id, create=False) as section:
            return section is not None and section.ready

    def invalidate(self, owner_id: str) -> None:
        """Mark the owner's section as needing a rebuild before it is trusted again."""
        with self._locked(owner_id, create=False) as section:
            if section is None:
                return
            section.ready = False
            section.generation = self._stamp()

    def snapshot(self, owner_id: str) -> dict[str, frozenset[str]]:
        """Immutable copy of the owner's prefix map."""
        with self._locked(owner_id, create=False) as section:
            if section is None:
                return {}
            return {prefix: frozenset(ids) for prefix, ids in section.prefixes.items()}

    def section_count(self) -> int:
        with self._registry_lock:
            return len(self._sections)

    def clear(self) -> None:
        with self._registry_lock:
            dropped = list(self._sections.values())
            self._sections.clear()
        for section in dropped:
            with section.lock:
                section.evicted = True


def _prefixes_of(tokens: Iterable[str]) -> set[str]:
    prefixes: set[str] = set()
    for token in tokens:
        for end in range(1, len(token) + 1):
            prefixes.add(token[:end])
    return prefixes
