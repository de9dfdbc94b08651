"""Figure store: owner-scoped persistence for figures, paired with the search index.

Every create/update/delete commits to the database first and then applies
the matching SearchIndex mutation. If the index mutation fails, the owner's
index section is invalidated so the next search rebuilds it from the store.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from figure_collector.models.figure import Figure
from figure_collector.services.search_index import INDEXED_FIELDS, SearchIndex

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = (
    "manufacturer",
    "name",
    "scale",
    "source_link",
    "location",
    "box_number",
    "image_url",
)


class StoreUnavailable(RuntimeError):
    """The figure store failed to answer."""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _folded(column, value: str):
    """Case-folded containment; needs the casefold() function registered in db.py."""
    return func.casefold(column).like(f"%{_escape_like(value.casefold())}%", escape="\\")


def _column(field_name: str):
    if field_name not in INDEXED_FIELDS:
        raise ValueError(f"Field '{field_name}' is not searchable")
    return col(getattr(Figure, field_name))


class FigureStore:
    """Owner-scoped figure queries and mutations over a SQLModel session."""

    __slots__ = ("session", "index")

    def __init__(self, session: Session, index: SearchIndex | None = None) -> None:
        self.session = session
        self.index = index

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception("Figure store %s failed", operation)
            self.session.rollback()
            raise StoreUnavailable(f"Figure store {operation} failed") from exc

    # -- queries -------------------------------------------------------------

    def get(self, owner_id: str, figure_id: str) -> Figure | None:
        with self._guard("get"):
            return self.session.exec(
                select(Figure).where(Figure.id == figure_id, Figure.owner_id == owner_id)
            ).first()

    def get_many(self, owner_id: str, figure_ids: Sequence[str]) -> list[Figure]:
        """Resolve ids to figures owned by owner_id; unknown or foreign ids are dropped."""
        if not figure_ids:
            return []
        with self._guard("get_many"):
            return list(
                self.session.exec(
                    select(Figure).where(
                        Figure.owner_id == owner_id,
                        col(Figure.id).in_(list(figure_ids)),
                    )
                ).all()
            )

    def find_all_by_owner(self, owner_id: str) -> list[Figure]:
        with self._guard("find_all_by_owner"):
            return list(
                self.session.exec(select(Figure).where(Figure.owner_id == owner_id)).all()
            )

    def find_by_owner_prefix(self, owner_id: str, field_name: str, prefix: str) -> list[Figure]:
        """Candidate figures for a word-prefix match on one field.

        Returns a superset: every figure whose field contains the first word
        of prefix. Callers re-check matches with the index tokenizer, which
        also handles tabs and repeated whitespace the SQL pattern cannot.
        """
        words = prefix.split()
        if not words:
            return self.find_all_by_owner(owner_id)
        return self.find_by_owner_substring(owner_id, field_name, words[0])

    def find_by_owner_substring(self, owner_id: str, field_name: str, substring: str) -> list[Figure]:
        """Figures whose field contains substring, compared after casefold()."""
        column = _column(field_name)
        needle = substring.strip()
        if not needle:
            return self.find_all_by_owner(owner_id)
        with self._guard("find_by_owner_substring"):
            return list(
                self.session.exec(
                    select(Figure).where(
                        Figure.owner_id == owner_id,
                        _folded(column, needle),
                    )
                ).all()
            )

    def list_page(self, owner_id: str, page: int, limit: int, **filters: str) -> tuple[list[Figure], int]:
        """Newest-first page of an owner's figures plus the total match count.

        Supported filters: manufacturer / location (contains, case-insensitive),
        scale / box_number (exact).
        """
        conditions = [Figure.owner_id == owner_id]
        for field_name in ("manufacturer", "location"):
            value = filters.get(field_name)
            if value:
                conditions.append(_folded(col(getattr(Figure, field_name)), value))
        for field_name in ("scale", "box_number"):
            value = filters.get(field_name)
            if value:
                conditions.append(getattr(Figure, field_name) == value)

        with self._guard("list_page"):
            total = self.session.exec(
                select(func.count()).select_from(Figure).where(*conditions)
            ).one()
            figures = self.session.exec(
                select(Figure)
                .where(*conditions)
                .order_by(col(Figure.created_at).desc(), col(Figure.id))
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        return list(figures), int(total)

    def count_by(self, owner_id: str, field_name: str) -> list[tuple[str, int]]:
        """(value, count) pairs for one column, most frequent first."""
        column = col(getattr(Figure, field_name))
        with self._guard("count_by"):
            rows = self.session.exec(
                select(column, func.count())
                .where(Figure.owner_id == owner_id)
                .group_by(column)
                .order_by(func.count().desc(), column)
            ).all()
        return [(value or "", int(count)) for value, count in rows]

    # -- mutations -----------------------------------------------------------

    def create(self, owner_id: str, data: dict) -> Figure:
        figure = Figure(
            owner_id=owner_id,
            **{k: v for k, v in data.items() if k in MUTABLE_FIELDS and v is not None},
        )
        with self._guard("create"):
            self.session.add(figure)
            self.session.commit()
            self.session.refresh(figure)
        self._index_upsert(figure)
        return figure

    def update(self, figure: Figure, data: dict) -> Figure:
        for key, value in data.items():
            if key in MUTABLE_FIELDS and value is not None:
                setattr(figure, key, value)
        figure.updated_at = datetime.now(timezone.utc)
        with self._guard("update"):
            self.session.add(figure)
            self.session.commit()
            self.session.refresh(figure)
        self._index_upsert(figure)
        return figure

    def delete(self, figure: Figure) -> None:
        figure_id, owner_id = figure.id, figure.owner_id
        with self._guard("delete"):
            self.session.delete(figure)
            self.session.commit()
        if self.index is None:
            return
        try:
            self.index.remove(figure_id, owner_id)
        except Exception:
            logger.exception("Index removal failed for figure %s; invalidating", figure_id)
            self.index.invalidate(owner_id)

    def _index_upsert(self, figure: Figure) -> None:
        if self.index is None:
            return
        try:
            self.index.upsert(figure)
        except Exception:
            logger.exception("Index upsert failed for figure %s; invalidating", figure.id)
            self.index.invalidate(figure.owner_id)
