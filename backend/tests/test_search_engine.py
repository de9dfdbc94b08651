"""Tests for word-wheel and partial search over the figure store and index."""
from __future__ import annotations

from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest

from conftest import make_figure
from figure_collector.services.figure_store import FigureStore, StoreUnavailable
from figure_collector.services.query_validator import QueryTooShort, validate
from figure_collector.services.search import SearchEngine, SearchMode


def _names(result) -> list[str]:
    return [f.name for f in result.figures]


@pytest.fixture(name="catalog")
def catalog_fixture(session, user):
    make_figure(session, user, "Hatsune Miku", "Good Smile Company")
    make_figure(session, user, "Megumin", "Kadokawa")


class TestWordWheel:
    def test_prefix_matches_word(self, engine_svc, user, catalog):
        result = engine_svc.word_wheel_search(validate("mik", owner_id=user.id))
        assert _names(result) == ["Hatsune Miku"]
        assert result.mode is SearchMode.WORD_WHEEL

    def test_manufacturer_is_searchable(self, engine_svc, user, catalog):
        result = engine_svc.word_wheel_search(validate("kado", owner_id=user.id))
        assert _names(result) == ["Megumin"]

    def test_multi_word_prefix(self, engine_svc, user, catalog):
        result = engine_svc.word_wheel_search(validate("Hatsune  M", owner_id=user.id))
        assert _names(result) == ["Hatsune Miku"]

    def test_first_search_builds_index(self, engine_svc, index, user, catalog):
        assert not index.is_ready(user.id)
        engine_svc.word_wheel_search(validate("me", owner_id=user.id))
        assert index.is_ready(user.id)

    def test_shortest_matching_token_ranks_first(self, session, engine_svc, user):
        make_figure(session, user, "Mikasa Ackerman", "Good Smile Company")
        make_figure(session, user, "Racing Miku", "Good Smile Company")
        result = engine_svc.word_wheel_search(validate("mi", owner_id=user.id))
        assert _names(result) == ["Racing Miku", "Mikasa Ackerman"]

    def test_ties_order_by_name(self, session, engine_svc, user):
        make_figure(session, user, "Rem", "Kadokawa")
        make_figure(session, user, "Ram", "Kadokawa")
        result = engine_svc.word_wheel_search(validate("kad", owner_id=user.id))
        assert _names(result) == ["Ram", "Rem"]

    def test_limit_bounds_result(self, session, engine_svc, user):
        for i in range(8):
            make_figure(session, user, f"Miku {i}")
        result = engine_svc.word_wheel_search(validate("miku", "3", owner_id=user.id))
        assert result.count == 3

    def test_no_cross_user_leakage(self, session, engine_svc, user, other_user, catalog):
        make_figure(session, other_user, "Miku Expo", "Good Smile Company")
        result = engine_svc.word_wheel_search(validate("miku", owner_id=user.id))
        assert all(f.owner_id == user.id for f in result.figures)
        assert _names(result) == ["Hatsune Miku"]

    def test_created_figure_is_suggested(self, store, engine_svc, user, catalog):
        engine_svc.word_wheel_search(validate("me", owner_id=user.id))
        store.create(user.id, {"name": "Rem", "manufacturer": "Kadokawa"})
        result = engine_svc.word_wheel_search(validate("re", owner_id=user.id))
        assert _names(result) == ["Rem"]

    def test_deleted_figure_disappears(self, store, engine_svc, user, catalog):
        assert _names(engine_svc.word_wheel_search(validate("mik", owner_id=user.id))) == ["Hatsune Miku"]
        figure = next(f for f in store.find_all_by_owner(user.id) if f.name == "Hatsune Miku")
        store.delete(figure)
        assert engine_svc.word_wheel_search(validate("mik", owner_id=user.id)).count == 0

    def test_stale_index_entry_is_dropped_and_section_invalidated(
        self, engine_svc, index, user, catalog
    ):
        engine_svc.word_wheel_search(validate("me", owner_id=user.id))

        @dataclass
        class Ghost:
            id: str = "ghost-id"
            owner_id: str = user.id
            name: str = "Mikoto Misaka"
            manufacturer: str = ""

        index.upsert(Ghost())
        result = engine_svc.word_wheel_search(validate("mik", owner_id=user.id))
        assert _names(result) == ["Hatsune Miku"]
        assert not index.is_ready(user.id)

        engine_svc.word_wheel_search(validate("mik", owner_id=user.id))
        assert index.is_ready(user.id)
        assert "ghost-id" not in index.lookup_prefix(user.id, "mik")

    def test_falls_back_to_store_scan_without_index(self, session, user, catalog):
        engine = SearchEngine(FigureStore(session), None)
        result = engine.word_wheel_search(validate("mik", owner_id=user.id))
        assert _names(result) == ["Hatsune Miku"]

    def test_store_failure_propagates(self, user):
        store = MagicMock(spec=FigureStore)
        store.find_by_owner_prefix.side_effect = StoreUnavailable("down")
        engine = SearchEngine(store, None)
        with pytest.raises(StoreUnavailable):
            engine.word_wheel_search(validate("mik", owner_id=user.id))


class TestPartial:
    def test_substring_matches(self, engine_svc, user, catalog):
        result = engine_svc.partial_search(validate("mi", owner_id=user.id))
        assert _names(result) == ["Hatsune Miku", "Megumin"]
        assert result.mode is SearchMode.PARTIAL

    def test_case_insensitive(self, engine_svc, user, catalog):
        result = engine_svc.partial_search(validate("GUM", owner_id=user.id))
        assert _names(result) == ["Megumin"]

    def test_like_wildcards_are_literal(self, session, engine_svc, user):
        make_figure(session, user, "100% Saber")
        make_figure(session, user, "Saber Alter")
        result = engine_svc.partial_search(validate("0%", owner_id=user.id))
        assert _names(result) == ["100% Saber"]

    def test_non_ascii_query(self, session, engine_svc, user):
        make_figure(session, user, "初音ミク", "グッドスマイルカンパニー")
        make_figure(session, user, "Megumin", "Kadokawa")
        result = engine_svc.partial_search(validate("ミク", owner_id=user.id))
        assert _names(result) == ["初音ミク"]

    def test_pages_are_disjoint_and_ordered(self, session, engine_svc, user):
        for name in ["Miku A", "Miku B", "Miku C", "Miku D", "Miku E"]:
            make_figure(session, user, name)
        first = engine_svc.partial_search(validate("miku", "2", "0", owner_id=user.id))
        second = engine_svc.partial_search(validate("miku", "2", "2", owner_id=user.id))
        third = engine_svc.partial_search(validate("miku", "2", "4", owner_id=user.id))
        assert _names(first) == ["Miku A", "Miku B"]
        assert _names(second) == ["Miku C", "Miku D"]
        assert _names(third) == ["Miku E"]

    def test_offset_past_end_is_empty(self, engine_svc, user, catalog):
        result = engine_svc.partial_search(validate("mi", None, "10", owner_id=user.id))
        assert result.count == 0

    def test_no_cross_user_leakage(self, session, engine_svc, user, other_user, catalog):
        make_figure(session, other_user, "Megumin", "Kadokawa")
        result = engine_svc.partial_search(validate("megu", owner_id=user.id))
        assert [f.owner_id for f in result.figures] == [user.id]

    def test_word_wheel_results_are_subset_of_partial(self, session, engine_svc, user):
        for name in ["Hatsune Miku", "Mikasa Ackerman", "Racing  Miku", "Megumin"]:
            make_figure(session, user, name)
        for text in ["mi", "mik", "hatsune mi", "racing mi", "meg"]:
            wheel = engine_svc.word_wheel_search(validate(text, "50", owner_id=user.id))
            part = engine_svc.partial_search(validate(text, "50", owner_id=user.id))
            assert {f.id for f in wheel.figures} <= {f.id for f in part.figures}


class TestSampleCatalog:
    def test_shared_manufacturer_scenario(self, session, engine_svc, user):
        make_figure(session, user, "Hatsune Miku", "Good Smile Company")
        make_figure(session, user, "Megumin", "Good Smile Company")
        wheel = engine_svc.word_wheel_search(validate("mik", owner_id=user.id))
        assert _names(wheel) == ["Hatsune Miku"]
        part = engine_svc.partial_search(validate("mi", owner_id=user.id))
        assert _names(part) == ["Hatsune Miku", "Megumin"]
        with pytest.raises(QueryTooShort):
            validate("m", owner_id=user.id)


class TestCaseFolding:
    """Store filters must fold case exactly like the index tokenizer."""

    @pytest.fixture(name="folded_catalog")
    def folded_catalog_fixture(self, session, user):
        make_figure(session, user, "Straße Miku", "Good Smile Company")
        make_figure(session, user, "Megumin", "\u212aotobukiya")  # Kelvin sign

    @pytest.mark.parametrize("text,expected", [
        ("strass", ["Straße Miku"]),
        ("STRASSE", ["Straße Miku"]),
        ("koto", ["Megumin"]),
    ])
    def test_all_modes_agree(self, session, engine_svc, user, folded_catalog, text, expected):
        query = validate(text, owner_id=user.id)
        indexed = engine_svc.word_wheel_search(query)
        scanned = SearchEngine(FigureStore(session), None).word_wheel_search(query)
        part = engine_svc.partial_search(query)
        assert _names(indexed) == expected
        assert _names(scanned) == expected
        assert _names(part) == expected


class TestConcurrentWrite:
    def test_write_during_snapshot_falls_back_to_scan(self, session, index, user, catalog):
        class WriteDuringSnapshot(FigureStore):
            injected = False

            def find_all_by_owner(self, owner_id):
                figures = super().find_all_by_owner(owner_id)
                if not WriteDuringSnapshot.injected:
                    WriteDuringSnapshot.injected = True
                    FigureStore(self.session, self.index).create(
                        owner_id, {"name": "Megumin Swimsuit", "manufacturer": "Kadokawa"}
                    )
                return figures

        engine = SearchEngine(WriteDuringSnapshot(session, index), index)
        result = engine.word_wheel_search(validate("meg", owner_id=user.id))

        assert _names(result) == ["Megumin", "Megumin Swimsuit"]
        assert not index.is_ready(user.id)
