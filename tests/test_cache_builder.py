"""Tests for readergraph.services.cache_builder: base snapshot + diff chain."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from readergraph.schemas.cache import PayloadSource
from readergraph.services.cache_builder import CacheBuilder, order_events


@pytest.fixture
def builder(settings, clock):
    return CacheBuilder(settings, clock=clock)


@pytest.fixture
def chapter_events(make_character, make_relation, make_record):
    alice, bob, carol = (
        make_character("1", "Alice"),
        make_character("2", "Bob"),
        make_character("3", "Carol"),
    )
    return [
        make_record(1, [alice, bob], [make_relation("1", "2", "친구")]),
        make_record(2, [], [make_relation("1", "2", "친구", "연인")]),
        make_record(3, [carol], [make_relation("3", "1", "라이벌")]),
    ]


class TestOrderEvents:
    def test_sorted_by_index(self, make_record):
        ordered = order_events([make_record(3), make_record(1), make_record(2)])
        assert [r.event_idx for r in ordered] == [1, 2, 3]

    def test_duplicate_index_keeps_last(self, make_record, make_character):
        first = make_record(1)
        second = make_record(1, [make_character("1", "Alice")])
        ordered = order_events([first, second])
        assert len(ordered) == 1
        assert ordered[0].characters[0].id == "1"


class TestBuild:
    def test_empty_input(self, builder):
        payload = builder.build(7, 1, [], source=PayloadSource.EMPTY)
        assert payload.base_snapshot is None
        assert payload.max_event_idx == 0
        assert payload.diffs == []
        assert payload.source == PayloadSource.EMPTY
        assert payload.is_empty

    def test_base_from_first_event(self, builder, chapter_events):
        payload = builder.build(7, 1, chapter_events)
        assert payload.base_snapshot.event_idx == 1
        assert [e.id for e in payload.base_snapshot.elements] == ["1", "2", "1-2"]
        assert [d.event_idx for d in payload.diffs] == [2, 3]
        assert payload.max_event_idx == 3
        assert len(payload.event_summaries) == 3

    def test_unsorted_input(self, builder, chapter_events):
        payload = builder.build(7, 1, list(reversed(chapter_events)))
        assert payload.base_snapshot.event_idx == 1
        assert [d.event_idx for d in payload.diffs] == [2, 3]

    def test_timestamp_from_clock(self, builder, clock, chapter_events):
        payload = builder.build(7, 1, chapter_events)
        assert payload.timestamp == clock.now

    def test_new_relation_tag_relabels_edge(self, builder, chapter_events):
        payload = builder.build(7, 1, chapter_events)
        base_edge = payload.base_snapshot.elements[-1]
        assert base_edge.label == "친구"
        updated = payload.diffs[0].element_diff.updated
        assert [e.id for e in updated] == ["1-2"]
        assert updated[0].label == "연인"

    def test_new_character_appears_as_added(self, builder, chapter_events):
        payload = builder.build(7, 1, chapter_events)
        diff = payload.diffs[1]
        assert [e.id for e in diff.element_diff.added] == ["3", "3-1"]
        assert [c.id for c in diff.character_diff.added] == ["3"]

    def test_unchanged_event_keeps_empty_diff(self, builder, make_character, make_relation, make_record):
        events = [
            make_record(1, [make_character("1"), make_character("2")], [make_relation("1", "2", "친구")]),
            make_record(2),
        ]
        payload = builder.build(7, 1, events)
        assert len(payload.diffs) == 1
        assert payload.diffs[0].element_diff.is_empty
        assert payload.diffs[0].event_meta.name == "event 2"

    def test_summaries_flag_content(self, builder, chapter_events, make_record):
        payload = builder.build(7, 1, [*chapter_events, make_record(4)])
        summary = payload.event_summaries[-1]
        assert summary.event_idx == 4
        assert not summary.has_relations
        assert not summary.has_characters


class TestLayoutState:
    def test_position_memo_sized_from_settings(self, settings, clock, chapter_events):
        small = CacheBuilder(settings.model_copy(update={"position_cache_size": 2}), clock=clock)
        small.build(1, 1, chapter_events)
        assert len(small.seed_cache) == 2

    def test_builders_do_not_share_memo(self, settings, clock, chapter_events):
        first, second = CacheBuilder(settings, clock=clock), CacheBuilder(settings, clock=clock)
        first.build(1, 1, chapter_events)
        # three nodes, an angle and a radius each
        assert len(first.seed_cache) == 6
        assert len(second.seed_cache) == 0

    def test_memo_size_does_not_change_layout(self, builder, settings, clock, chapter_events):
        small = CacheBuilder(settings.model_copy(update={"position_cache_size": 1}), clock=clock)
        assert small.build(1, 1, chapter_events) == builder.build(1, 1, chapter_events)


class TestDefaultedWeights:
    def test_warned_once_per_build(self, builder, make_character, make_relation, make_record):
        events = [
            make_record(
                1,
                [make_character("1", "Alice", weight=5), make_character("2", "Bob")],
                [make_relation("1", "2", "친구")],
            ),
            make_record(2, [], [make_relation("1", "2", "연인")]),
            make_record(3, [], [make_relation("2", "1", "친구")]),
        ]
        with capture_logs() as logs:
            payload = builder.build(1, 1, events)

        defaulted = [entry for entry in logs if entry["event"] == "node_weight_defaulted"]
        assert [entry["node_id"] for entry in defaulted] == ["2"]
        bob = next(e for e in payload.base_snapshot.elements if e.id == "2")
        assert bob.weight == builder.settings.default_node_weight
