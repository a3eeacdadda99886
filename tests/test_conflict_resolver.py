"""Tests for the conflict resolver (merge / replace / skip + overrides)."""

import random

import pytest


@pytest.fixture
def scenario(make_card, later):
    """existing={c1@t1, c2@t1}; incoming={c1@t2 renamed, c2@t1 renamed, c3}."""
    existing = [
        make_card("c1", name="Old name", updated_at=later(1)),
        make_card("c2", name="Local"),
    ]
    incoming = [
        make_card("c1", name="New name", updated_at=later(2)),
        make_card("c2", name="Remote"),
        make_card("c3"),
    ]
    return existing, incoming


class TestStrategies:

    def test_merge_newer_wins(self, scenario):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming[:1], existing, MergeStrategy.MERGE)
        assert result.ids("to_update") == ["c1"]
        assert result.to_update[0].name == "New name"

    def test_merge_older_incoming_left_alone(self, make_card, later):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing = [make_card("c1", name="Fresh", updated_at=later(9))]
        incoming = [make_card("c1", name="Stale", updated_at=later(1))]
        result = resolve(incoming, existing, MergeStrategy.MERGE)
        assert result.ids("to_leave_unchanged") == ["c1"]
        assert result.to_leave_unchanged[0].name == "Fresh"
        assert result.to_update == []

    def test_skip_keeps_existing(self, scenario):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming, existing, MergeStrategy.SKIP)
        assert result.ids("to_leave_unchanged") == ["c1", "c2"]
        assert result.ids("to_insert") == ["c3"]
        assert result.to_update == []
        assert not result.has_unresolved

    def test_replace_takes_incoming(self, scenario):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming, existing, MergeStrategy.REPLACE)
        assert result.ids("to_update") == ["c1", "c2"]
        assert result.ids("to_insert") == ["c3"]
        assert not result.has_unresolved

    def test_merge_tie_with_different_content_unresolved(self, scenario):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming, existing, MergeStrategy.MERGE)
        assert result.ids("unresolved_conflicts") == ["c2"]
        conflict = result.unresolved_conflicts[0]
        assert conflict.existing.name == "Local"
        assert conflict.incoming.name == "Remote"
        assert result.ids("to_update") == ["c1"]
        assert result.ids("to_insert") == ["c3"]

    @pytest.mark.parametrize("strategy", ["MERGE", "REPLACE", "SKIP"])
    def test_identical_records_never_conflict(self, make_card, strategy):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        card = make_card("c1")
        result = resolve([card], [make_card("c1")], MergeStrategy[strategy])
        assert result.ids("to_leave_unchanged") == ["c1"]
        assert result.to_update == [] and result.to_insert == []

    def test_only_existing_records_not_reported(self, make_card):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        result = resolve([], [make_card("c1")], MergeStrategy.REPLACE)
        assert result.to_insert == []
        assert result.to_update == []
        assert result.to_leave_unchanged == []

    def test_cards_and_stores_with_same_id_are_distinct(self, make_card, make_store):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        result = resolve([make_store("x1")], [make_card("x1")], MergeStrategy.MERGE)
        assert result.ids("to_insert") == ["x1"]
        assert result.to_insert[0].kind.value == "store"

    def test_free_form_strategy_rejected(self, make_card):
        from cardsnap.backup.conflict_resolver import resolve

        with pytest.raises(TypeError):
            resolve([make_card()], [], "merge-ish")


class TestOverrides:

    def test_override_settles_tie(self, scenario):
        from cardsnap.backup.conflict_resolver import ConflictChoice, MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming, existing, MergeStrategy.MERGE,
                         overrides={"c2": ConflictChoice.TAKE_INCOMING})
        assert not result.has_unresolved
        assert result.ids("to_update") == ["c1", "c2"]

    def test_override_beats_strategy(self, scenario):
        from cardsnap.backup.conflict_resolver import ConflictChoice, MergeStrategy, resolve

        existing, incoming = scenario
        result = resolve(incoming, existing, MergeStrategy.REPLACE,
                         overrides={"c1": ConflictChoice.KEEP_EXISTING})
        assert result.ids("to_update") == ["c2"]
        assert result.ids("to_leave_unchanged") == ["c1"]

    def test_override_for_unknown_id_ignored(self, scenario):
        from cardsnap.backup.conflict_resolver import ConflictChoice, MergeStrategy, resolve

        existing, incoming = scenario
        plain = resolve(incoming, existing, MergeStrategy.SKIP)
        with_noise = resolve(incoming, existing, MergeStrategy.SKIP,
                             overrides={"nope": ConflictChoice.TAKE_INCOMING})
        assert plain == with_noise

    def test_bare_id_decides_card_not_store(self, make_card, make_store, later):
        from cardsnap.backup.conflict_resolver import ConflictChoice, MergeStrategy, resolve

        existing = [make_card("x", name="Local", updated_at=later(1)),
                    make_store("x", brand_name="Local", updated_at=later(1))]
        incoming = [make_card("x", name="Remote", updated_at=later(1)),
                    make_store("x", brand_name="Remote", updated_at=later(1))]
        result = resolve(incoming, existing, MergeStrategy.MERGE,
                         overrides={"x": ConflictChoice.TAKE_INCOMING})
        assert [r.kind.value for r in result.to_update] == ["card"]
        assert [c.key for c in result.unresolved_conflicts] == ["store:x"]

    def test_qualified_key_decides_store_only(self, make_card, make_store, later):
        from cardsnap.backup.conflict_resolver import ConflictChoice, MergeStrategy, resolve

        existing = [make_card("x", name="Local", updated_at=later(1)),
                    make_store("x", brand_name="Local", updated_at=later(1))]
        incoming = [make_card("x", name="Remote", updated_at=later(1)),
                    make_store("x", brand_name="Remote", updated_at=later(1))]
        result = resolve(incoming, existing, MergeStrategy.MERGE,
                         overrides={"store:x": ConflictChoice.KEEP_EXISTING,
                                    "card:x": ConflictChoice.TAKE_INCOMING})
        assert not result.has_unresolved
        assert [r.kind.value for r in result.to_update] == ["card"]
        assert [r.kind.value for r in result.to_leave_unchanged] == ["store"]

    def test_conflict_reports_its_override_key(self, make_store, later):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        result = resolve([make_store("s1", brand_name="Remote", updated_at=later(1))],
                         [make_store("s1", brand_name="Local", updated_at=later(1))],
                         MergeStrategy.MERGE)
        assert result.unresolved_conflicts[0].to_dict()["key"] == "store:s1"


class TestDeterminism:

    def test_input_order_irrelevant(self, make_card, make_store, later):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        existing = [make_card(f"c{i}", updated_at=later(i % 3)) for i in range(20)]
        existing += [make_store("s1")]
        incoming = [make_card(f"c{i}", name=f"v2-{i}", updated_at=later(1)) for i in range(10, 30)]
        incoming += [make_store("s1", brand_name="Renamed", updated_at=later(4))]

        baseline = resolve(incoming, existing, MergeStrategy.MERGE)
        rng = random.Random(42)
        for _ in range(5):
            shuffled_in, shuffled_ex = incoming[:], existing[:]
            rng.shuffle(shuffled_in)
            rng.shuffle(shuffled_ex)
            assert resolve(shuffled_in, shuffled_ex, MergeStrategy.MERGE) == baseline

    def test_outputs_sorted_by_kind_then_id(self, make_card, make_store):
        from cardsnap.backup.conflict_resolver import MergeStrategy, resolve

        incoming = [make_store("a"), make_card("z"), make_card("b")]
        result = resolve(incoming, [], MergeStrategy.MERGE)
        assert [(r.kind.value, r.id) for r in result.to_insert] == [
            ("card", "b"), ("card", "z"), ("store", "a"),
        ]
