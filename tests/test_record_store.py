"""Tests for card/store records and both RecordStore adapters."""

from datetime import timedelta

import pytest
from returns.result import Failure, Success

from conftest import BASE_TIME


# ── Record models ───────────────────────────────────────────────────


class TestCardRecord:

    def test_wire_dict_roundtrip(self, make_card):
        from cardsnap.records.models import CardRecord

        card = make_card("c1", notes="gold tier", color_hex="#FF0000", store_id="s1")
        data = card.to_dict()
        assert data["codeFormat"] == "code128"
        assert data["createdAt"] == "2024-03-01T12:00:00.000000Z"
        assert CardRecord.from_dict(data) == card

    def test_optional_fields_serialized_as_null(self, make_card):
        data = make_card().to_dict()
        assert data["notes"] is None
        assert data["storeId"] is None
        assert data["archived"] is False

    def test_blank_name_invalid(self, make_card):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError, match="name"):
            make_card(name="   ").validate()

    def test_blank_code_invalid(self, make_card):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError, match="code"):
            make_card(code="").validate()

    def test_updated_before_created_invalid(self, make_card):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError):
            make_card(updated_at=BASE_TIME - timedelta(seconds=1)).validate()

    def test_created_in_future_invalid(self, make_card):
        from cardsnap.records.models import RecordValidationError, utc_now

        future = utc_now() + timedelta(days=1)
        with pytest.raises(RecordValidationError, match="future"):
            make_card(created_at=future, updated_at=future).validate()

    def test_unknown_code_format_rejected(self, make_card):
        from cardsnap.records.models import CardRecord, RecordValidationError

        data = make_card().to_dict()
        data["codeFormat"] = "aztec"
        with pytest.raises(RecordValidationError):
            CardRecord.from_dict(data)

    def test_touch_bumps_updated_at(self, make_card):
        card = make_card()
        touched = card.touch(name="Renamed")
        assert touched.name == "Renamed"
        assert touched.updated_at > card.updated_at
        assert touched.created_at == card.created_at

    def test_naive_timestamp_taken_as_utc(self):
        from cardsnap.records.models import parse_timestamp

        assert parse_timestamp("2024-03-01T12:00:00") == BASE_TIME
        assert parse_timestamp("2024-03-01T12:00:00Z") == BASE_TIME

    def test_code_format_display_names(self):
        from cardsnap.records.models import CodeFormat

        assert CodeFormat.EAN13.display_name == "EAN-13"
        assert CodeFormat.QR.display_name == "QR Code"


class TestStoreRecord:

    def test_wire_dict_roundtrip(self, make_store):
        from cardsnap.records.models import StoreRecord

        store = make_store(latitude=52.52, longitude=13.405)
        assert StoreRecord.from_dict(store.to_dict()) == store

    def test_integer_coordinates_stored_as_float(self, make_store):
        from cardsnap.backup.archive_codec import record_bytes
        from cardsnap.records.models import StoreRecord

        store = make_store(latitude=52, longitude=13)
        assert isinstance(store.latitude, float)
        assert record_bytes(StoreRecord.from_dict(store.to_dict())) == record_bytes(store)

    def test_supported_formats_sorted_on_wire(self, make_store):
        from cardsnap.records.models import CodeFormat

        store = make_store(supported_formats=(CodeFormat.QR, CodeFormat.CODE39))
        assert store.to_dict()["supportedFormats"] == ["code39", "qr"]

    @pytest.mark.parametrize("country", ["DEU", "1A", ""])
    def test_country_code_must_be_alpha2(self, make_store, country):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError):
            make_store(country_code=country).validate()

    def test_latitude_out_of_range(self, make_store):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError):
            make_store(latitude=91.0).validate()


# ── RecordStore adapters ────────────────────────────────────────────


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each behavioural test runs against both adapters."""
    from cardsnap.records.record_store import InMemoryRecordStore
    from cardsnap.records.sqlite_store import SqliteRecordStore

    if request.param == "memory":
        return InMemoryRecordStore()
    return SqliteRecordStore(tmp_path / "cards.db")


class TestRecordStore:

    def test_empty_snapshot(self, store):
        snapshot = store.read_all().unwrap()
        assert snapshot.records == []
        assert snapshot.stores == []

    def test_put_and_get_card(self, store, make_card):
        card = make_card("c1", notes="note")
        store.put_card(card)
        assert store.get_card("c1") == card
        assert store.get_card("missing") is None

    def test_put_and_get_store(self, store, make_store):
        shop = make_store("s1", latitude=48.1, longitude=11.6)
        store.put_store(shop)
        assert store.get_store("s1") == shop

    def test_put_card_validates(self, store, make_card):
        from cardsnap.records.models import RecordValidationError

        with pytest.raises(RecordValidationError):
            store.put_card(make_card(name=""))
        assert store.get_card("c1") is None

    def test_created_at_is_immutable(self, store, make_card, later):
        from cardsnap.records.models import RecordValidationError

        store.put_card(make_card("c1"))
        with pytest.raises(RecordValidationError, match="immutable"):
            store.put_card(make_card("c1", created_at=later(1), updated_at=later(2)))

    def test_snapshot_sorted_by_id(self, store, make_card):
        for card_id in ("c3", "c1", "c2"):
            store.put_card(make_card(card_id))
        ids = [c.id for c in store.read_all().unwrap().records]
        assert ids == ["c1", "c2", "c3"]

    def test_archive_is_soft_delete(self, store, make_card):
        store.put_card(make_card("c1"))
        archived = store.archive_card("c1")
        assert archived.archived is True
        assert archived.updated_at > BASE_TIME
        assert store.get_card("c1").archived is True
        assert store.archive_card("missing") is None

    def test_search_by_name_and_brand(self, store, make_card, make_store):
        store.put_store(make_store("s1", brand_name="Rewe"))
        store.put_card(make_card("c1", name="Payback", store_id="s1"))
        store.put_card(make_card("c2", name="Library card"))
        assert [c.id for c in store.search_cards("rewe")] == ["c1"]
        assert [c.id for c in store.search_cards("LIBRARY")] == ["c2"]
        assert store.search_cards("nothing-matches") == []

    def test_search_hides_archived_by_default(self, store, make_card):
        store.put_card(make_card("c1", name="Old card", archived=True))
        assert store.search_cards("old") == []
        assert [c.id for c in store.search_cards("old", include_archived=True)] == ["c1"]

    def test_cards_by_store(self, store, make_card):
        store.put_card(make_card("c2", store_id="s1"))
        store.put_card(make_card("c1", store_id="s1"))
        store.put_card(make_card("c3", store_id="s2"))
        assert [c.id for c in store.cards_by_store("s1")] == ["c1", "c2"]

    def test_storage_stats(self, store, make_card, make_store):
        store.put_card(make_card("c1"))
        store.put_card(make_card("c2", archived=True))
        store.put_store(make_store("s1"))
        stats = store.storage_stats()
        assert stats.to_dict() == {
            "total_cards": 2,
            "active_cards": 1,
            "archived_cards": 1,
            "total_stores": 1,
        }

    def test_commit_batch_inserts_and_updates(self, store, make_card, make_store, later):
        store.put_card(make_card("c1"))
        result = store.commit_batch(
            [make_card("c2"), make_store("s1")],
            [make_card("c1", name="Updated", updated_at=later(5))],
        )
        assert result == Success(None)
        assert store.get_card("c1").name == "Updated"
        assert store.get_card("c2") is not None
        assert store.get_store("s1") is not None

    def test_insert_of_existing_id_rolls_back_whole_batch(self, store, make_card):
        from cardsnap.core.errors import StoreWriteFailed

        store.put_card(make_card("c1"))
        result = store.commit_batch([make_card("c2"), make_card("c1")], [])
        assert isinstance(result, Failure)
        assert isinstance(result.failure(), StoreWriteFailed)
        assert store.get_card("c2") is None

    def test_update_of_missing_id_rolls_back_whole_batch(self, store, make_card):
        from cardsnap.core.errors import StoreWriteFailed

        result = store.commit_batch([make_card("c1")], [make_card("ghost")])
        assert isinstance(result.failure(), StoreWriteFailed)
        assert store.read_all().unwrap().records == []


class TestInMemoryFaultInjection:

    def test_fail_next_commit_leaves_state_untouched(self, make_card):
        from cardsnap.core.errors import StoreWriteFailed
        from cardsnap.records.record_store import InMemoryRecordStore

        store = InMemoryRecordStore([make_card("c1")])
        store.fail_next_commit = True
        result = store.commit_batch([make_card("c2")], [])
        assert isinstance(result.failure(), StoreWriteFailed)
        assert [c.id for c in store.read_all().unwrap().records] == ["c1"]
        # Only the next commit fails
        assert store.commit_batch([make_card("c2")], []) == Success(None)
        assert store.commit_count == 1

    def test_read_failure_surfaces_as_store_error(self):
        from cardsnap.core.errors import EmptyStoreError, StoreError
        from cardsnap.records.record_store import InMemoryRecordStore

        store = InMemoryRecordStore()
        store.fail_reads = True
        assert isinstance(store.read_all().failure(), EmptyStoreError)
        with pytest.raises(StoreError):
            store.storage_stats()


class TestSqliteRecordStore:

    def test_data_survives_reopen(self, tmp_path, make_card, make_store):
        from cardsnap.records.sqlite_store import SqliteRecordStore

        path = tmp_path / "cards.db"
        first = SqliteRecordStore(path)
        first.put_card(make_card("c1", notes="persisted"))
        first.put_store(make_store("s1"))

        second = SqliteRecordStore(path)
        assert second.get_card("c1").notes == "persisted"
        assert second.get_store("s1") == make_store("s1")

    def test_schema_idempotent(self, tmp_path):
        from cardsnap.records.sqlite_store import SqliteRecordStore

        SqliteRecordStore(tmp_path / "cards.db")
        SqliteRecordStore(tmp_path / "cards.db")  # second init should not raise

    def test_unreadable_database_is_failure(self, tmp_path):
        from cardsnap.core.errors import EmptyStoreError
        from cardsnap.records.sqlite_store import SqliteRecordStore

        store = SqliteRecordStore(tmp_path / "cards.db")
        store.db_path = tmp_path / "missing-dir" / "cards.db"
        assert isinstance(store.read_all().failure(), EmptyStoreError)
