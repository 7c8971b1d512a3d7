"""Tests for sample validation and sample stores."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from helpers import START, make_sample
from promoguard_engine.errors import SampleStoreError, SampleValidationError
from promoguard_engine.samples.store import InMemorySampleStore, SqlSampleStore
from promoguard_engine.samples.validation import prepare_batch, sanitize_raw, select_window, validate_sample
from promoguard_engine.schemas.samples import Platform


def raw_sample(**overrides) -> dict:
    raw = {
        "platform": "tiktok",
        "promoterId": "promoter-1",
        "campaignId": "campaign-1",
        "postId": "post-1",
        "viewCount": 1000,
        "likeCount": 50,
        "commentCount": 5,
        "observedAt": "2024-03-04T10:00:00",
    }
    raw.update(overrides)
    return raw


class TestValidation:
    def test_accepts_camel_case_payload(self):
        sample = validate_sample(raw_sample(), "promoter-1", "campaign-1")

        assert sample.platform == Platform.TIKTOK
        assert sample.view_count == 1000
        assert sample.share_count == 0
        assert sample.observed_at == START

    def test_aware_timestamps_become_naive_utc(self):
        sample = validate_sample(raw_sample(observedAt="2024-03-04T12:00:00+02:00"), "promoter-1", "campaign-1")
        assert sample.observed_at == START
        assert sample.observed_at.tzinfo is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"viewCount": -1},
            {"platform": "youtube"},
            {"postId": ""},
            {"observedAt": "yesterday"},
            {"likeCount": "many"},
        ],
    )
    def test_malformed_sample_raises(self, overrides):
        with pytest.raises(SampleValidationError) as exc_info:
            validate_sample(raw_sample(**overrides), "promoter-1", "campaign-1")
        assert exc_info.value.errors
        assert "input" not in exc_info.value.errors[0]

    def test_other_key_raises(self):
        with pytest.raises(SampleValidationError, match="not promoter-2:campaign-1"):
            validate_sample(raw_sample(), "promoter-2", "campaign-1")

    def test_sanitize_raw_truncates_and_stringifies(self):
        cleaned = sanitize_raw({"postId": "x" * 500, "viewCount": 3, "nested": {"a": 1}})

        assert len(cleaned["postId"]) == 200
        assert cleaned["viewCount"] == 3
        assert cleaned["nested"] == "{'a': 1}"
        assert sanitize_raw("garbage") == {"value": "'garbage'"}


class TestPrepareBatch:
    def test_bad_sample_does_not_abort_batch(self):
        accepted, rejected = prepare_batch(
            "promoter-1",
            "campaign-1",
            [raw_sample(), raw_sample(viewCount=-5), raw_sample(observedAt="2024-03-04T10:01:00")],
        )
        assert len(accepted) == 2
        assert len(rejected) == 1

    def test_deduplicates_and_orders(self):
        later = make_sample(200, 10, 1, START + timedelta(minutes=1))
        other_post = make_sample(100, 5, 0, START, post_id="post-0")
        accepted, _ = prepare_batch(
            "promoter-1",
            "campaign-1",
            [later, raw_sample(), raw_sample(), other_post],
        )

        assert [(s.post_id, s.observed_at) for s in accepted] == [
            ("post-0", START),
            ("post-1", START),
            ("post-1", START + timedelta(minutes=1)),
        ]

    def test_select_window(self):
        samples = [make_sample(100 * i, 0, 0, START + timedelta(minutes=i)) for i in range(12)]
        window = select_window(samples, 600)

        assert window[0].observed_at == START + timedelta(minutes=1)
        assert len(window) == 11
        assert select_window([], 600) == []

    def test_select_window_from_anchor(self):
        samples = [make_sample(100 * i, 0, 0, START + timedelta(minutes=i)) for i in range(30)]
        window = select_window(samples, 600, anchor=START + timedelta(minutes=15))

        assert window[0].observed_at == START + timedelta(minutes=5)
        assert window[-1].observed_at == START + timedelta(minutes=29)


class TestInMemorySampleStore:
    def test_add_is_idempotent(self):
        store = InMemorySampleStore()
        samples = [make_sample(100, 5, 0, START), make_sample(200, 9, 0, START + timedelta(minutes=1))]

        assert store.add_many(samples) == 2
        assert store.add_many(samples) == 0
        assert len(store.window("promoter-1", "campaign-1", 3600)) == 2

    def test_window_is_relative_to_latest_sample_and_ordered(self):
        store = InMemorySampleStore()
        store.add_many([make_sample(300, 0, 0, START + timedelta(minutes=20))])
        store.add_many([make_sample(100, 0, 0, START), make_sample(200, 0, 0, START + timedelta(minutes=12))])

        window = store.window("promoter-1", "campaign-1", 600)
        assert [s.view_count for s in window] == [200, 300]

    def test_window_from_anchor_keeps_later_samples(self):
        store = InMemorySampleStore()
        store.add_many([make_sample(100 * i, 0, 0, START + timedelta(minutes=i)) for i in range(30)])

        window = store.window("promoter-1", "campaign-1", 600, anchor=START + timedelta(minutes=15))
        assert len(window) == 25
        assert window[0].observed_at == START + timedelta(minutes=5)

    def test_keys_are_isolated(self):
        store = InMemorySampleStore()
        store.add_many([make_sample(100, 0, 0, START), make_sample(100, 0, 0, START, promoter_id="promoter-2")])

        assert len(store.window("promoter-1", "campaign-1", 600)) == 1
        assert store.window("promoter-9", "campaign-1", 600) == []

    def test_evict(self):
        store = InMemorySampleStore()
        store.add_many([make_sample(100, 0, 0, START), make_sample(200, 0, 0, START + timedelta(hours=2))])

        assert store.evict(START + timedelta(hours=1)) == 1
        assert [s.view_count for s in store.window("promoter-1", "campaign-1", 86400)] == [200]
        # Evicted identities can be stored again
        assert store.add_many([make_sample(100, 0, 0, START)]) == 1


class TestSqlSampleStore:
    def test_add_is_idempotent(self, session_factory):
        store = SqlSampleStore(session_factory)
        samples = [make_sample(100, 5, 0, START), make_sample(200, 9, 0, START + timedelta(minutes=1))]

        assert store.add_many(samples) == 2
        assert store.add_many(samples + [make_sample(300, 9, 0, START + timedelta(minutes=2))]) == 1

    def test_window_round_trips_samples(self, session_factory):
        store = SqlSampleStore(session_factory)
        original = make_sample(100, 5, 1, START, platform=Platform.INSTAGRAM)
        store.add_many([original, make_sample(400, 7, 2, START + timedelta(minutes=30))])

        assert store.window("promoter-1", "campaign-1", 600) == [
            make_sample(400, 7, 2, START + timedelta(minutes=30))
        ]
        assert store.window("promoter-1", "campaign-1", 3600)[0] == original

    def test_empty_window(self, session_factory):
        assert SqlSampleStore(session_factory).window("promoter-1", "campaign-1", 600) == []

    def test_evict(self, session_factory):
        store = SqlSampleStore(session_factory)
        store.add_many([make_sample(100, 0, 0, START), make_sample(200, 0, 0, START + timedelta(hours=2))])

        assert store.evict(START + timedelta(hours=1)) == 1
        assert len(store.window("promoter-1", "campaign-1", 86400)) == 1

    def test_aware_input_matches_stored_naive_rows(self, session_factory):
        store = SqlSampleStore(session_factory)
        store.add_many([make_sample(100, 0, 0, START)])
        aware = make_sample(100, 0, 0, START.replace(tzinfo=timezone.utc))

        assert store.add_many([aware]) == 0
        assert isinstance(store.window("promoter-1", "campaign-1", 60)[0].observed_at, datetime)

    def test_window_from_anchor(self, session_factory):
        store = SqlSampleStore(session_factory)
        store.add_many([make_sample(100 * i, 0, 0, START + timedelta(minutes=i)) for i in range(30)])

        window = store.window("promoter-1", "campaign-1", 600, anchor=START + timedelta(minutes=15))
        assert len(window) == 25
        assert window[0].view_count == 500

    def test_database_errors_are_wrapped(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        store = SqlSampleStore(lambda: session)

        with pytest.raises(SampleStoreError, match="database is locked"):
            store.add_many([make_sample(100, 0, 0, START)])
        with pytest.raises(SampleStoreError, match="database is locked"):
            store.window("promoter-1", "campaign-1", 600)
        session.rollback.assert_called_once()
        assert session.close.call_count == 2
