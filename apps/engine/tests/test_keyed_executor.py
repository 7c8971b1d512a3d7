"""Tests for the key-affine executor."""

import threading
import time

from promoguard_engine.pipeline.executor import KeyedExecutor


def test_same_key_runs_in_submission_order():
    executor = KeyedExecutor(workers=4)
    seen = []

    def work(i):
        time.sleep(0.001 * (5 - i))
        seen.append(i)

    try:
        for i in range(5):
            executor.submit("promoter-1:campaign-1", work, i)
        assert executor.drain(timeout=5)
    finally:
        executor.shutdown()

    assert seen == [0, 1, 2, 3, 4]


def test_shard_is_stable():
    executor = KeyedExecutor(workers=8)
    try:
        assert executor.shard("promoter-1:campaign-1") == executor.shard("promoter-1:campaign-1")
        assert all(0 <= executor.shard(f"promoter-{i}:campaign-1") < 8 for i in range(50))
    finally:
        executor.shutdown()


def test_drain_times_out_on_blocked_work():
    executor = KeyedExecutor(workers=1)
    release = threading.Event()
    try:
        executor.submit("k", release.wait, 5)
        assert executor.drain(timeout=0.05) is False
    finally:
        release.set()
        executor.shutdown()


def test_failed_task_does_not_block_later_work():
    executor = KeyedExecutor(workers=1)
    results = []

    def boom():
        raise RuntimeError("boom")

    try:
        failed = executor.submit("k", boom)
        executor.submit("k", results.append, "after")
        assert executor.drain(timeout=5)
    finally:
        executor.shutdown()

    assert isinstance(failed.exception(), RuntimeError)
    assert results == ["after"]


def test_drain_with_nothing_pending():
    executor = KeyedExecutor(workers=2)
    try:
        assert executor.drain(timeout=0) is True
    finally:
        executor.shutdown()
