"""Tests for BoundedRecursiveDeleter."""

import threading

import pytest

from fake_backend import InMemoryBackend
from storage_cli.delete import BoundedRecursiveDeleter
from storage_cli.errors import NotFoundError, PartialFailureError, StorageError


def fill(backend: InMemoryBackend, count: int, prefix: str = "dir/") -> list[str]:
    keys = [f"{prefix}key-{i:02d}" for i in range(count)]
    for key in keys:
        backend.objects[key] = b"x"
    return keys


class TestDeleteAll:
    """Tests for BoundedRecursiveDeleter.delete_all."""

    def test_deletes_every_key_under_prefix(self, backend):
        fill(backend, 10)
        backend.objects["other/keep"] = b"x"

        count = BoundedRecursiveDeleter(backend).delete_all("dir/", max_concurrency=3)

        assert count == 10
        assert list(backend.objects) == ["other/keep"]

    def test_one_failure_does_not_stop_others(self, backend):
        """Key 7 failing leaves one entry in the aggregate error; the rest are gone."""
        keys = fill(backend, 10)
        backend.delete_failures[keys[7]] = StorageError("permission denied")

        with pytest.raises(PartialFailureError) as exc_info:
            BoundedRecursiveDeleter(backend).delete_all("dir/", max_concurrency=4)

        assert list(exc_info.value.failures) == [keys[7]]
        assert keys[7] in str(exc_info.value)
        assert list(backend.objects) == [keys[7]]
        assert len(backend.calls_to("delete_object")) == 10

    def test_listing_failure_deletes_nothing(self):
        """A failure on any listing page happens before the first delete."""
        backend = InMemoryBackend(page_size=5)
        fill(backend, 10)
        backend.list_failures[2] = StorageError("listing failed")

        with pytest.raises(StorageError, match="listing failed"):
            BoundedRecursiveDeleter(backend).delete_all("dir/")

        assert backend.calls_to("delete_object") == []
        assert len(backend.objects) == 10

    def test_not_found_counts_as_success(self, backend):
        keys = fill(backend, 3)
        backend.delete_failures[keys[1]] = NotFoundError(keys[1])

        assert BoundedRecursiveDeleter(backend).delete_all("dir/") == 3

    def test_second_run_is_a_no_op(self, backend):
        fill(backend, 5)
        deleter = BoundedRecursiveDeleter(backend)

        deleter.delete_all("dir/")
        assert deleter.delete_all("dir/") == 0

    def test_concurrency_is_bounded(self):
        """No more than max_concurrency deletes run at once."""
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        class TrackingBackend(InMemoryBackend):
            def delete_object(self, key):
                with lock:
                    state["active"] += 1
                    state["peak"] = max(state["peak"], state["active"])
                try:
                    threading.Event().wait(0.01)
                    super().delete_object(key)
                finally:
                    with lock:
                        state["active"] -= 1

        backend = TrackingBackend()
        fill(backend, 20)

        BoundedRecursiveDeleter(backend).delete_all("dir/", max_concurrency=3)

        assert 1 <= state["peak"] <= 3
        assert backend.objects == {}

    def test_rejects_non_positive_concurrency(self, backend):
        with pytest.raises(ValueError):
            BoundedRecursiveDeleter(backend).delete_all("dir/", max_concurrency=0)
