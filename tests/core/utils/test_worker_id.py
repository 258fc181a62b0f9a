"""Tests for core.utils.worker_id module."""

from core.utils.worker_id import generate_worker_id


class TestGenerateWorkerId:
    def test_no_prefix(self):
        worker_id = generate_worker_id()
        assert isinstance(worker_id, str)
        assert worker_id.count("-") >= 2

    def test_with_prefix(self):
        worker_id = generate_worker_id("orders-cascade")
        assert worker_id.startswith("orders-cascade-")
        assert worker_id.removeprefix("orders-cascade-")

    def test_empty_prefix_treated_as_no_prefix(self):
        assert not generate_worker_id("").startswith("-")
