"""Tests for the part planner."""

import pytest

from storage_cli.errors import InvalidSizeError
from storage_cli.models import MIB, Part, TransferSpec
from storage_cli.planner import part_count, plan, plan_for


class TestPartCount:
    """Tests for part_count function."""

    def test_exact_multiple(self):
        """An exact multiple needs no extra part."""
        assert part_count(10, 5) == 2

    def test_remainder_adds_part(self):
        """A remainder needs one more part."""
        assert part_count(11, 5) == 3

    def test_zero_size(self):
        """An empty object needs no parts."""
        assert part_count(0, 5) == 0


class TestPlan:
    """Tests for plan function."""

    def test_550_mib_in_100_mib_parts(self):
        """550 MiB in 100 MiB parts gives 6 parts, the last one 50 MiB."""
        parts = plan(550 * MIB, 100 * MIB)

        assert len(parts) == 6
        assert parts[0] == Part(index=1, start_byte=0, end_byte=100 * MIB - 1)
        assert parts[-1].index == 6
        assert parts[-1].start_byte == 500 * MIB
        assert parts[-1].end_byte == 550 * MIB - 1
        assert parts[-1].length == 50 * MIB

    def test_parts_cover_range_without_gaps(self):
        """Parts are contiguous and cover every byte exactly once."""
        size = 1234567
        parts = plan(size, 100000)

        assert parts[0].start_byte == 0
        assert parts[-1].end_byte == size - 1
        for previous, current in zip(parts, parts[1:]):
            assert current.start_byte == previous.end_byte + 1
        assert sum(p.length for p in parts) == size

    def test_indices_start_at_one(self):
        """Part numbers are 1-based and consecutive."""
        parts = plan(25, 10)
        assert [p.index for p in parts] == [1, 2, 3]

    def test_single_part_when_size_equals_part_size(self):
        """An object exactly one part long gives one part."""
        assert plan(10, 10) == [Part(index=1, start_byte=0, end_byte=9)]

    def test_zero_size_gives_no_parts(self):
        """An empty object gives an empty plan."""
        assert plan(0, 5 * MIB) == []

    def test_negative_size_raises(self):
        """Negative sizes are rejected."""
        with pytest.raises(InvalidSizeError):
            plan(-1, 10)

    @pytest.mark.parametrize("part_size", [0, -5])
    def test_non_positive_part_size_raises(self, part_size):
        """Part sizes must be positive."""
        with pytest.raises(InvalidSizeError):
            plan(100, part_size)

    def test_deterministic(self):
        """The same inputs always produce the same plan."""
        assert plan(999, 100) == plan(999, 100)


class TestPlanFor:
    """Tests for plan_for function."""

    def test_uses_part_size(self):
        """With multipart enabled the requested part size is used."""
        spec = TransferSpec(source_size=30, part_size=10)
        assert len(plan_for(spec)) == 3

    def test_multipart_disabled_gives_one_part(self):
        """With multipart disabled the whole object is one part."""
        spec = TransferSpec(source_size=30, part_size=10, multipart_enabled=False)
        assert plan_for(spec) == [Part(index=1, start_byte=0, end_byte=29)]

    def test_multipart_disabled_empty_object(self):
        """An empty object still gives no parts with multipart disabled."""
        spec = TransferSpec(source_size=0, part_size=10, multipart_enabled=False)
        assert plan_for(spec) == []
