# tests/test_matrix.py
"""
Tests for binary matrix position arithmetic.
"""
import pytest

from mlm_engine.utils.matrix import (
    level_of,
    left_child,
    right_child,
    parent,
    side_of,
    positions_at_level,
    is_power_of_two,
    depth_for_capacity,
    payout_level,
)


class TestPositions:

    @pytest.mark.parametrize("position,level", [(1, 1), (2, 2), (3, 2), (4, 3), (7, 3), (8, 4), (1024, 11)])
    def test_level_of(self, position, level):
        assert level_of(position) == level

    def test_children_and_parent(self):
        for position in range(1, 64):
            assert parent(left_child(position)) == position
            assert parent(right_child(position)) == position
        assert parent(1) == 0

    def test_side_of(self):
        assert side_of(1) == "root"
        assert side_of(6) == "left"
        assert side_of(7) == "right"

    def test_positions_at_level(self):
        assert list(positions_at_level(3)) == [4, 5, 6, 7]

    def test_position_zero_refused(self):
        with pytest.raises(ValueError):
            level_of(0)


class TestCapacity:

    def test_power_of_two(self):
        assert is_power_of_two(1024)
        assert not is_power_of_two(1000)
        assert not is_power_of_two(0)

    @pytest.mark.parametrize("capacity,levels", [(2, 1), (4, 2), (1024, 10)])
    def test_depth_for_capacity(self, capacity, levels):
        assert depth_for_capacity(capacity) == levels

    @pytest.mark.parametrize("capacity", [0, 1, 3, 1000])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            depth_for_capacity(capacity)

    def test_closing_position_joins_deepest_level(self):
        """
        TEST: in a capacity-4 cycle the 4th position (tree level 3) is paid
        with level 2, so each level keeps at least one holder.
        """
        assert [payout_level(p, 2) for p in (1, 2, 3, 4)] == [1, 2, 2, 2]
