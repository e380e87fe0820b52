# mlm_engine/utils/matrix.py
"""
Binary matrix position arithmetic.

Positions are 1-based in heap order: position 1 is the root, the children of
P are 2P and 2P + 1.
"""


def _check_position(position: int) -> None:
    if position < 1:
        raise ValueError(f"Matrix positions start at 1, got {position}")


def level_of(position: int) -> int:
    """Tree level of a position (root is level 1)."""
    _check_position(position)
    return position.bit_length()


def left_child(position: int) -> int:
    _check_position(position)
    return 2 * position


def right_child(position: int) -> int:
    _check_position(position)
    return 2 * position + 1


def parent(position: int) -> int:
    """Parent position; the root has parent 0."""
    _check_position(position)
    return position // 2


def side_of(position: int) -> str:
    """'left' for even positions, 'right' for odd ones, 'root' for position 1."""
    _check_position(position)
    if position == 1:
        return "root"
    return "left" if position % 2 == 0 else "right"


def positions_at_level(level: int) -> range:
    """All positions on a level: 2^(L-1) .. 2^L - 1."""
    if level < 1:
        raise ValueError(f"Matrix levels start at 1, got {level}")
    return range(1 << (level - 1), 1 << level)


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


def depth_for_capacity(capacity: int) -> int:
    """Number of payout levels of a cycle: log2(capacity)."""
    if not is_power_of_two(capacity) or capacity < 2:
        raise ValueError(f"Cycle capacity must be a power of two >= 2, got {capacity}")
    return capacity.bit_length() - 1


def payout_level(position: int, levels: int) -> int:
    """
    Payout level of a position in a cycle with the given number of levels.

    A full cycle of capacity 2^levels spills exactly one position (the last)
    onto level levels + 1; that position is paid with the deepest level.
    """
    return min(level_of(position), levels)
