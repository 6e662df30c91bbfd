from __future__ import annotations

import pytest

from squabble_mcp.streaming import CircularBuffer


def test_buffer_keeps_last_items_in_push_order() -> None:
    for capacity in (1, 2, 3, 7):
        buffer: CircularBuffer[int] = CircularBuffer(capacity)
        for value in range(capacity * 3 + 1):
            buffer.push(value)

        expected = list(range(capacity * 3 + 1))[-capacity:]
        assert buffer.to_list() == expected
        assert len(buffer) == capacity
        assert buffer.is_full()


def test_buffer_partial_fill_and_recent() -> None:
    buffer: CircularBuffer[str] = CircularBuffer(5)
    buffer.push("a")
    buffer.push("b")
    buffer.push("c")

    assert buffer.to_list() == ["a", "b", "c"]
    assert buffer.get_recent(2) == ["b", "c"]
    assert buffer.get_recent(10) == ["a", "b", "c"]
    assert buffer.get_recent(0) == []
    assert not buffer.is_full()
    assert list(buffer) == ["a", "b", "c"]


def test_buffer_clear_resets_state() -> None:
    buffer: CircularBuffer[int] = CircularBuffer(2)
    buffer.push(1)
    buffer.push(2)
    buffer.push(3)
    buffer.clear()

    assert buffer.to_list() == []
    assert len(buffer) == 0

    buffer.push(4)
    assert buffer.to_list() == [4]


@pytest.mark.parametrize("capacity", [0, -1])
def test_buffer_rejects_non_positive_capacity(capacity: int) -> None:
    with pytest.raises(ValueError):
        CircularBuffer(capacity)
