import pytest

from cache.error_queues import ErrorHeightQueues
from cache.errors import EmptyError


def test_error_range_pops_newest_first(queues):
    """Test heights strictly between start and end pop newest first."""
    assert queues.push_error_range(5, 9) == 3
    assert queues.error_queue_size() == 3

    popped = [queues.pop_error_height() for _ in range(3)]
    assert popped == [8, 7, 6]

    with pytest.raises(EmptyError):
        queues.pop_error_height()


def test_error_range_without_heights(queues):
    assert queues.push_error_range(9, 5) == 0
    assert queues.push_error_range(5, 5) == 0
    assert queues.push_error_range(5, 6) == 0
    assert queues.error_queue_size() == 0


def test_unverified_queue_is_fifo(queues):
    heights = [0, 2, 3, 4, 99]
    for height in heights:
        queues.push_unverified(height)

    assert queues.unverified_queue_size() == 5
    assert [queues.pop_unverified() for _ in heights] == heights
    with pytest.raises(EmptyError):
        queues.pop_unverified()


def test_persistent_errors_keep_every_push(queues):
    """Test persistent errors read back in insertion order, duplicates kept."""
    for height in [0, 2, 3, 4, 99]:
        queues.push_persistent_error(height)
    assert queues.list_persistent_errors() == [0, 2, 3, 4, 99]

    queues.push_persistent_error(3)
    assert queues.list_persistent_errors() == [0, 2, 3, 4, 99, 3]


def test_persistent_errors_returns_copy():
    queues = ErrorHeightQueues()
    queues.push_persistent_error(1)
    snapshot = queues.list_persistent_errors()
    snapshot.append(2)
    assert queues.list_persistent_errors() == [1]


def test_queues_are_independent(queues):
    queues.push_error_range(1, 3)
    queues.push_unverified(10)

    assert queues.pop_unverified() == 10
    assert queues.pop_error_height() == 2
    assert queues.list_persistent_errors() == []


def test_single_failed_height_pops_first():
    queues = ErrorHeightQueues()
    queues.push_error_range(1, 4)
    queues.push_error_height(9)

    assert queues.error_queue_size() == 3
    assert [queues.pop_error_height() for _ in range(3)] == [9, 3, 2]
