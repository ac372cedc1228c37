import threading

from blockchain.pagination import Pagination
from cache.block_window import BlockWindow
from cache.error_queues import ErrorHeightQueues
from cache.errors import EmptyError, NotFoundError
from cache.locking import ReadWriteLock


def test_readers_never_see_stale_positions(make_block):
    """Test concurrent readers during insert+evict only see consistent blocks."""
    window = BlockWindow(capacity=5)
    for height in range(1, 6):
        window.insert_block(make_block(height))

    errors = []
    done = threading.Event()

    def reader():
        while not done.is_set():
            for height in range(1, 60):
                try:
                    block = window.block_by_hash(str(height))
                except NotFoundError:
                    continue
                if block.height != height:
                    errors.append((height, block.height))
            page = window.latest_blocks(Pagination(page=1, limit=5))
            heights = [b.height for b in page]
            if heights != sorted(heights, reverse=True):
                errors.append(heights)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for height in range(6, 60):
        window.insert_block(make_block(height))
    done.set()
    for t in threads:
        t.join()

    assert errors == []
    assert window.block_size() == 5
    assert window.latest_block_height() == 59


def test_queue_pops_are_exclusive():
    """Test concurrent pops hand out every height exactly once."""
    queues = ErrorHeightQueues()
    queues.push_error_range(0, 501)
    popped = []
    lock = threading.Lock()

    def worker():
        while True:
            try:
                height = queues.pop_error_height()
            except EmptyError:
                return
            with lock:
                popped.append(height)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(popped) == list(range(1, 501))


def test_write_lock_excludes_readers():
    lock = ReadWriteLock()
    inside = []

    lock.acquire_write()
    reader = threading.Thread(target=lambda: (lock.acquire_read(), inside.append(1), lock.release_read()))
    reader.start()
    reader.join(timeout=0.1)
    assert inside == []

    lock.release_write()
    reader.join()
    assert inside == [1]
