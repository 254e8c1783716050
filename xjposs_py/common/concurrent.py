from concurrent.futures import ThreadPoolExecutor, Future, wait
from typing import List, Optional
from threading import Semaphore


def sure_release(semaphore: Semaphore, func, *args, **kwargs):
    """Release semaphore after func is done."""

    try:
        return func(*args, **kwargs)
    finally:
        semaphore.release()


class Executor:
    """
    Executor is a ThreadPoolExecutor bounded by a semaphore.

    `acquire` blocks until one of the `max_workers` slots is free, so no more than
    `max_workers` tasks are ever admitted at the same time. The slot is released
    when the task returns or raises.
    """

    def __init__(self, max_workers: int = 1):
        assert max_workers >= 1, "`max_workers` must be >= 1"

        self._max_workers = max_workers
        self._pool = ThreadPoolExecutor(max_workers=max_workers)
        self._semaphore = Semaphore(max_workers)
        self._futures: List[Future] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        wait(self._futures)
        self._pool.shutdown()
        self._futures.clear()

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Wait for a free slot. The slot is owned by the next `submit_acquired`"""

        if timeout is None:
            return self._semaphore.acquire()
        return self._semaphore.acquire(timeout=timeout)

    def release(self):
        """Give back a slot gotten from `acquire` which will not be used"""

        self._semaphore.release()

    def submit_acquired(self, func, *args, **kwargs) -> Future:
        """Submit a task to the slot gotten from `acquire`"""

        try:
            fut = self._pool.submit(sure_release, self._semaphore, func, *args, **kwargs)
        except BaseException:
            self._semaphore.release()
            raise
        self._futures.append(fut)
        return fut
