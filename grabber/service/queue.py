"""
Concurrency-bounded job queue.

Jobs are coroutine functions admitted with submit(). A job that needs to
run the fetch tool enters slot(); at most `concurrency` jobs hold a slot at
once and waiting jobs are let in strictly in the order they asked. Jobs
that never ask for a slot (cache hits) are not bounded. Every admitted job
is tracked so shutdown can drain them.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager

from grabber.service.errors import QueueClosedError


class FetchQueue:
    def __init__(self, concurrency, logger=None):
        if concurrency < 1:
            raise ValueError('concurrency must be at least 1')
        self.concurrency = concurrency
        self._logger = logger
        self._active = 0
        self._waiters = deque()
        self._tasks = set()
        self._accepting = True

    def _log(self, message):
        if self._logger:
            self._logger(message)

    @property
    def pending(self):
        """Jobs waiting for a slot"""
        return len(self._waiters)

    @property
    def active(self):
        """Jobs holding a slot"""
        return self._active

    @property
    def in_flight(self):
        """Admitted jobs that have not finished, bounded or not"""
        return len(self._tasks)

    @property
    def accepting(self):
        return self._accepting

    def submit(self, job) -> asyncio.Task:
        """
        Admit a job.

        Args:
            job: Coroutine function taking no arguments

        Returns:
            asyncio.Task resolving to the job's return value

        Raises:
            QueueClosedError: shutdown has started
        """
        if not self._accepting:
            raise QueueClosedError('Queue is shutting down')
        task = asyncio.ensure_future(job())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    @asynccontextmanager
    async def slot(self):
        """Hold one of the concurrency slots for the duration of the block"""
        await self._acquire()
        try:
            yield
        finally:
            self._release()

    async def _acquire(self):
        if self._active < self.concurrency and not self._waiters:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _release(self):
        # Hand the slot straight to the oldest waiter; the active count only
        # drops when nobody is waiting.
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1

    def _on_done(self, task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log(f'Job failed with unhandled error: {exc!r}')

    async def shutdown(self, timeout) -> int:
        """
        Stop admitting jobs and wait for admitted ones to finish.

        Jobs still running after timeout seconds are abandoned, not
        cancelled; a yt-dlp process they started keeps running.

        Returns:
            Number of abandoned jobs
        """
        self._accepting = False
        tasks = set(self._tasks)
        if not tasks:
            return 0

        self._log(f'Draining {len(tasks)} job(s), timeout {timeout}s')
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            self._log(f'Abandoning {len(still_running)} job(s) after drain timeout')
        return len(still_running)
