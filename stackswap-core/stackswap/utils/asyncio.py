import asyncio
import functools
import logging
from contextvars import copy_context
from typing import Awaitable, Callable, Iterable, TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")


async def run_sync(func, *args, thread_pool=None, **kwargs):
    """Run a blocking function in a thread of the given pool (or the loop's default executor)."""
    loop = asyncio.get_running_loop()
    func_wrapped = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(thread_pool, copy_context().run, func_wrapped)


async def run_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]], max_concurrency: int
) -> list[T]:
    """
    Runs the coroutines created by the given factories with at most ``max_concurrency`` of them in flight.

    Factories are started in iteration order by a fixed set of workers pulling from a shared queue. Once a
    coroutine fails, the workers stop picking up new factories, the coroutines already running are allowed to
    finish, and the first error is raised. On success, the results are returned in submission order.

    :param factories: callables returning the awaitables to run
    :param max_concurrency: the maximum number of awaitables running at the same time
    :return: the results of all awaitables, in submission order
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be a positive number, got {max_concurrency}")

    queue: asyncio.Queue = asyncio.Queue()
    for index, factory in enumerate(factories):
        queue.put_nowait((index, factory))

    results: dict[int, T] = {}
    errors: list[BaseException] = []

    async def _worker():
        while not errors:
            try:
                index, factory = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[index] = await factory()
            except Exception as e:
                errors.append(e)

    num_workers = min(max_concurrency, queue.qsize())
    await asyncio.gather(*(_worker() for _ in range(num_workers)))

    if errors:
        if len(errors) > 1:
            LOG.debug("%d operations failed, raising the first error", len(errors))
        raise errors[0]

    return [results[index] for index in sorted(results)]


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    retries: int,
    backoff: float,
    should_retry: Callable[[Exception], bool],
) -> T:
    """
    Awaits ``fn()``, retrying up to ``retries`` times for the errors accepted by ``should_retry``. The time to
    wait between attempts starts at ``backoff`` seconds and doubles after every failed attempt.
    """
    while True:
        try:
            return await fn()
        except Exception as e:
            if retries <= 0 or not should_retry(e):
                raise
            LOG.debug("Retrying in %s seconds after error: %s", backoff, e)
            await asyncio.sleep(backoff)
            retries -= 1
            backoff *= 2
