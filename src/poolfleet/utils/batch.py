""" Slow-start execution of many independent calls.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)


def slow_start_batch(count, initial_batch_size, fn):
    """ Call ``fn(index)`` for every index in ``range(count)``.

    Calls are grouped into batches run concurrently, starting with
    ``initial_batch_size``. Each time a whole batch succeeds the next one
    doubles (capped by what remains). When a batch has failures, the rest of
    that batch is waited for and no further batch is started.

    Args:
        count: Total number of calls
        initial_batch_size: Size of the first batch
        fn: Callable taking the call index; raising means failure

    Returns:
        (successes, error): number of successful calls and the first error
        raised (by index order within the failing batch), or None.
    """
    remaining = count
    successes = 0
    index = 0
    batch_size = min(remaining, initial_batch_size)
    while batch_size > 0:
        indexes = range(index, index + batch_size)
        index += batch_size

        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            futures = [executor.submit(fn, i) for i in indexes]
        errors = [f.exception() for f in futures if f.exception() is not None]

        successes += batch_size - len(errors)
        if errors:
            logger.debug(
                f"Batch of {batch_size} had {len(errors)} failures, skipping remaining {remaining - batch_size} calls"
            )
            return successes, errors[0]

        remaining -= batch_size
        batch_size = min(2 * batch_size, remaining)

    return successes, None
