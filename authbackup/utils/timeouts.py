"""Run a callable with a wall-clock limit."""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional


class OperationTimeout(Exception):
    """Raised when a callable does not finish within its limit."""

    pass


def run_with_timeout(func: Callable[..., Any], timeout: Optional[float], *args, **kwargs) -> Any:
    """
    Run ``func`` on a worker thread and wait at most ``timeout`` seconds.

    The worker is not interrupted on timeout; it finishes in the background
    and its result is discarded.

    Args:
        func: Callable to run
        timeout: Limit in seconds, or None to wait indefinitely
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Any: Whatever func returned

    Raises:
        OperationTimeout: If the limit elapsed first
    """
    if timeout is None:
        return func(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        raise OperationTimeout(f"Timed out after {timeout:g}s")
    finally:
        executor.shutdown(wait=False)
