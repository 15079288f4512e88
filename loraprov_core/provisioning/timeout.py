from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

from loraprov_core.errors import RemoteTimeoutError

_T = TypeVar("_T")


def call_with_timeout(label: str, fn: Callable[[], _T], timeout_s: float) -> _T:
    # A timed-out call keeps running on its own thread; the caller moves on.
    if timeout_s <= 0:
        return fn()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="loraprov-call")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        raise RemoteTimeoutError(f"{label} timed out after {timeout_s:.2f}s") from exc
    finally:
        executor.shutdown(wait=False)
