"""Outstanding-request store keyed by correlation id.

Each entry is an ``asyncio.Future`` resolved exactly once: by the matching
response, by a timeout, or by a connection loss.  Resolving removes the
entry, so ``len(store)`` is always requests sent minus requests resolved.
"""

import asyncio
from typing import Optional


class PendingRequests:
    """Owned map of ``req_id → Future`` for in-flight feed requests."""

    def __init__(self) -> None:
        self._futures: dict[int, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._futures)

    def __contains__(self, req_id: object) -> bool:
        return req_id in self._futures

    def insert(self, req_id: int) -> asyncio.Future:
        """Register *req_id* and return the future its response will resolve."""
        if req_id in self._futures:
            raise KeyError(f"Duplicate request id {req_id!r}")
        future = asyncio.get_running_loop().create_future()
        self._futures[req_id] = future
        return future

    def lookup(self, req_id: int) -> Optional[asyncio.Future]:
        return self._futures.get(req_id)

    def resolve(self, req_id: int, message: dict) -> bool:
        """Complete *req_id* with *message*. Returns False if it was not pending."""
        future = self._futures.pop(req_id, None)
        if future is None:
            return False
        if not future.done():
            future.set_result(message)
        return True

    def fail(self, req_id: int, exc: BaseException) -> bool:
        """Complete *req_id* with *exc*. Returns False if it was not pending."""
        future = self._futures.pop(req_id, None)
        if future is None:
            return False
        if not future.done():
            future.set_exception(exc)
        return True

    def discard(self, req_id: int) -> None:
        self._futures.pop(req_id, None)

    def fail_all(self, exc: BaseException) -> int:
        """Fail every outstanding request with *exc* and return how many there were."""
        futures = list(self._futures.values())
        self._futures.clear()
        for future in futures:
            if not future.done():
                future.set_exception(exc)
        return len(futures)
