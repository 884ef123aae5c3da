"""Request correlation over the single settlement connection.

Ordinary requests are matched by the request id this engine assigns.
Multi-signer envelopes carry an id the engine never issued, so their
acknowledgments are matched by method tag: a response is handed to the
oldest waiter registered for that method. Every inbound frame resolves
at most one waiter.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import DungeonServerError, LedgerRejected, LedgerTimeout
from ..models.rpc import Frame

log = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    future: asyncio.Future
    label: str
    request_id: Any = None
    method: str | None = None
    created_at: float = field(default_factory=time.monotonic)


class RequestCorrelator:
    def __init__(self) -> None:
        self._next_id = 1
        self._by_id: dict[Any, PendingRequest] = {}
        self._by_method: list[PendingRequest] = []

    def __len__(self) -> int:
        return len(self._by_id) + len(self._by_method)

    def next_id(self) -> int:
        request_id = self._next_id
        self._next_id += 1
        return request_id

    def expect_id(self, request_id: Any, method: str) -> PendingRequest:
        if request_id in self._by_id:
            raise ValueError(f"Request id {request_id} is already pending")
        entry = PendingRequest(
            future=asyncio.get_running_loop().create_future(),
            label=method,
            request_id=request_id,
        )
        self._by_id[request_id] = entry
        return entry

    def expect_method(self, method: str) -> PendingRequest:
        entry = PendingRequest(
            future=asyncio.get_running_loop().create_future(),
            label=method,
            method=method,
        )
        self._by_method.append(entry)
        return entry

    async def wait(self, entry: PendingRequest, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(entry.future, timeout)
        except asyncio.TimeoutError:
            log.warning(f"{entry.label} timed out after {timeout}s")
            raise LedgerTimeout(entry.label, timeout) from None
        finally:
            self._discard(entry)

    def discard(self, entry: PendingRequest) -> None:
        self._discard(entry)
        if not entry.future.done():
            entry.future.cancel()

    def _discard(self, entry: PendingRequest) -> None:
        if entry.request_id is not None and self._by_id.get(entry.request_id) is entry:
            del self._by_id[entry.request_id]
        if entry in self._by_method:
            self._by_method.remove(entry)

    def dispatch(self, frame: Frame) -> bool:
        entry = self._claim(frame)
        if entry is None:
            return False

        self._discard(entry)
        if frame.is_error:
            entry.future.set_exception(
                LedgerRejected(entry.label, frame.error_message, frame.error_code)
            )
        else:
            entry.future.set_result(frame.params)
        return True

    def _claim(self, frame: Frame) -> PendingRequest | None:
        entry = self._by_id.get(frame.request_id)
        if entry is not None and not entry.future.done():
            return entry

        for candidate in self._by_method:
            if candidate.future.done():
                continue
            if frame.is_error or candidate.method == frame.method:
                return candidate
        return None

    def reject_all(self, exc: DungeonServerError) -> None:
        entries = list(self._by_id.values()) + list(self._by_method)
        self._by_id.clear()
        self._by_method.clear()
        for entry in entries:
            if not entry.future.done():
                entry.future.set_exception(exc)
        if entries:
            log.warning(f"Rejected {len(entries)} pending request(s): {exc.message}")
