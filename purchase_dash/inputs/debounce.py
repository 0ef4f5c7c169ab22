from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

from purchase_dash.config import get_config

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Propagates a value only after it stayed unchanged for `delay_ms`.

    Each push restarts the timer on the running event loop. `value` is the last
    settled value; `on_settle` fires once per settled value. After `close()`
    nothing propagates.
    """

    def __init__(
        self,
        initial: T,
        delay_ms: Optional[int] = None,
        on_settle: Optional[Callable[[T], None]] = None,
    ) -> None:
        self.value: T = initial
        self.delay_ms = delay_ms if delay_ms is not None else get_config().search_debounce_ms
        self._on_settle = on_settle
        self._pending: Optional[T] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, value: T) -> None:
        if self._closed:
            return
        self._cancel_timer()
        self._pending = value
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._settle)

    def flush(self) -> None:
        """Settle the pending value now instead of waiting out the window."""
        if self._handle is not None:
            self._cancel_timer()
            self._settle()

    def close(self) -> None:
        self._cancel_timer()
        self._pending = None
        self._closed = True

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _settle(self) -> None:
        self._handle = None
        if self._closed:
            return
        value, self._pending = self._pending, None
        changed = value != self.value
        self.value = value
        if changed and self._on_settle is not None:
            self._on_settle(value)
