"""Transaction status tracker — one timed, user-facing status slot.

A new status always replaces the current one. Non-pending statuses clear
themselves after a fixed number of time units (success: 2, error: 3).
The tracker owns the expiry timer handle and cancels it on every publish,
so an expiry scheduled for an older status can never hide a newer one.

Expiring statuses are scheduled on the running asyncio loop; publishing a
success or error status therefore has to happen inside a running loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from cipherledger.models.status import HIDDEN, StatusKind, TransactionStatus

StatusListener = Callable[[TransactionStatus], None]


class TransactionStatusTracker:
    """Owns the single status slot and its expiry timer.

    Parameters (via *config* dict):
        unit_seconds  : float — length of one time unit (default 1.0)
        success_units : int   — success lifetime in units (default 2)
        error_units   : int   — error lifetime in units (default 3)
    """

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        config = config or {}
        self._unit_seconds = float(config.get("unit_seconds", 1.0))
        self._lifetimes: dict[StatusKind, float] = {
            StatusKind.SUCCESS: float(config.get("success_units", 2)),
            StatusKind.ERROR: float(config.get("error_units", 3)),
        }
        self._status = HIDDEN
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: list[StatusListener] = []

    @property
    def current(self) -> TransactionStatus:
        return self._status

    @property
    def has_pending_expiry(self) -> bool:
        return self._timer is not None

    def expiry_seconds(self, kind: StatusKind) -> Optional[float]:
        """Seconds until a status of ``kind`` clears, or None if it never does."""
        units = self._lifetimes.get(StatusKind(kind))
        if units is None:
            return None
        return units * self._unit_seconds

    def publish(self, kind: StatusKind | str, message: str) -> TransactionStatus:
        """Replace the displayed status and restart the expiry timer."""
        kind = StatusKind(kind)
        delay = self.expiry_seconds(kind)
        loop = asyncio.get_running_loop() if delay is not None else None

        self._cancel_timer()
        self._set(TransactionStatus(visible=True, kind=kind, message=message))
        if loop is not None:
            self._timer = loop.call_later(delay, self._expire)
        return self._status

    def pending(self, message: str) -> TransactionStatus:
        return self.publish(StatusKind.PENDING, message)

    def success(self, message: str) -> TransactionStatus:
        return self.publish(StatusKind.SUCCESS, message)

    def error(self, message: str) -> TransactionStatus:
        return self.publish(StatusKind.ERROR, message)

    def clear(self) -> None:
        """Hide the status immediately."""
        self._cancel_timer()
        self._set(HIDDEN)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _expire(self) -> None:
        self._timer = None
        self._set(HIDDEN)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set(self, status: TransactionStatus) -> None:
        self._status = status
        for listener in list(self._listeners):
            listener(status)
