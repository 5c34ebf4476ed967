"""
Connectivity Monitor.

Tracks whether the backend is reachable.  A failed exchange only counts
as "backend down" when no response arrived at all or when the gateway
answered 502/503/504; every other error status leaves connectivity
alone.

The down transition is debounced through a single timer slot: the first
backend-down failure starts a grace period, further failures while it
is pending are ignored, and any successful exchange cancels it.
Recovery is immediate.

Timers come from an injected ``Scheduler`` so tests can drive time by
hand; production code uses ``AsyncioScheduler``.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol

from sessionguard.errors import BackendDown, GATEWAY_ERROR_STATUSES
from sessionguard.logger import StructuredLogger
from sessionguard.services.base_service import BaseService

ConnectivityListener = Callable[[bool], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...  # noqa: E704


class Scheduler(Protocol):
    """Runs *callback* once after *delay* seconds unless cancelled."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...  # noqa: E704


class AsyncioScheduler:
    """``Scheduler`` backed by the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


def is_backend_down(error: BaseException) -> bool:
    """``True`` for failures that signal an unreachable backend."""
    if isinstance(error, BackendDown):
        return True
    status = getattr(error, "status_code", None)
    return status in GATEWAY_ERROR_STATUSES


class ConnectivityMonitor(BaseService):
    """Debounced ``api_reachable`` flag.

    Parameters
    ----------
    logger:
        Structured JSON logger.
    grace_period_s:
        Seconds a backend-down signal must persist before the flag
        flips to unreachable.
    scheduler:
        Timer source; defaults to ``AsyncioScheduler``.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        grace_period_s: float = 5.0,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        super().__init__(logger)
        self._grace_period_s: float = grace_period_s
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._api_reachable: bool = True
        self._timer: Optional[TimerHandle] = None
        self._listeners: list[ConnectivityListener] = []

    @property
    def api_reachable(self) -> bool:
        return self._api_reachable

    @property
    def is_down_pending(self) -> bool:
        return self._timer is not None

    @property
    def grace_period_s(self) -> float:
        return self._grace_period_s

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Call *listener* with the new flag on every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def schedule_down(self) -> None:
        """Start the grace period, unless one is already running."""
        if self._timer is not None:
            return
        self._timer = self._scheduler.call_later(self._grace_period_s, self._on_grace_elapsed)
        self._logger.debug(
            "Backend-down signal received; grace period started.",
            extra={"event": "CONNECTIVITY_DOWN_PENDING", "grace_s": self._grace_period_s},
        )

    def cancel(self) -> None:
        """Drop the pending down transition, if any."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None

    def mark_up(self) -> None:
        self._set_reachable(True)

    def mark_down(self) -> None:
        self._set_reachable(False)

    def _on_grace_elapsed(self) -> None:
        self._timer = None
        self._set_reachable(False)

    def _set_reachable(self, reachable: bool) -> None:
        if reachable == self._api_reachable:
            return
        self._api_reachable = reachable
        if reachable:
            self._logger.info("Backend reachable again.", extra={"event": "CONNECTIVITY_UP"})
        else:
            self._logger.warning("Backend unreachable.", extra={"event": "CONNECTIVITY_DOWN"})

        for listener in list(self._listeners):
            try:
                listener(reachable)
            except Exception as exc:
                self._logger.error("Connectivity listener failed: %s", exc)
