"""
Single-slot status channel for user-visible action feedback.

Only one status is visible at a time and the last write wins: there is no
queueing or merging. Success and error statuses dismiss themselves after a
fixed delay; pending statuses stay until something replaces them.
"""

import asyncio
from collections.abc import Callable

from fhe_recommender.config import settings
from fhe_recommender.infrastructure.observability.logging import get_logger, log_status_transition
from fhe_recommender.models.domain.status_domain import (
    HIDDEN_STATUS,
    StatusPhase,
    TransactionStatus,
)

logger = get_logger(__name__)

StatusListener = Callable[[TransactionStatus], None]


class StatusChannel:
    def __init__(
        self,
        success_delay: float | None = None,
        error_delay: float | None = None,
    ):
        self.success_delay = (
            settings.STATUS_SUCCESS_DISMISS_SECONDS if success_delay is None else success_delay
        )
        self.error_delay = settings.STATUS_ERROR_DISMISS_SECONDS if error_delay is None else error_delay
        self._current: TransactionStatus = HIDDEN_STATUS
        self._dismiss_handle: asyncio.TimerHandle | None = None
        self._listeners: list[StatusListener] = []

    @property
    def current(self) -> TransactionStatus:
        return self._current

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, phase: StatusPhase, message: str) -> TransactionStatus:
        """Replace whatever is displayed with a new status."""
        previous = self._current
        status = TransactionStatus(phase=phase, message=message, visible=True)
        self._cancel_dismiss()
        self._set(status)
        log_status_transition(phase, message, replaced=previous.phase if previous.visible else None)

        if status.self_clearing:
            delay = self.success_delay if phase == "success" else self.error_delay
            self._schedule_dismiss(status, delay)
        return status

    def pending(self, message: str) -> TransactionStatus:
        return self.publish("pending", message)

    def success(self, message: str) -> TransactionStatus:
        return self.publish("success", message)

    def error(self, message: str) -> TransactionStatus:
        return self.publish("error", message)

    def clear(self) -> None:
        self._cancel_dismiss()
        self._set(HIDDEN_STATUS)

    def _schedule_dismiss(self, status: TransactionStatus, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; status will not auto-dismiss")
            return
        self._dismiss_handle = loop.call_later(delay, self._dismiss, status)

    def _dismiss(self, status: TransactionStatus) -> None:
        self._dismiss_handle = None
        # A newer status may have replaced this one since the timer was set.
        if self._current is status:
            self._set(HIDDEN_STATUS)

    def _cancel_dismiss(self) -> None:
        if self._dismiss_handle is not None:
            self._dismiss_handle.cancel()
            self._dismiss_handle = None

    def _set(self, status: TransactionStatus) -> None:
        self._current = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(
                    "Status listener failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
