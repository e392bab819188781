"""Asynchronous delivery of appointment notifications.

Events are handed over after the appointment transaction commits and are
delivered on a small thread pool, so a slow or broken notification channel
never blocks or fails the request that produced them.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Protocol

from tenacity import RetryError, Retrying, stop_after_attempt, wait_exponential

from cadastraqui.core import config
from cadastraqui.core.clock import local_now

logger = logging.getLogger(__name__)


class NotificationKind:
    APPOINTMENT_CREATED = 'APPOINTMENT_CREATED'
    APPOINTMENT_RESCHEDULED = 'APPOINTMENT_RESCHEDULED'
    APPOINTMENT_CANCELLED = 'APPOINTMENT_CANCELLED'
    APPOINTMENT_COMPLETED = 'APPOINTMENT_COMPLETED'


@dataclass(frozen=True)
class NotificationEvent:
    recipient_id: int
    kind: str
    title: str
    message: str
    link: str | None = None
    created_at: datetime = field(default_factory=local_now)


class NotificationSink(Protocol):
    def deliver(self, event: NotificationEvent) -> None:
        ...


class NotificationDispatcher:
    def __init__(
        self,
        sink: NotificationSink,
        max_workers: int | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.sink = sink
        self.max_attempts = max_attempts or config.NOTIFICATION_MAX_ATTEMPTS
        self.backoff_seconds = config.NOTIFICATION_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self.backoff_max_seconds = (
            config.NOTIFICATION_BACKOFF_MAX_SECONDS if backoff_max_seconds is None else backoff_max_seconds
        )
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.NOTIFICATION_WORKERS,
            thread_name_prefix='notifications',
        )
        self._pending: set[Future] = set()
        self._pending_lock = Lock()

    def emit(self, event: NotificationEvent) -> None:
        """Queue ``event`` for delivery and return immediately."""
        try:
            future = self._executor.submit(self._deliver, event)
        except RuntimeError:
            logger.error('Notification dispatcher is shut down; dropped %s for user %s', event.kind, event.recipient_id)
            return

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def emit_all(self, events: list[NotificationEvent]) -> None:
        for event in events:
            self.emit(event)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued deliveries; returns False if some are still running after ``timeout``."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _retrying(self) -> Retrying:
        options = {
            'stop': stop_after_attempt(self.max_attempts),
            'wait': wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds),
            'reraise': False,
        }
        if self._sleep is not None:
            options['sleep'] = self._sleep
        return Retrying(**options)

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            for attempt in self._retrying():
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            'Retrying %s notification for user %s (attempt %s)',
                            event.kind,
                            event.recipient_id,
                            attempt.retry_state.attempt_number,
                        )
                    self.sink.deliver(event)
        except RetryError as exc:
            logger.error(
                'Giving up on %s notification for user %s after %s attempts: %s',
                event.kind,
                event.recipient_id,
                self.max_attempts,
                exc.last_attempt.exception(),
            )
            return

        logger.debug('Delivered %s notification to user %s', event.kind, event.recipient_id)
