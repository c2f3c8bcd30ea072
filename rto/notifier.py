"""
Settlement notifications.

Notifications are one-way messages: they are queued only once the ledger
transaction has committed, delivered at most once on a worker pool, and a
failing channel is logged without ever reaching the financial code path.
"""

from concurrent.futures import Executor, ThreadPoolExecutor
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import structlog
from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

logger = structlog.get_logger()

RTO_REQUEST = "rto_request"
RTO_APPROVED = "rto_approved"
RTO_DECLINED = "rto_declined"
RTO_CANCELLED = "rto_cancelled"
RTO_PAYMENT_RECEIVED = "rto_payment_received"
RTO_PAYMENT_CONFIRMED = "rto_payment_confirmed"
RTO_COMPLETED = "rto_completed"


class NotificationChannel(Protocol):
    def notify(self, user_id, event_type: str, payload: Dict[str, Any]) -> None: ...


class LoggingChannel:
    """Default channel: records the event in the application log."""

    def notify(self, user_id, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info("rto.notification", user_id=user_id, event_type=event_type, **payload)


class SettlementNotifier:
    def __init__(
        self,
        channel: Optional[NotificationChannel] = None,
        executor: Optional[Executor] = None,
    ):
        self.channel = channel or import_string(settings.RTO_NOTIFICATION_CHANNEL)()
        self.executor = executor or _default_executor(settings.RTO_NOTIFICATION_WORKERS)

    def send(self, user_id, event_type: str, **payload) -> None:
        """Queue a notification to go out once the current transaction commits."""

        transaction.on_commit(lambda: self._dispatch(user_id, event_type, payload))

    def _dispatch(self, user_id, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self.executor.submit(self._deliver, user_id, event_type, payload)
        except RuntimeError as exc:
            logger.warning(
                "rto.notification.dropped",
                user_id=user_id,
                event_type=event_type,
                error=str(exc),
            )

    def _deliver(self, user_id, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self.channel.notify(user_id, event_type, payload)
        except Exception as exc:
            logger.warning(
                "rto.notification.failed",
                user_id=user_id,
                event_type=event_type,
                error=str(exc),
            )


@lru_cache
def _default_executor(workers: int) -> Executor:
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rto-notify")
