"""Ticto webhook dispatch, deadline enforcement and log bookkeeping."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.db import OperationalError, connection, transaction
from django.utils import timezone

from billing.errors import BillingError, BillingErrorCode, WebhookDeadlineExceeded
from billing.models import PaymentGateway, WebhookLog
from billing.observability.logging import log_billing_event
from billing.observability.metrics import WEBHOOK_LATENCY, WEBHOOK_RECEIVED_COUNT
from billing.services import subscription_reconciler as reconciler
from billing.services.ticto import TictoPayload
from workspace.models import Workspace

logger = logging.getLogger(__name__)

Handler = Callable[..., Dict[str, Any]]

EVENT_HANDLERS: Dict[str, Handler] = {
    "purchase.approved": reconciler.handle_subscription_created,
    "subscription.created": reconciler.handle_subscription_created,
    "subscription.cancelled": reconciler.handle_subscription_cancelled,
    "subscription.card_updated": reconciler.handle_card_updated,
    "subscription.trial_started": reconciler.handle_trial_started,
    "subscription.trial_ended": reconciler.handle_trial_ended,
    "subscription.resumed": reconciler.handle_subscription_resumed,
    "subscription.past_due": reconciler.handle_subscription_past_due,
    "subscription.extended": reconciler.handle_subscription_extended,
    "subscription.ended": reconciler.handle_subscription_ended,
    "payment.chargeback": reconciler.handle_chargeback,
    "payment.refunded": reconciler.handle_refund,
}


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a webhook handler invocation."""

    status: str
    result: Dict[str, Any] = field(default_factory=dict)
    detail: str = ""

    PROCESSED = "processed"
    IGNORED = "ignored"

    @property
    def workspace_id(self) -> Optional[str]:
        return self.result.get("workspace_id")


def dispatch_event(*, event_type: str, payload: TictoPayload, gateway: PaymentGateway) -> HandlerResult:
    """Route a normalized event to its reconciler handler."""

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring unsupported Ticto event type '%s'.", event_type)
        return HandlerResult(
            status=HandlerResult.IGNORED,
            result={"status": "ignored", "event_type": event_type},
            detail="Unsupported event type",
        )

    return HandlerResult(status=HandlerResult.PROCESSED, result=handler(payload, gateway, event_type=event_type))


def statement_timeout_sql(vendor: str, deadline_seconds: Optional[float]) -> Optional[str]:
    """``SET LOCAL`` statement bounding every query of the handler transaction, where supported."""

    if not deadline_seconds or vendor != "postgresql":
        return None
    return f"SET LOCAL statement_timeout = {max(int(deadline_seconds * 1000), 1)}"


def dispatch_with_deadline(
    *,
    event_type: str,
    payload: TictoPayload,
    gateway: PaymentGateway,
    deadline_seconds: Optional[float] = None,
) -> HandlerResult:
    """Run the handler in one transaction bounded by the deadline.

    On PostgreSQL each statement is cut off by ``statement_timeout``. The
    elapsed-time check after the handler returns is a rollback guard: work
    that finished late is discarded, but time spent outside the database is
    not interrupted.
    """

    if deadline_seconds is None:
        deadline_seconds = float(settings.BILLING_WEBHOOK_DEADLINE_SECONDS)

    started = time.monotonic()
    with transaction.atomic():
        timeout_sql = statement_timeout_sql(connection.vendor, deadline_seconds)
        if timeout_sql:
            with connection.cursor() as cursor:
                cursor.execute(timeout_sql)
        try:
            outcome = dispatch_event(event_type=event_type, payload=payload, gateway=gateway)
        except OperationalError as exc:
            elapsed = time.monotonic() - started
            if deadline_seconds and elapsed >= deadline_seconds:
                raise _deadline_exceeded(event_type, elapsed, deadline_seconds) from exc
            raise
        elapsed = time.monotonic() - started
        if deadline_seconds and elapsed > deadline_seconds:
            raise _deadline_exceeded(event_type, elapsed, deadline_seconds)
    return outcome


def _deadline_exceeded(event_type: str, elapsed: float, deadline_seconds: float) -> WebhookDeadlineExceeded:
    return WebhookDeadlineExceeded(
        f"Handler for {event_type} took {elapsed:.2f}s (deadline {deadline_seconds:.2f}s).",
        context={"elapsed_seconds": round(elapsed, 3)},
    )


def process_webhook_log(log: Optional[WebhookLog], *, event_type: str, payload: TictoPayload,
                        gateway: PaymentGateway) -> HandlerResult:
    """Dispatch an event and record the outcome on its log row.

    Errors are recorded on the log and re-raised for the caller to translate.
    """

    if log is not None:
        _update_log(log, status=WebhookLog.Status.PROCESSING, gateway=gateway, error_message="")

    started = time.monotonic()
    try:
        outcome = dispatch_with_deadline(event_type=event_type, payload=payload, gateway=gateway)
    except Exception as exc:
        code = exc.code if isinstance(exc, BillingError) else BillingErrorCode.UNKNOWN
        WEBHOOK_RECEIVED_COUNT.labels(integration=gateway.slug, event_type=event_type, outcome="failed").inc()
        mark_log_failed(log, str(exc) or code.message, code)
        log_billing_event(
            message="Webhook processing failed.",
            event=event_type,
            level=logging.WARNING,
            extra={"error": code.value, "log_id": getattr(log, "pk", None)},
        )
        raise
    finally:
        WEBHOOK_LATENCY.labels(integration=gateway.slug).observe(time.monotonic() - started)

    WEBHOOK_RECEIVED_COUNT.labels(integration=gateway.slug, event_type=event_type, outcome=outcome.status).inc()
    if log is not None:
        _update_log(
            log,
            status=WebhookLog.Status.SUCCESS,
            result=outcome.result,
            processed_at=timezone.now(),
            workspace_id=_valid_workspace_id(outcome.workspace_id),
        )
    log_billing_event(
        message="Webhook processed.",
        event=event_type,
        workspace_id=outcome.workspace_id,
        extra={"outcome": outcome.status, "log_id": getattr(log, "pk", None)},
    )
    return outcome


def mark_log_failed(log: Optional[WebhookLog], message: str,
                    code: BillingErrorCode = BillingErrorCode.UNKNOWN) -> None:
    if log is None:
        return
    _update_log(
        log,
        status=WebhookLog.Status.FAILED,
        error_message=message[:2000],
        result={"error": code.value},
        processed_at=timezone.now(),
    )


def _update_log(log: WebhookLog, **fields) -> None:
    for name, value in fields.items():
        setattr(log, name, value)
    log.save(update_fields=list(fields.keys()))


def _valid_workspace_id(value):
    if not value:
        return None
    return value if Workspace.objects.filter(pk=value).exists() else None


__all__ = [
    "EVENT_HANDLERS",
    "HandlerResult",
    "dispatch_event",
    "dispatch_with_deadline",
    "mark_log_failed",
    "process_webhook_log",
    "statement_timeout_sql",
]
