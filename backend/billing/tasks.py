"""Celery tasks for webhook replay and webhook log retention."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.errors import BillingError, BillingErrorCode
from billing.models import WebhookLog
from billing.services.ticto import TictoPayload, load_platform_gateway, normalize_event
from billing.tasks_webhooks import mark_log_failed, process_webhook_log

logger = logging.getLogger(__name__)

REPLAYABLE_STATUSES = (
    WebhookLog.Status.FAILED,
    WebhookLog.Status.RECEIVED,
    WebhookLog.Status.PROCESSING,
)
# Deliveries that never authenticated must come back from the provider, not from a replay.
NON_REPLAYABLE_ERRORS = {BillingErrorCode.INVALID_WEBHOOK_TOKEN.value}


@shared_task
def replay_webhook_log(log_id: int) -> Dict[str, Any]:
    """Re-dispatch a stored webhook that did not complete."""

    with transaction.atomic():
        log_entry = WebhookLog.objects.select_for_update().filter(pk=log_id).first()
        if log_entry is None:
            logger.warning("Webhook log %s does not exist; nothing to replay.", log_id)
            return {"status": "missing", "log_id": log_id}

        if log_entry.status not in REPLAYABLE_STATUSES:
            return {"status": "skipped", "reason": f"status={log_entry.status}", "log_id": log_id}

        previous_error = (log_entry.result or {}).get("error") if isinstance(log_entry.result, dict) else None
        if previous_error in NON_REPLAYABLE_ERRORS:
            return {"status": "skipped", "reason": previous_error, "log_id": log_id}

        log_entry.attempts += 1
        log_entry.save(update_fields=["attempts"])

    raw = log_entry.payload if isinstance(log_entry.payload, dict) else {}
    event = normalize_event(raw)

    try:
        gateway = load_platform_gateway(log_entry.integration_slug)
    except BillingError as exc:
        mark_log_failed(log_entry, str(exc), exc.code)
        return {"status": "failed", "error": exc.code.value, "log_id": log_id}

    try:
        outcome = process_webhook_log(log_entry, event_type=event.event_type, payload=TictoPayload(raw),
                                      gateway=gateway)
    except BillingError as exc:
        logger.warning("Replay of webhook log %s failed: %s", log_id, exc)
        return {"status": "failed", "error": exc.code.value, "log_id": log_id}
    except Exception:
        logger.exception("Unexpected error while replaying webhook log %s.", log_id)
        return {"status": "failed", "error": BillingErrorCode.UNKNOWN.value, "log_id": log_id}

    logger.info("Replayed webhook log %s (%s) with status=%s.", log_id, event.event_type, outcome.status)
    return {"status": "success", "log_id": log_id, "result": outcome.result}


@shared_task
def cleanup_webhook_logs(retention_days: int | None = None) -> Dict[str, int]:
    """Delete successful webhook logs older than the retention window; failures are kept."""

    days = retention_days if retention_days is not None else settings.BILLING_WEBHOOK_LOG_RETENTION_DAYS
    cutoff = timezone.now() - timedelta(days=int(days))
    deleted, _ = WebhookLog.objects.filter(status=WebhookLog.Status.SUCCESS, created_at__lt=cutoff).delete()
    if deleted:
        logger.info("Deleted %s webhook logs older than %s days.", deleted, days)
    return {"deleted": deleted}
