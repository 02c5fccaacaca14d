"""Ticto webhook endpoint for processing payment events."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.errors import BillingError, BillingErrorCode, WebhookInProgress
from billing.models import WebhookLog
from billing.observability.metrics import WEBHOOK_RECEIVED_COUNT
from billing.services.ticto import (
    TICTO_SLUG,
    NormalizedEvent,
    TictoPayload,
    extract_token,
    load_platform_gateway,
    normalize_event,
    validate_token,
)
from billing.tasks_webhooks import mark_log_failed, process_webhook_log

logger = logging.getLogger(__name__)

REDACTED_HEADERS = {"authorization", "x-ticto-signature", "cookie"}


@method_decorator(csrf_exempt, name="dispatch")
class TictoWebhookView(APIView):
    """Receive Ticto webhook events and reconcile them synchronously."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["get", "post"]

    def get(self, request, *args, **kwargs):
        return Response(
            {
                "success": True,
                "message": "Webhook Ticto ativo - Versão 2.0",
                "timestamp": timezone.now().isoformat(),
                "status": "ready",
            }
        )

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        raw = self._decode_payload(request.body)
        event = normalize_event(raw)
        payload = TictoPayload(raw)
        headers = _safe_headers(request.headers)

        if event.is_test:
            return self._acknowledge_test(_record_unverified_receipt(event=event, raw=raw, headers=headers), event)

        try:
            gateway = load_platform_gateway(TICTO_SLUG)
            validate_token(gateway, extract_token(request.headers))
        except BillingError as exc:
            logger.warning("Ticto webhook rejected: %s", exc)
            WEBHOOK_RECEIVED_COUNT.labels(integration=TICTO_SLUG, event_type=event.event_type,
                                          outcome="rejected").inc()
            mark_log_failed(_record_unverified_receipt(event=event, raw=raw, headers=headers), str(exc), exc.code)
            return _failure(exc.code)

        external_event_id = payload.external_event_id(event.event_type)
        log_entry, already_received = _record_event_receipt(
            event=event,
            external_event_id=external_event_id,
            raw=raw,
            headers=headers,
        )
        if already_received:
            logger.info(
                "Ticto event %s (%s) already received with status=%s.",
                external_event_id,
                event.event_type,
                log_entry.status,
            )
            WEBHOOK_RECEIVED_COUNT.labels(integration=TICTO_SLUG, event_type=event.event_type,
                                          outcome="duplicate").inc()
            if log_entry.status == WebhookLog.Status.SUCCESS:
                return Response({"success": True, "duplicate": True, "result": log_entry.result})
            return _failure(WebhookInProgress.code, status.HTTP_409_CONFLICT)

        try:
            outcome = process_webhook_log(log_entry, event_type=event.event_type, payload=payload, gateway=gateway)
        except BillingError as exc:
            logger.warning("Ticto event %s failed: %s", event.event_type, exc)
            return _failure(exc.code)
        except Exception:
            logger.exception("Unexpected error while processing Ticto event %s.", event.event_type)
            return _failure(BillingErrorCode.UNKNOWN)

        return Response({"success": True, "result": outcome.result})

    @staticmethod
    def _decode_payload(body: bytes) -> Dict[str, Any]:
        """Empty or malformed bodies are treated as a provider validation ping."""
        if not body:
            return {"event": "validation"}
        try:
            decoded = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.info("Received non-JSON Ticto webhook body; treating it as validation.")
            return {"event": "validation"}
        if not isinstance(decoded, dict) or not decoded:
            return {"event": "validation"}
        return decoded

    @staticmethod
    def _acknowledge_test(log_entry: Optional[WebhookLog], event: NormalizedEvent) -> Response:
        WEBHOOK_RECEIVED_COUNT.labels(integration=TICTO_SLUG, event_type=event.event_type, outcome="test").inc()
        if log_entry is not None:
            log_entry.status = WebhookLog.Status.SUCCESS
            log_entry.result = {"status": "test"}
            log_entry.processed_at = timezone.now()
            log_entry.save(update_fields=["status", "result", "processed_at"])
        return Response(
            {
                "success": True,
                "message": "Webhook de teste recebido com sucesso",
                "event": event.event_type,
            }
        )


def _failure(code: BillingErrorCode, http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> Response:
    return Response({"success": False, "error": code.value}, status=http_status)


def _safe_headers(headers) -> Dict[str, str]:
    return {key: ("***" if key.lower() in REDACTED_HEADERS else str(value)) for key, value in headers.items()}


def _record_unverified_receipt(*, event: NormalizedEvent, raw: Dict[str, Any],
                               headers: Dict[str, str]) -> Optional[WebhookLog]:
    """Insert a fresh log row that is never matched against earlier deliveries."""

    try:
        return WebhookLog.objects.create(
            integration_slug=TICTO_SLUG,
            event_type=event.event_type,
            event_category=event.category,
            payload=raw,
            headers=headers,
            status=WebhookLog.Status.RECEIVED,
        )
    except DatabaseError:
        logger.exception("Could not record Ticto webhook receipt; continuing without a log row.")
        return None


def _record_event_receipt(
    *,
    event: NormalizedEvent,
    external_event_id: Optional[str],
    raw: Dict[str, Any],
    headers: Dict[str, str],
) -> Tuple[Optional[WebhookLog], bool]:
    """Create or reuse the log row for an authenticated delivery; returns ``(log, already_received)``.

    A failed log is reset and processed again on the same row; any other
    existing row is reported back as already received. Losing the
    insert to a concurrent delivery of the same event counts as a duplicate.
    A database failure here never blocks processing.
    """

    try:
        with transaction.atomic():
            if external_event_id:
                log_entry = (
                    WebhookLog.objects.select_for_update()
                    .filter(integration_slug=TICTO_SLUG, external_event_id=external_event_id)
                    .first()
                )
                if log_entry:
                    WebhookLog.objects.filter(pk=log_entry.pk).update(attempts=F("attempts") + 1)
                    log_entry.refresh_from_db(fields=["attempts"])
                    if log_entry.status != WebhookLog.Status.FAILED:
                        return log_entry, True

                    log_entry.status = WebhookLog.Status.RECEIVED
                    log_entry.payload = raw
                    log_entry.headers = headers
                    log_entry.error_message = ""
                    log_entry.result = None
                    log_entry.processed_at = None
                    log_entry.save(
                        update_fields=["status", "payload", "headers", "error_message", "result", "processed_at"]
                    )
                    return log_entry, False

            log_entry = WebhookLog.objects.create(
                integration_slug=TICTO_SLUG,
                event_type=event.event_type,
                event_category=event.category,
                external_event_id=external_event_id,
                payload=raw,
                headers=headers,
                status=WebhookLog.Status.RECEIVED,
            )
            return log_entry, False
    except IntegrityError:
        existing = WebhookLog.objects.filter(integration_slug=TICTO_SLUG, external_event_id=external_event_id).first()
        if existing is None:
            raise
        return existing, True
    except DatabaseError:
        logger.exception("Could not record Ticto webhook receipt; continuing without a log row.")
        return None, False
