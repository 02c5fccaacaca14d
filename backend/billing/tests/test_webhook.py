from decimal import Decimal
from types import SimpleNamespace

import pytest
from django.db import OperationalError
from rest_framework.test import APIClient

from billing import tasks_webhooks
from billing.errors import WebhookDeadlineExceeded
from billing.models import CreditTransaction, Invoice, WebhookLog, WorkspaceCredits, WorkspaceSubscription
from billing.services.ticto import TictoPayload
from billing.tests.factories import (
    WEBHOOK_URL,
    auth_headers,
    make_gateway,
    make_offer,
    make_plan,
    make_subscription,
    make_user,
    make_workspace,
    ticto_payload,
)

Status = WorkspaceSubscription.Status
BUYER = "comprador@example.com"


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def gateway():
    return make_gateway()


@pytest.fixture
def plan(gateway):
    plan = make_plan("growth-webhook", credits_per_month=Decimal("100"))
    make_offer(plan, gateway, "OFFER-1")
    return plan


@pytest.fixture
def buyer_workspace():
    return make_workspace(owner=make_user("comprador", email=BUYER))


def post(client, payload, **headers):
    return client.post(WEBHOOK_URL, data=payload, format="json", **(headers or auth_headers()))


@pytest.mark.django_db
def test_get_reports_ready(client):
    response = client.get(WEBHOOK_URL)

    assert response.status_code == 200
    assert response.json()["status"] == "ready"


@pytest.mark.django_db
def test_test_event_is_acknowledged_without_gateway(client):
    response = client.post(WEBHOOK_URL, data={"event": "test"}, format="json")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["event"] == "test"

    log_entry = WebhookLog.objects.get()
    assert log_entry.status == WebhookLog.Status.SUCCESS
    assert log_entry.result == {"status": "test"}


@pytest.mark.django_db
def test_empty_body_is_treated_as_validation_ping(client):
    response = client.generic("POST", WEBHOOK_URL, "", content_type="application/json")

    assert response.status_code == 200
    assert response.json()["event"] == "validation"


@pytest.mark.django_db
def test_missing_gateway_is_rejected(client):
    response = post(client, ticto_payload("authorized", email=BUYER))

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "gateway_not_configured"}


@pytest.mark.django_db
def test_invalid_token_is_rejected_and_logged(client, gateway):
    response = post(client, ticto_payload("authorized", email=BUYER), HTTP_X_TICTO_SIGNATURE="wrong")

    assert response.status_code == 500
    assert response.json()["error"] == "invalid_webhook_token"

    log_entry = WebhookLog.objects.get()
    assert log_entry.status == WebhookLog.Status.FAILED
    assert log_entry.result == {"error": "invalid_webhook_token"}
    assert log_entry.headers["X-Ticto-Signature"] == "***"


@pytest.mark.django_db
def test_bearer_authorization_header_is_accepted(client, gateway, plan, buyer_workspace):
    response = post(client, ticto_payload("authorized", email=BUYER),
                    HTTP_AUTHORIZATION=f"Bearer {gateway.validation_token}")

    assert response.status_code == 200


@pytest.mark.django_db
def test_purchase_activates_plan_and_cancels_previous(client, gateway, plan, buyer_workspace):
    previous = make_subscription(buyer_workspace, make_plan("legacy-webhook"))

    response = post(client, ticto_payload("authorized", email=BUYER))

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["status"] == "created"
    assert result["workspace_id"] == str(buyer_workspace.pk)
    assert Decimal(result["credits_granted"]) == Decimal("100")

    active = WorkspaceSubscription.objects.filter(workspace=buyer_workspace, status=Status.ACTIVE)
    assert active.count() == 1
    subscription = active.get()
    assert subscription.plan == plan
    assert subscription.external_subscription_id == "SUB-1"
    assert subscription.billing_cycle == "monthly"
    assert subscription.current_period_end is not None

    previous.refresh_from_db()
    assert previous.status == Status.CANCELLED
    assert previous.cancelled_at is not None

    invoice = Invoice.objects.get(subscription=subscription)
    assert invoice.status == Invoice.Status.PAID
    assert invoice.amount == Decimal("47.00")
    assert invoice.external_transaction_id == "ORDER-1"

    assert WorkspaceCredits.objects.get(workspace=buyer_workspace).balance == Decimal("100")

    log_entry = WebhookLog.objects.get()
    assert log_entry.status == WebhookLog.Status.SUCCESS
    assert log_entry.external_event_id == "purchase.approved:ORDER-1"
    assert log_entry.workspace_id == buyer_workspace.pk


@pytest.mark.django_db
def test_annual_amount_selects_annual_cycle(client, gateway, buyer_workspace):
    plan = make_plan("annual-webhook")
    make_offer(plan, gateway, "OFFER-Y", unit="years", value=1, price=plan.annual_price)

    post(client, ticto_payload("authorized", email=BUYER, offer_code="OFFER-Y", paid_amount=47000))

    subscription = WorkspaceSubscription.objects.get(workspace=buyer_workspace, status=Status.ACTIVE)
    assert subscription.billing_cycle == "annual"


@pytest.mark.django_db
def test_duplicate_delivery_is_processed_once(client, gateway, plan, buyer_workspace):
    payload = ticto_payload("authorized", email=BUYER)

    first = post(client, payload)
    second = post(client, payload)

    assert first.status_code == second.status_code == 200
    body = second.json()
    assert body["duplicate"] is True
    assert body["result"]["status"] == "created"

    assert WorkspaceSubscription.objects.filter(workspace=buyer_workspace).count() == 1
    assert CreditTransaction.objects.filter(workspace=buyer_workspace).count() == 1
    assert WorkspaceCredits.objects.get(workspace=buyer_workspace).balance == Decimal("100")

    log_entry = WebhookLog.objects.get()
    assert log_entry.attempts == 2


@pytest.mark.django_db
def test_unknown_email_fails_without_provisioning(client, gateway, plan):
    response = post(client, ticto_payload("authorized", email="ninguem@example.com"))

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "UserNotFound"}
    assert not WorkspaceSubscription.objects.exists()

    log_entry = WebhookLog.objects.get()
    assert log_entry.status == WebhookLog.Status.FAILED
    assert log_entry.error_message


@pytest.mark.django_db
def test_failed_event_is_reprocessed_on_redelivery(client, gateway, plan):
    payload = ticto_payload("authorized", email=BUYER)
    assert post(client, payload).status_code == 500

    workspace = make_workspace(owner=make_user("retry", email=BUYER))
    response = post(client, payload)

    assert response.status_code == 200
    assert "duplicate" not in response.json()
    log_entry = WebhookLog.objects.get()
    assert log_entry.status == WebhookLog.Status.SUCCESS
    assert log_entry.attempts == 2
    assert WorkspaceSubscription.objects.filter(workspace=workspace, status=Status.ACTIVE).count() == 1


@pytest.mark.django_db
def test_unmapped_offer_is_reported(client, gateway, buyer_workspace):
    response = post(client, ticto_payload("authorized", email=BUYER, offer_code="NOPE"))

    assert response.status_code == 500
    assert response.json()["error"] == "OfferNotMapped"


@pytest.mark.django_db
def test_unsupported_status_is_ignored(client, gateway):
    response = post(client, ticto_payload("abandoned_cart", email=BUYER))

    assert response.status_code == 200
    assert response.json()["result"] == {"status": "ignored", "event_type": "cart.abandoned"}
    assert WebhookLog.objects.get().event_category == "tracking"


@pytest.mark.django_db
def test_chargeback_penalises_invoice_and_marks_past_due(client, gateway, plan, buyer_workspace):
    post(client, ticto_payload("authorized", email=BUYER))

    response = post(client, ticto_payload("chargeback", email=BUYER))

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["status"] == "chargeback"
    assert Decimal(result["credits_removed"]) == Decimal("4.70")

    assert WorkspaceCredits.objects.get(workspace=buyer_workspace).balance == Decimal("95.30")
    assert Invoice.objects.get().status == Invoice.Status.CHARGEBACK
    assert WorkspaceSubscription.objects.get(workspace=buyer_workspace).status == Status.PAST_DUE


@pytest.mark.django_db
def test_refund_claws_back_half_and_cancels(client, gateway, plan, buyer_workspace):
    post(client, ticto_payload("authorized", email=BUYER))

    response = post(client, ticto_payload("refunded", email=BUYER))

    assert response.status_code == 200
    assert WorkspaceCredits.objects.get(workspace=buyer_workspace).balance == Decimal("76.50")
    assert Invoice.objects.get().status == Invoice.Status.REFUNDED
    subscription = WorkspaceSubscription.objects.get(workspace=buyer_workspace)
    assert subscription.status == Status.CANCELLED
    assert subscription.cancelled_at is not None


@pytest.mark.django_db
def test_subscription_cancelled_by_external_id(client, gateway, plan, buyer_workspace):
    post(client, ticto_payload("authorized", email=BUYER))

    response = post(client, ticto_payload("subscription_canceled", email=BUYER, order_hash="ORDER-2"))

    assert response.json()["result"]["status"] == "cancelled"
    assert WorkspaceSubscription.objects.get(workspace=buyer_workspace).status == Status.CANCELLED


@pytest.mark.django_db
def test_handler_over_deadline_is_rolled_back(client, gateway, plan, buyer_workspace, monkeypatch, settings):
    settings.BILLING_WEBHOOK_DEADLINE_SECONDS = 20
    ticks = iter(range(0, 10_000, 100))
    monkeypatch.setattr(tasks_webhooks, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

    response = post(client, ticto_payload("authorized", email=BUYER))

    assert response.status_code == 500
    assert response.json()["error"] == "webhook_deadline_exceeded"
    assert not WorkspaceSubscription.objects.exists()
    assert not CreditTransaction.objects.exists()
    assert WebhookLog.objects.get().status == WebhookLog.Status.FAILED


@pytest.mark.django_db
def test_forged_redelivery_of_processed_event_is_rejected(client, gateway, plan, buyer_workspace):
    payload = ticto_payload("authorized", email=BUYER)
    assert post(client, payload).status_code == 200

    response = post(client, payload, HTTP_X_TICTO_SIGNATURE="wrong")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "invalid_webhook_token"}

    original = WebhookLog.objects.get(external_event_id="purchase.approved:ORDER-1")
    assert original.status == WebhookLog.Status.SUCCESS
    assert original.attempts == 1
    rejected = WebhookLog.objects.exclude(pk=original.pk).get()
    assert rejected.external_event_id is None
    assert rejected.status == WebhookLog.Status.FAILED


@pytest.mark.django_db
def test_forged_redelivery_keeps_failed_log_replayable(client, gateway, plan):
    payload = ticto_payload("authorized", email=BUYER)
    assert post(client, payload).status_code == 500

    forged = ticto_payload("authorized", email="intruso@example.com")
    response = post(client, forged, HTTP_X_TICTO_SIGNATURE="wrong")

    assert response.status_code == 500
    original = WebhookLog.objects.get(external_event_id="purchase.approved:ORDER-1")
    assert original.status == WebhookLog.Status.FAILED
    assert original.result == {"error": "UserNotFound"}
    assert original.payload["customer"]["email"] == BUYER
    assert original.attempts == 1

    workspace = make_workspace(owner=make_user("retry-forged", email=BUYER))
    assert post(client, payload).status_code == 200
    assert WorkspaceSubscription.objects.filter(workspace=workspace, status=Status.ACTIVE).count() == 1


@pytest.mark.django_db
def test_redelivery_while_processing_asks_for_retry(client, gateway, plan, buyer_workspace):
    WebhookLog.objects.create(
        integration_slug="ticto",
        event_type="purchase.approved",
        external_event_id="purchase.approved:ORDER-1",
        payload={},
        status=WebhookLog.Status.PROCESSING,
    )

    response = post(client, ticto_payload("authorized", email=BUYER))

    assert response.status_code == 409
    assert response.json() == {"success": False, "error": "webhook_in_progress"}
    assert not WorkspaceSubscription.objects.filter(workspace=buyer_workspace).exists()
    assert WebhookLog.objects.get().attempts == 2


@pytest.mark.parametrize(
    "vendor, deadline, expected",
    [
        ("postgresql", 20, "SET LOCAL statement_timeout = 20000"),
        ("postgresql", 0.5, "SET LOCAL statement_timeout = 500"),
        ("postgresql", 0, None),
        ("sqlite", 20, None),
    ],
)
def test_statement_timeout_follows_deadline(vendor, deadline, expected):
    assert tasks_webhooks.statement_timeout_sql(vendor, deadline) == expected


@pytest.mark.django_db
def test_cancelled_statement_past_deadline_reports_deadline(gateway, monkeypatch):
    def cancelled(**kwargs):
        raise OperationalError("canceling statement due to statement timeout")

    ticks = iter(range(0, 10_000, 100))
    monkeypatch.setattr(tasks_webhooks, "time", SimpleNamespace(monotonic=lambda: next(ticks)))
    monkeypatch.setattr(tasks_webhooks, "dispatch_event", cancelled)

    with pytest.raises(WebhookDeadlineExceeded):
        tasks_webhooks.dispatch_with_deadline(event_type="purchase.approved", payload=TictoPayload({}),
                                              gateway=gateway, deadline_seconds=20)
