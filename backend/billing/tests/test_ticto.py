from decimal import Decimal

import pytest

from billing.errors import GatewayNotConfigured, InvalidWebhookToken
from billing.services import ticto
from billing.services.ticto import TictoPayload, extract_token, normalize_event
from billing.tests.factories import VALIDATION_TOKEN, make_gateway


@pytest.mark.parametrize(
    "status, expected",
    [
        ("authorized", ("purchase.approved", "payment")),
        ("chargeback", ("payment.chargeback", "refund")),
        ("subscription_canceled", ("subscription.cancelled", "subscription")),
        ("uncanceled", ("subscription.resumed", "subscription")),
        ("abandoned_cart", ("cart.abandoned", "tracking")),
        ("mystery_status", ("mystery_status", "unknown")),
    ],
)
def test_status_is_mapped_to_event(status, expected):
    event = normalize_event({"status": status})

    assert (event.event_type, event.category) == expected


def test_explicit_event_wins_over_status():
    event = normalize_event({"event": "subscription.created", "status": "refunded"})

    assert event.event_type == "subscription.created"
    assert event.category == "subscription"


def test_test_events_and_empty_payloads():
    assert normalize_event({"event": "ping"}).is_test
    assert normalize_event({"event": "ping"}).category == "test"
    assert normalize_event({}).event_type == "unknown"


def test_payload_reads_v2_order_fields():
    payload = TictoPayload(
        {
            "status": "authorized",
            "status_date": "2025-01-10 12:00:00",
            "item": {"offer_code": "OF-7", "trial_days": "14"},
            "customer": {"email": " Cliente@Example.com "},
            "order": {"hash": "HASH-1", "paid_amount": 9700},
            "subscriptions": [{"id": 321, "next_charge": "2025-02-10 12:00:00"}],
            "query_params": {"workspace_id": "abc"},
        }
    )

    assert payload.offer_code == "OF-7"
    assert payload.customer_email == "Cliente@Example.com"
    assert payload.amount == Decimal("97.00")
    assert payload.external_subscription_id == "321"
    assert payload.transaction_reference == "HASH-1"
    assert payload.trial_days == 14
    assert payload.next_charge.day == 10
    assert payload.requested_workspace_id == "abc"
    assert payload.external_event_id("purchase.approved") == "purchase.approved:HASH-1"


def test_payload_reads_flat_data_fields():
    payload = TictoPayload({"event": "subscription.created",
                            "data": {"id": "evt-1", "offer_id": 55, "amount": "47", "customer": {"email": "a@b.co"}}})

    assert payload.offer_code == "55"
    assert payload.amount == Decimal("47.00")
    assert payload.customer_email == "a@b.co"
    assert payload.external_event_id("subscription.created") == "subscription.created:evt-1"
    assert TictoPayload({}).external_event_id("purchase.approved") is None


def test_token_extraction_prefers_signature_header():
    assert extract_token({"x-ticto-signature": "abc", "authorization": "Bearer other"}) == "abc"
    assert extract_token({"Authorization": "Bearer xyz "}) == "xyz"
    assert extract_token({}) == ""


@pytest.mark.django_db
def test_token_validation():
    gateway = make_gateway()

    ticto.validate_token(gateway, VALIDATION_TOKEN)
    with pytest.raises(InvalidWebhookToken):
        ticto.validate_token(gateway, "wrong")
    with pytest.raises(InvalidWebhookToken):
        ticto.validate_token(gateway, "")


@pytest.mark.django_db
def test_inactive_gateway_is_not_loaded():
    make_gateway(is_active=False)

    with pytest.raises(GatewayNotConfigured):
        ticto.load_platform_gateway()


@pytest.mark.django_db
def test_connection_check_reports_missing_gateway():
    result = ticto.test_ticto_connection(VALIDATION_TOKEN)

    assert result["success"] is False
    assert result["error"] == "gateway_not_configured"
