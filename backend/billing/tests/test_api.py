from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from billing.models import WebhookLog
from billing.services import credit_ledger
from billing.tests.factories import (
    VALIDATION_TOKEN,
    add_member,
    make_gateway,
    make_plan,
    make_subscription,
    make_user,
    make_workspace,
)

RPC = "/api/billing/rpc/"


@pytest.fixture
def staff_client():
    client = APIClient()
    client.force_authenticate(make_user("financeiro", is_staff=True))
    return client


@pytest.fixture
def owner():
    return make_user("proprietario")


@pytest.fixture
def workspace(owner):
    return make_workspace(owner=owner)


def client_for(user):
    client = APIClient()
    client.force_authenticate(user)
    return client


@pytest.mark.django_db
def test_add_credits_is_staff_only(owner, workspace, staff_client):
    payload = {"p_workspace_id": str(workspace.pk), "p_amount": "30", "p_description": "Cortesia"}

    denied = client_for(owner).post(f"{RPC}add_workspace_credits/", payload, format="json")
    assert denied.status_code == 403

    response = staff_client.post(f"{RPC}add_workspace_credits/", payload, format="json")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("30")


@pytest.mark.django_db
def test_add_credits_rejects_zero_amount(workspace, staff_client):
    response = staff_client.post(
        f"{RPC}add_workspace_credits/",
        {"workspace_id": str(workspace.pk), "amount": "0"},
        format="json",
    )

    assert response.status_code == 400


@pytest.mark.django_db
def test_set_balance_endpoint(workspace, staff_client):
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    response = staff_client.post(
        f"{RPC}set_workspace_credit_balance/",
        {"workspace_id": str(workspace.pk), "balance": "25"},
        format="json",
    )

    assert response.status_code == 200
    assert Decimal(response.json()["delta"]) == Decimal("15")
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("25")


@pytest.mark.django_db
def test_debit_endpoint_returns_402_when_short(owner, workspace):
    response = client_for(owner).post(
        f"{RPC}debit_workspace_credits/",
        {"workspace_id": str(workspace.pk), "model_name": "gpt-4o-mini", "tokens_used": 1000},
        format="json",
    )

    assert response.status_code == 402
    assert response.json()["error"] == "insufficient_credits"


@pytest.mark.django_db
def test_viewer_cannot_spend_credits(workspace):
    viewer = make_user()
    add_member(workspace, viewer, role="viewer")
    credit_ledger.add_workspace_credits(workspace.pk, 10)

    response = client_for(viewer).post(
        f"{RPC}debit_workspace_credits/",
        {"workspace_id": str(workspace.pk), "tokens_used": 1000},
        format="json",
    )

    assert response.status_code == 403
    assert credit_ledger.get_workspace_balance(workspace.pk) == Decimal("10")


@pytest.mark.django_db
def test_member_debit_and_check(workspace):
    member = make_user()
    add_member(workspace, member, role="member")
    credit_ledger.add_workspace_credits(workspace.pk, 10)
    client = client_for(member)

    debit = client.post(
        f"{RPC}debit_workspace_credits/",
        {"workspace_id": str(workspace.pk), "tokens_used": 10000, "generation_id": "api-gen"},
        format="json",
    )
    assert debit.status_code == 200
    assert Decimal(str(debit.json()["balance"])) == Decimal("9")

    check = client.post(f"{RPC}check_workspace_credits/", {"workspace_id": str(workspace.pk)}, format="json")
    assert check.status_code == 200
    assert check.json()["has_sufficient_credits"] is True


@pytest.mark.django_db
def test_workspace_credit_overview(owner, workspace):
    make_subscription(workspace, make_plan("overview-plan"))
    credit_ledger.add_workspace_credits(workspace.pk, 10)
    credit_ledger.add_workspace_credits(workspace.pk, -3)

    response = client_for(owner).get(
        f"/api/billing/workspaces/{workspace.pk}/billing/credits/", {"transaction_type": "debit"}
    )

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["credits"]["balance"]) == Decimal("7")
    assert body["subscription"]["plan_slug"] == "overview-plan"
    assert body["count"] == 1
    assert body["transactions"][0]["transaction_type"] == "debit"


@pytest.mark.django_db
def test_workspace_credit_overview_denies_strangers(workspace):
    response = client_for(make_user()).get(f"/api/billing/workspaces/{workspace.pk}/billing/credits/")

    assert response.status_code == 403


@pytest.mark.django_db
def test_webhook_logs_are_listed_for_staff(staff_client, owner):
    WebhookLog.objects.create(integration_slug="ticto", event_type="purchase.approved", payload={},
                              status=WebhookLog.Status.FAILED)
    WebhookLog.objects.create(integration_slug="ticto", event_type="test", payload={},
                              status=WebhookLog.Status.SUCCESS)

    response = staff_client.get("/api/billing/webhook-logs/", {"status": "failed"})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["results"][0]["event_type"] == "purchase.approved"

    assert client_for(owner).get("/api/billing/webhook-logs/").status_code == 403


@pytest.mark.django_db
def test_ticto_connection_endpoint(staff_client):
    make_gateway()

    ok = staff_client.post(f"{RPC}test_ticto_connection/", {"validation_token": VALIDATION_TOKEN}, format="json")
    bad = staff_client.post(f"{RPC}test_ticto_connection/", {"validation_token": "nope"}, format="json")

    assert ok.json()["success"] is True
    assert bad.json() == {
        "success": False,
        "error": "invalid_webhook_token",
        "message": "Token de validação inválido.",
    }
