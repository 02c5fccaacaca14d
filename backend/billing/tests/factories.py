"""Small builders shared by the billing test modules."""
from __future__ import annotations

import itertools
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from billing.models import (
    Integration,
    PaymentGateway,
    PlanOffer,
    SubscriptionPlan,
    WorkspaceSubscription,
)
from workspace.models import Membership, Workspace

WEBHOOK_URL = "/api/billing/webhook/ticto/"
VALIDATION_TOKEN = "ticto-secret-token"

_sequence = itertools.count(1)


def make_user(username=None, **extra):
    index = next(_sequence)
    username = username or f"user{index}"
    extra.setdefault("email", f"{username}@example.com")
    return get_user_model().objects.create_user(username=username, password="pass1234", **extra)


def make_workspace(owner=None, name="Agência Alpha"):
    owner = owner or make_user()
    return Workspace.objects.create(name=name, owner=owner)


def add_member(workspace, user, role="member"):
    return Membership.objects.create(workspace=workspace, user=user, role=role, is_active=True)


def make_plan(slug=None, **overrides):
    slug = slug or f"plan-{next(_sequence)}"
    values = {
        "name": slug.replace("-", " ").title(),
        "monthly_price": Decimal("47.00"),
        "annual_price": Decimal("470.00"),
        "max_projects": 3,
        "max_copies": 50,
        "copy_ai_enabled": True,
        "credits_per_month": Decimal("100"),
        "is_active": True,
    }
    values.update(overrides)
    return SubscriptionPlan.objects.create(slug=slug, **values)


def make_gateway(*, is_active=True, token=VALIDATION_TOKEN, offer_mappings=None):
    integration, _ = Integration.objects.get_or_create(slug="ticto", defaults={"name": "Ticto"})
    config = {"validation_token": token}
    if offer_mappings:
        config["offer_mappings"] = offer_mappings
    gateway, _ = PaymentGateway.objects.update_or_create(
        integration=integration,
        workspace=None,
        defaults={"is_active": is_active, "config": config},
    )
    return gateway


def make_offer(plan, gateway, code, *, unit=PlanOffer.PeriodUnit.MONTHS, value=1, price=None):
    return PlanOffer.objects.create(
        plan=plan,
        payment_gateway=gateway,
        gateway_offer_id=code,
        price=price if price is not None else plan.monthly_price,
        billing_period_unit=unit,
        billing_period_value=value,
    )


def make_subscription(workspace, plan, *, status=WorkspaceSubscription.Status.ACTIVE, external_id=None,
                      billing_cycle="monthly"):
    subscription = WorkspaceSubscription(
        workspace=workspace,
        status=status,
        billing_cycle=billing_cycle,
        started_at=timezone.now(),
        current_period_start=timezone.now(),
        payment_gateway="ticto",
        external_subscription_id=external_id,
    )
    subscription.apply_plan_snapshot(plan)
    subscription.save()
    return subscription


def ticto_payload(status, *, email, offer_code="OFFER-1", order_hash="ORDER-1", paid_amount=4700,
                  subscription_id="SUB-1", **extra):
    payload = {
        "status": status,
        "status_date": "2025-01-10 12:00:00",
        "payment_method": "credit_card",
        "item": {"offer_code": offer_code},
        "customer": {"email": email, "name": "Cliente Teste"},
        "order": {"hash": order_hash, "paid_amount": paid_amount, "installments": 1},
        "subscriptions": [{"id": subscription_id}],
    }
    payload.update(extra)
    return payload


def auth_headers(token=VALIDATION_TOKEN):
    return {"HTTP_X_TICTO_SIGNATURE": token}
