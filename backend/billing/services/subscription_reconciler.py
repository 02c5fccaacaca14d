"""Turn normalized payment-provider events into subscription, invoice and credit state.

Every handler runs in a single ``transaction.atomic()`` block and locks the
workspace's subscription rows before touching them, so an event either lands
completely or not at all. Handlers return JSON-serialisable dicts that are
stored on the webhook log and echoed back to the provider.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from billing.errors import (
    BillingErrorCode,
    OfferNotMapped,
    PlanNotFound,
    ReconciliationError,
    UserNotFound,
    WorkspaceNotFound,
)
from billing.models import (
    BillingCycle,
    Invoice,
    PaymentGateway,
    PlanOffer,
    PlanOfferGatewayId,
    SubscriptionPlan,
    WorkspaceSubscription,
)
from billing.observability.logging import log_billing_event
from billing.observability.metrics import SUBSCRIPTION_TRANSITION_COUNT
from billing.services.credit_ledger import FOUR_PLACES, add_workspace_credits, apply_credit_delta
from billing.services.ticto import TictoPayload
from workspace.models import Membership, Workspace

logger = logging.getLogger(__name__)

CHARGEBACK_PENALTY_RATE = Decimal("0.10")
REFUND_CLAWBACK_RATE = Decimal("0.50")
EXTENSION_GRANT_RATE = Decimal("0.50")

Status = WorkspaceSubscription.Status


# ---------------------------------------------------------------------------
# Resolution helpers
# ---------------------------------------------------------------------------


def resolve_offer(offer_code: Optional[str], gateway: PaymentGateway) -> Tuple[SubscriptionPlan, Optional[PlanOffer]]:
    """Map a gateway offer id onto a plan, preferring explicit gateway config mappings."""

    if not offer_code:
        raise OfferNotMapped("Payload does not carry an offer identifier.")

    mapped = gateway.offer_mappings.get(offer_code)
    if mapped:
        plan = _load_active_plan(mapped)
        return plan, None

    alias = (
        PlanOfferGatewayId.objects.select_related("plan_offer__plan")
        .filter(gateway_offer_id=offer_code)
        .first()
    )
    if alias is not None:
        offer = alias.plan_offer
        return _ensure_active(offer.plan), offer

    offer = (
        PlanOffer.objects.select_related("plan")
        .filter(gateway_offer_id=offer_code, payment_gateway=gateway)
        .first()
    )
    if offer is None:
        raise OfferNotMapped(f"Offer '{offer_code}' is not mapped to any plan.", context={"offer_id": offer_code})
    return _ensure_active(offer.plan), offer


def _load_active_plan(reference: str) -> SubscriptionPlan:
    plan = SubscriptionPlan.objects.filter(slug=reference).first()
    if plan is None and _is_uuid(reference):
        plan = SubscriptionPlan.objects.filter(pk=reference).first()
    if plan is None:
        raise PlanNotFound(f"Plan '{reference}' does not exist.")
    return _ensure_active(plan)


def _ensure_active(plan: SubscriptionPlan) -> SubscriptionPlan:
    if not plan.is_active:
        raise PlanNotFound(f"Plan '{plan.slug}' is not active.")
    return plan


def resolve_user(email: Optional[str]) -> User:
    user = User.find_by_email(email) if email else None
    if user is None:
        raise UserNotFound(f"No user registered with email '{email}'.", context={"email": email})
    return user


def resolve_workspace(user: User, requested_workspace_id: Optional[str] = None) -> Workspace:
    """Pick the workspace a purchase applies to.

    An explicit ``workspace_id`` from the checkout query string is honoured when
    the buyer is an active member of it; otherwise the workspace the buyer owns.
    """

    if requested_workspace_id:
        membership = (
            Membership.objects.select_related("workspace")
            .filter(user=user, is_active=True, workspace_id=requested_workspace_id, workspace__is_active=True)
            .first()
            if _is_uuid(requested_workspace_id)
            else None
        )
        if membership is not None:
            return membership.workspace

    membership = (
        Membership.objects.select_related("workspace")
        .filter(user=user, is_active=True, role="owner", workspace__is_active=True)
        .order_by("assigned_at")
        .first()
    )
    if membership is None:
        raise WorkspaceNotFound(f"User {user.pk} does not own a workspace.")
    return membership.workspace


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def determine_billing_cycle(plan: SubscriptionPlan, offer: Optional[PlanOffer], amount: Optional[Decimal]) -> str:
    if offer is not None:
        return offer.billing_cycle
    if amount is not None and plan.annual_price and amount == plan.annual_price:
        return BillingCycle.ANNUAL
    return BillingCycle.MONTHLY


def compute_period_end(start: datetime, offer: Optional[PlanOffer], billing_cycle: str) -> Optional[datetime]:
    if offer is not None:
        return offer.period_end(start)
    months = 12 if billing_cycle == BillingCycle.ANNUAL else 1
    return start + timedelta(days=30 * months)


def _find_subscription(payload: TictoPayload, gateway: PaymentGateway) -> Optional[WorkspaceSubscription]:
    external_id = payload.external_subscription_id
    if not external_id:
        return None
    return (
        WorkspaceSubscription.objects.select_for_update()
        .select_related("plan", "plan_offer")
        .filter(external_subscription_id=external_id, payment_gateway=gateway.slug)
        .order_by("-created_at")
        .first()
    )


def _cancel_active_subscriptions(workspace_id, *, exclude_id=None, when: Optional[datetime] = None) -> int:
    """Cancel whatever is currently active for the workspace; returns the number of rows changed."""

    active = WorkspaceSubscription.objects.select_for_update().filter(
        workspace_id=workspace_id, status=Status.ACTIVE
    )
    if exclude_id is not None:
        active = active.exclude(pk=exclude_id)
    cancelled = 0
    for subscription in active:
        subscription.mark_cancelled(when=when)
        cancelled += 1
    return cancelled


def _set_status(subscription: WorkspaceSubscription, status: str, event_type: str, **fields) -> None:
    subscription.status = status
    for name, value in fields.items():
        setattr(subscription, name, value)
    subscription.save(update_fields=["status", *fields.keys(), "updated_at"])
    SUBSCRIPTION_TRANSITION_COUNT.labels(event_type=event_type, status=status).inc()


def _grant_plan_credits(
    subscription: WorkspaceSubscription,
    *,
    idempotency_key: str,
    description: str,
    rate: Decimal = Decimal("1"),
) -> Decimal:
    amount = (subscription.plan.credits_per_month * rate).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
    if amount <= 0:
        return Decimal("0")

    grant = add_workspace_credits(
        subscription.workspace_id,
        amount,
        description,
        idempotency_key=idempotency_key,
        source="subscription_grant",
    )
    if not grant["success"]:
        raise ReconciliationError(
            f"Credit grant for subscription {subscription.pk} failed: {grant['error']}",
            code=BillingErrorCode(grant["error"]),
        )
    return amount


def _event_key(prefix: str, subscription: WorkspaceSubscription, payload: TictoPayload) -> str:
    reference = payload.transaction_reference or payload.status_date.isoformat()
    return f"{prefix}:{subscription.pk}:{reference}"


def _not_found(event_type: str, payload: TictoPayload) -> Dict[str, Any]:
    logger.warning("No subscription found for %s (external id %s).", event_type, payload.external_subscription_id)
    return {
        "status": "subscription_not_found",
        "event_type": event_type,
        "external_subscription_id": payload.external_subscription_id,
    }


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_subscription_created(payload: TictoPayload, gateway: PaymentGateway,
                                event_type: str = "purchase.approved") -> Dict[str, Any]:
    """Activate a newly purchased plan for the buyer's workspace and grant its monthly credits."""

    plan, offer = resolve_offer(payload.offer_code, gateway)
    user = resolve_user(payload.customer_email)
    workspace = resolve_workspace(user, payload.requested_workspace_id)
    amount = payload.amount
    now = timezone.now()

    with transaction.atomic():
        # Lock the workspace row so concurrent purchases serialise on it.
        Workspace.objects.select_for_update().filter(pk=workspace.pk).first()
        cancelled = _cancel_active_subscriptions(workspace.pk, when=now)

        billing_cycle = determine_billing_cycle(plan, offer, amount)
        subscription = WorkspaceSubscription(
            workspace=workspace,
            plan_offer=offer,
            billing_cycle=billing_cycle,
            status=Status.ACTIVE,
            started_at=now,
            current_period_start=now,
            current_period_end=compute_period_end(now, offer, billing_cycle),
            payment_gateway=gateway.slug,
            external_subscription_id=payload.external_subscription_id,
        )
        subscription.apply_plan_snapshot(plan)
        subscription.save()
        SUBSCRIPTION_TRANSITION_COUNT.labels(event_type=event_type, status=Status.ACTIVE).inc()

        invoice = None
        if amount is not None:
            invoice = Invoice.objects.create(
                workspace=workspace,
                subscription=subscription,
                invoice_number=Invoice.next_invoice_number(now),
                amount=amount,
                status=Invoice.Status.PAID,
                due_date=now,
                paid_at=payload.status_date,
                payment_method=payload.payment_method,
                external_transaction_id=payload.transaction_reference,
                line_items=[{"description": f"{plan.name} ({billing_cycle})", "amount": str(amount)}],
                metadata={"offer_code": payload.offer_code, "installments": payload.order.get("installments")},
            )

        credits_granted = _grant_plan_credits(
            subscription,
            idempotency_key=f"subscription-grant:{subscription.pk}",
            description=f"Créditos do plano {plan.name}",
        )

    log_billing_event(
        message="Subscription activated from payment event.",
        event=event_type,
        workspace_id=workspace.pk,
        actor=user.pk,
        extra={
            "subscription_id": str(subscription.pk),
            "plan": plan.slug,
            "billing_cycle": billing_cycle,
            "cancelled_previous": cancelled,
        },
    )

    return {
        "status": "created",
        "subscription_id": str(subscription.pk),
        "workspace_id": str(workspace.pk),
        "plan": plan.slug,
        "billing_cycle": billing_cycle,
        "invoice_number": invoice.invoice_number if invoice else None,
        "credits_granted": str(credits_granted),
    }


def handle_subscription_cancelled(payload: TictoPayload, gateway: PaymentGateway,
                                  event_type: str = "subscription.cancelled") -> Dict[str, Any]:
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)
        _set_status(subscription, Status.CANCELLED, event_type, cancelled_at=timezone.now())

    return {"status": "cancelled", "subscription_id": str(subscription.pk),
            "workspace_id": str(subscription.workspace_id)}


def handle_card_updated(payload: TictoPayload, gateway: PaymentGateway,
                        event_type: str = "subscription.card_updated") -> Dict[str, Any]:
    return {"status": "acknowledged", "external_subscription_id": payload.external_subscription_id}


def _penalise_invoice(payload: TictoPayload, event_type: str, *, invoice_status: str, rate: Decimal,
                      subscription_status: str, description: str) -> Dict[str, Any]:
    reference = payload.transaction_reference
    with transaction.atomic():
        invoice = (
            Invoice.objects.select_for_update()
            .filter(external_transaction_id=reference)
            .order_by("-created_at")
            .first()
            if reference
            else None
        )
        if invoice is None:
            logger.warning("No invoice found for %s (reference %s).", event_type, reference)
            return {"status": "invoice_not_found", "event_type": event_type, "reference": reference}

        invoice.status = invoice_status
        invoice.save(update_fields=["status", "updated_at"])

        penalty = (invoice.amount * rate).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
        removed = Decimal("0")
        if penalty > 0:
            result = apply_credit_delta(
                invoice.workspace_id,
                -penalty,
                f"{description} {invoice.invoice_number}",
                idempotency_key=f"{invoice_status}-penalty:{invoice.pk}",
                source=f"{invoice_status}_penalty",
                clamp_to_balance=True,
            )
            removed = -result.delta

        subscription = None
        if invoice.subscription_id:
            subscription = WorkspaceSubscription.objects.select_for_update().get(pk=invoice.subscription_id)
            fields = {"cancelled_at": timezone.now()} if subscription_status == Status.CANCELLED else {}
            _set_status(subscription, subscription_status, event_type, **fields)

    return {
        "status": invoice_status,
        "invoice_number": invoice.invoice_number,
        "workspace_id": str(invoice.workspace_id),
        "subscription_id": str(subscription.pk) if subscription else None,
        "credits_removed": str(removed),
    }


def handle_chargeback(payload: TictoPayload, gateway: PaymentGateway,
                      event_type: str = "payment.chargeback") -> Dict[str, Any]:
    return _penalise_invoice(
        payload,
        event_type,
        invoice_status=Invoice.Status.CHARGEBACK,
        rate=CHARGEBACK_PENALTY_RATE,
        subscription_status=Status.PAST_DUE,
        description="Chargeback - penalidade de 10% sobre a invoice",
    )


def handle_refund(payload: TictoPayload, gateway: PaymentGateway,
                  event_type: str = "payment.refunded") -> Dict[str, Any]:
    return _penalise_invoice(
        payload,
        event_type,
        invoice_status=Invoice.Status.REFUNDED,
        rate=REFUND_CLAWBACK_RATE,
        subscription_status=Status.CANCELLED,
        description="Reembolso - remoção de 50% sobre a invoice",
    )


def handle_trial_started(payload: TictoPayload, gateway: PaymentGateway,
                         event_type: str = "subscription.trial_started") -> Dict[str, Any]:
    """Start a trial; an unknown subscription is created in ``trialing`` for the buyer's workspace."""

    trial_days = payload.trial_days or settings.BILLING_TRIAL_DAYS
    now = timezone.now()
    trial_end = now + timedelta(days=trial_days)

    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            plan, offer = resolve_offer(payload.offer_code, gateway)
            user = resolve_user(payload.customer_email)
            workspace = resolve_workspace(user, payload.requested_workspace_id)
            subscription = WorkspaceSubscription(
                workspace=workspace,
                plan_offer=offer,
                billing_cycle=determine_billing_cycle(plan, offer, None),
                status=Status.TRIALING,
                started_at=now,
                current_period_start=now,
                current_period_end=trial_end,
                payment_gateway=gateway.slug,
                external_subscription_id=payload.external_subscription_id,
            )
            subscription.apply_plan_snapshot(plan)
            subscription.save()
            SUBSCRIPTION_TRANSITION_COUNT.labels(event_type=event_type, status=Status.TRIALING).inc()
        else:
            _set_status(subscription, Status.TRIALING, event_type, current_period_end=trial_end)

    return {
        "status": "trialing",
        "subscription_id": str(subscription.pk),
        "workspace_id": str(subscription.workspace_id),
        "trial_days": trial_days,
        "trial_ends_at": trial_end.isoformat(),
    }


def _activate_with_grant(subscription: WorkspaceSubscription, payload: TictoPayload, event_type: str,
                         grant_prefix: str, description: str) -> Decimal:
    now = timezone.now()
    _cancel_active_subscriptions(subscription.workspace_id, exclude_id=subscription.pk, when=now)
    period_end = compute_period_end(now, subscription.plan_offer, subscription.billing_cycle)
    _set_status(
        subscription,
        Status.ACTIVE,
        event_type,
        current_period_start=now,
        current_period_end=period_end,
        cancelled_at=None,
    )
    return _grant_plan_credits(
        subscription,
        idempotency_key=_event_key(grant_prefix, subscription, payload),
        description=description,
    )


def handle_trial_ended(payload: TictoPayload, gateway: PaymentGateway,
                       event_type: str = "subscription.trial_ended") -> Dict[str, Any]:
    """Convert the trial when the provider scheduled a next charge, otherwise cancel it."""

    converted = payload.next_charge is not None and not payload.is_subscription_cancelled
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)

        credits_granted = Decimal("0")
        if converted:
            credits_granted = _activate_with_grant(
                subscription, payload, event_type, "trial-conversion",
                f"Créditos do plano {subscription.plan.name} - conversão do trial",
            )
        else:
            _set_status(subscription, Status.CANCELLED, event_type, cancelled_at=timezone.now())

    return {
        "status": Status.ACTIVE.value if converted else Status.CANCELLED.value,
        "converted": converted,
        "subscription_id": str(subscription.pk),
        "workspace_id": str(subscription.workspace_id),
        "credits_granted": str(credits_granted),
    }


def handle_subscription_resumed(payload: TictoPayload, gateway: PaymentGateway,
                                event_type: str = "subscription.resumed") -> Dict[str, Any]:
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)
        credits_granted = _activate_with_grant(
            subscription, payload, event_type, "subscription-resume",
            f"Créditos do plano {subscription.plan.name} - assinatura retomada",
        )

    return {
        "status": "resumed",
        "subscription_id": str(subscription.pk),
        "workspace_id": str(subscription.workspace_id),
        "credits_granted": str(credits_granted),
    }


def handle_subscription_past_due(payload: TictoPayload, gateway: PaymentGateway,
                                 event_type: str = "subscription.past_due") -> Dict[str, Any]:
    now = timezone.now()
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)
        _set_status(subscription, Status.PAST_DUE, event_type)

        amount = payload.amount
        if amount is None:
            amount = subscription.plan.price_for(subscription.billing_cycle)
        invoice = Invoice.objects.create(
            workspace_id=subscription.workspace_id,
            subscription=subscription,
            invoice_number=Invoice.next_invoice_number(now),
            amount=amount,
            status=Invoice.Status.PENDING,
            due_date=now,
            payment_method=payload.payment_method,
            external_transaction_id=payload.transaction_reference,
            metadata={"reason": "past_due"},
        )

    return {
        "status": Status.PAST_DUE.value,
        "subscription_id": str(subscription.pk),
        "workspace_id": str(subscription.workspace_id),
        "invoice_number": invoice.invoice_number,
    }


def handle_subscription_extended(payload: TictoPayload, gateway: PaymentGateway,
                                 event_type: str = "subscription.extended") -> Dict[str, Any]:
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)

        period_end = payload.next_charge
        if period_end is None:
            period_end = compute_period_end(timezone.now(), subscription.plan_offer, subscription.billing_cycle)
        subscription.current_period_end = period_end
        subscription.save(update_fields=["current_period_end", "updated_at"])

        credits_granted = _grant_plan_credits(
            subscription,
            idempotency_key=_event_key("subscription-extension", subscription, payload),
            description="Créditos proporcionais (50%) - assinatura estendida",
            rate=EXTENSION_GRANT_RATE,
        )

    return {
        "status": "extended",
        "subscription_id": str(subscription.pk),
        "workspace_id": str(subscription.workspace_id),
        "current_period_end": period_end.isoformat() if period_end else None,
        "credits_granted": str(credits_granted),
    }


def handle_subscription_ended(payload: TictoPayload, gateway: PaymentGateway,
                              event_type: str = "subscription.ended") -> Dict[str, Any]:
    with transaction.atomic():
        subscription = _find_subscription(payload, gateway)
        if subscription is None:
            return _not_found(event_type, payload)
        _set_status(subscription, Status.EXPIRED, event_type, cancelled_at=timezone.now())

    return {"status": Status.EXPIRED.value, "subscription_id": str(subscription.pk),
            "workspace_id": str(subscription.workspace_id)}
