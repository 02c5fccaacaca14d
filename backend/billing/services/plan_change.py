"""Authorize and apply workspace plan changes against the current plan limits."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from billing.errors import BillingErrorCode, PlanChangeError
from billing.models import BillingCycle, SubscriptionPlan, WorkspaceSubscription
from billing.observability.logging import log_billing_event
from billing.observability.metrics import PLAN_CHANGE_COUNT, SUBSCRIPTION_TRANSITION_COUNT
from billing.permissions import can_manage_billing
from workspace.models import Workspace

logger = logging.getLogger(__name__)

LIMIT_TYPES = ("projects", "copies", "copy_ai")


def get_active_subscription(workspace_id, *, lock: bool = False) -> Optional[WorkspaceSubscription]:
    queryset = WorkspaceSubscription.objects.select_related("plan").filter(
        workspace_id=workspace_id, status=WorkspaceSubscription.Status.ACTIVE
    )
    if lock:
        queryset = queryset.select_for_update()
    return queryset.first()


def change_workspace_plan(user, workspace_id, new_plan_id, billing_cycle: str = BillingCycle.MONTHLY) -> Dict[str, Any]:
    """Validate and apply a plan change requested from the product UI.

    Checks run in a fixed order and the first failure is returned as
    ``{"success": False, "error": <code>, ...}`` without touching any row.
    An upgrade that costs more than the current plan is not applied here; the
    caller receives ``requires_payment`` and the difference to charge.
    """

    try:
        result = _change_workspace_plan(user, workspace_id, new_plan_id, billing_cycle)
    except PlanChangeError as exc:
        PLAN_CHANGE_COUNT.labels(outcome=exc.code.value).inc()
        log_billing_event(
            message="Plan change rejected.",
            event="plan.change_rejected",
            workspace_id=workspace_id,
            actor=getattr(user, "pk", None),
            extra={"error": exc.code.value, **{k: str(v) for k, v in exc.context.items()}},
        )
        return exc.as_response()

    PLAN_CHANGE_COUNT.labels(outcome="requires_payment" if result.get("requires_payment") else "applied").inc()
    return result


def _change_workspace_plan(user, workspace_id, new_plan_id, billing_cycle) -> Dict[str, Any]:
    if billing_cycle not in BillingCycle.values:
        billing_cycle = BillingCycle.MONTHLY

    workspace = _get_workspace(workspace_id)
    if workspace is None or not can_manage_billing(user, workspace):
        raise PlanChangeError(code=BillingErrorCode.UNAUTHORIZED)

    current = get_active_subscription(workspace.pk)
    if current is None:
        raise PlanChangeError(code=BillingErrorCode.NO_ACTIVE_SUBSCRIPTION)

    new_plan = _get_active_plan(new_plan_id)
    if new_plan is None:
        raise PlanChangeError(code=BillingErrorCode.PLAN_NOT_FOUND)

    _validate_limits(workspace, new_plan)

    current_price = current.plan.price_for(current.billing_cycle)
    new_price = new_plan.price_for(billing_cycle)
    if new_price > current_price:
        return {
            "success": True,
            "requires_payment": True,
            "amount_to_pay": new_price - current_price,
            "plan_id": str(new_plan.pk),
            "billing_cycle": billing_cycle,
        }

    with transaction.atomic():
        locked = get_active_subscription(workspace.pk, lock=True)
        if locked is None:
            raise PlanChangeError(code=BillingErrorCode.NO_ACTIVE_SUBSCRIPTION)
        now = timezone.now()
        locked.mark_cancelled(when=now)

        subscription = WorkspaceSubscription(
            workspace=workspace,
            billing_cycle=billing_cycle,
            status=WorkspaceSubscription.Status.ACTIVE,
            started_at=now,
            current_period_start=now,
            current_period_end=locked.current_period_end,
            payment_gateway=locked.payment_gateway,
            external_subscription_id=locked.external_subscription_id,
        )
        subscription.apply_plan_snapshot(new_plan)
        subscription.save()
        SUBSCRIPTION_TRANSITION_COUNT.labels(event_type="plan.changed", status=subscription.status).inc()

    log_billing_event(
        message="Workspace plan changed.",
        event="plan.changed",
        workspace_id=workspace.pk,
        actor=user.pk,
        extra={"from_plan": locked.plan.slug, "to_plan": new_plan.slug, "billing_cycle": billing_cycle},
    )

    return {
        "success": True,
        "requires_payment": False,
        "new_subscription_id": str(subscription.pk),
        "message": f"Plano alterado para {new_plan.name} com sucesso.",
    }


def _validate_limits(workspace: Workspace, plan: SubscriptionPlan) -> None:
    project_count = workspace.project_count
    if plan.max_projects is not None and project_count > plan.max_projects:
        raise PlanChangeError(
            code=BillingErrorCode.PROJECTS_LIMIT_EXCEEDED,
            context={"current_count": project_count, "new_limit": plan.max_projects},
        )

    copy_count = workspace.copy_count
    if plan.max_copies is not None and copy_count > plan.max_copies:
        raise PlanChangeError(
            code=BillingErrorCode.COPIES_LIMIT_EXCEEDED,
            context={"current_count": copy_count, "new_limit": plan.max_copies},
        )


def check_plan_limit(workspace_id, limit_type: str) -> Dict[str, Any]:
    """Tell the product whether one more project or copy fits the current subscription."""

    if limit_type not in LIMIT_TYPES:
        return {"allowed": False, "error": "invalid_limit_type"}

    workspace = _get_workspace(workspace_id)
    if workspace is None:
        return {"allowed": False, "error": BillingErrorCode.WORKSPACE_MISSING.value}

    subscription = get_active_subscription(workspace.pk)
    if subscription is None:
        return {"allowed": False, "error": BillingErrorCode.NO_ACTIVE_SUBSCRIPTION.value}

    if limit_type == "copy_ai":
        return {"allowed": subscription.current_copy_ai_enabled}

    if limit_type == "projects":
        current, limit = workspace.project_count, subscription.current_max_projects
    else:
        current, limit = workspace.copy_count, subscription.current_max_copies

    unlimited = limit is None
    return {
        "allowed": unlimited or current < limit,
        "current": current,
        "limit": limit,
        "unlimited": unlimited,
    }


def _get_workspace(workspace_id) -> Optional[Workspace]:
    try:
        return Workspace.objects.filter(pk=workspace_id, is_active=True).first()
    except (ValidationError, ValueError, TypeError):
        return None


def _get_active_plan(plan_id) -> Optional[SubscriptionPlan]:
    try:
        return SubscriptionPlan.objects.filter(pk=plan_id, is_active=True).first()
    except (ValidationError, ValueError, TypeError):
        return None
