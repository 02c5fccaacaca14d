"""Credit ledger RPC endpoints and the workspace credit overview."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.errors import BillingErrorCode
from billing.filters import CreditTransactionFilter
from billing.models import CreditTransaction, WorkspaceCredits
from billing.pagination import BoundedPageNumberPagination
from billing.permissions import BillingPermissionLevel, check_workspace_billing_permission
from billing.serializers import (
    ActiveSubscriptionSerializer,
    AddWorkspaceCreditsSerializer,
    CheckWorkspaceCreditsSerializer,
    CreditTransactionSerializer,
    DebitWorkspaceCreditsSerializer,
    SetWorkspaceCreditBalanceSerializer,
    WorkspaceCreditsSerializer,
)
from billing.services import credit_ledger
from billing.services.plan_change import get_active_subscription

logger = logging.getLogger(__name__)


class AddWorkspaceCreditsView(APIView):
    """Staff-only manual credit grant (or removal, with a negative amount)."""

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request):
        serializer = AddWorkspaceCreditsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = credit_ledger.add_workspace_credits(
            data["workspace_id"],
            data["amount"],
            data["description"],
            user=request.user,
            idempotency_key=data.get("idempotency_key") or None,
        )
        return Response(result)


class SetWorkspaceCreditBalanceView(APIView):
    """Admin "edit credits" action; the delta is derived server side."""

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request):
        serializer = SetWorkspaceCreditBalanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = credit_ledger.set_workspace_credit_balance(
            data["workspace_id"],
            data["balance"],
            data["description"],
            user=request.user,
        )
        return Response(result)


class DebitWorkspaceCreditsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = DebitWorkspaceCreditsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        check_workspace_billing_permission(
            user=request.user,
            workspace_id=data["workspace_id"],
            level=BillingPermissionLevel.USE_CREDITS,
        )

        result = credit_ledger.debit_workspace_credits(
            data["workspace_id"],
            data["model_name"] or None,
            data["tokens_used"],
            data.get("input_tokens"),
            data.get("output_tokens"),
            data.get("generation_id") or None,
            request.user.pk,
        )
        if result.get("error") == BillingErrorCode.INSUFFICIENT_CREDITS.value:
            return Response(result, status=status.HTTP_402_PAYMENT_REQUIRED)
        return Response(result)


class CheckWorkspaceCreditsView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CheckWorkspaceCreditsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        check_workspace_billing_permission(
            user=request.user,
            workspace_id=data["workspace_id"],
            level=BillingPermissionLevel.VIEW_BASIC,
        )

        result = credit_ledger.check_workspace_credits(
            data["workspace_id"],
            data.get("estimated_tokens"),
            data.get("model_name") or None,
        )
        return Response(result)


class WorkspaceCreditsView(APIView):
    """Balance, active subscription and a page of recent credit transactions."""

    permission_classes = [IsAuthenticated]

    def get(self, request, workspace_id):
        workspace, _ = check_workspace_billing_permission(
            user=request.user,
            workspace_id=workspace_id,
            level=BillingPermissionLevel.VIEW_BILLING,
        )

        credits, _ = WorkspaceCredits.objects.get_or_create(workspace=workspace)
        subscription = get_active_subscription(workspace.pk)

        transactions = CreditTransactionFilter(
            request.query_params,
            queryset=CreditTransaction.objects.filter(workspace=workspace).order_by("-created_at", "-id"),
        ).qs
        paginator = BoundedPageNumberPagination()
        page = paginator.paginate_queryset(transactions, request, view=self)

        return paginator.get_paginated_response(
            {
                "credits": WorkspaceCreditsSerializer(credits).data,
                "subscription": ActiveSubscriptionSerializer(subscription).data if subscription else None,
                "transactions": CreditTransactionSerializer(page, many=True).data,
            }
        )
