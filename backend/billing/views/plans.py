"""Plan change and plan limit RPC endpoints."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.permissions import BillingPermissionLevel, check_workspace_billing_permission
from billing.serializers import ChangeWorkspacePlanSerializer, CheckPlanLimitSerializer
from billing.services.plan_change import change_workspace_plan, check_plan_limit


class ChangeWorkspacePlanView(APIView):
    """Role checks happen inside the authorizer so they surface as ``unauthorized``."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ChangeWorkspacePlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = change_workspace_plan(
            request.user,
            data["workspace_id"],
            data["new_plan_id"],
            data["billing_cycle"],
        )
        return Response(result)


class CheckPlanLimitView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CheckPlanLimitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        check_workspace_billing_permission(
            user=request.user,
            workspace_id=data["workspace_id"],
            level=BillingPermissionLevel.VIEW_BASIC,
        )
        return Response(check_plan_limit(data["workspace_id"], data["limit_type"]))
