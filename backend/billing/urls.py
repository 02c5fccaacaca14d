"""URL routes for billing endpoints."""
from django.urls import path

from .views import (
    AddWorkspaceCreditsView,
    ChangeWorkspacePlanView,
    CheckPlanLimitView,
    CheckWorkspaceCreditsView,
    DebitWorkspaceCreditsView,
    SetWorkspaceCreditBalanceView,
    TestTictoConnectionView,
    WebhookLogViewSet,
    WorkspaceCreditsView,
)
from .views_webhook import TictoWebhookView

app_name = "billing"

urlpatterns = [
    path("webhook/ticto/", TictoWebhookView.as_view(), name="ticto-webhook"),
    path("rpc/add_workspace_credits/", AddWorkspaceCreditsView.as_view(), name="rpc-add-workspace-credits"),
    path(
        "rpc/set_workspace_credit_balance/",
        SetWorkspaceCreditBalanceView.as_view(),
        name="rpc-set-workspace-credit-balance",
    ),
    path("rpc/debit_workspace_credits/", DebitWorkspaceCreditsView.as_view(), name="rpc-debit-workspace-credits"),
    path("rpc/check_workspace_credits/", CheckWorkspaceCreditsView.as_view(), name="rpc-check-workspace-credits"),
    path("rpc/change_workspace_plan/", ChangeWorkspacePlanView.as_view(), name="rpc-change-workspace-plan"),
    path("rpc/check_plan_limit/", CheckPlanLimitView.as_view(), name="rpc-check-plan-limit"),
    path("rpc/test_ticto_connection/", TestTictoConnectionView.as_view(), name="rpc-test-ticto-connection"),
    path(
        "workspaces/<uuid:workspace_id>/billing/credits/",
        WorkspaceCreditsView.as_view(),
        name="workspace-billing-credits",
    ),
    path("webhook-logs/", WebhookLogViewSet.as_view({"get": "list"}), name="webhook-logs"),
    path("webhook-logs/<int:pk>/", WebhookLogViewSet.as_view({"get": "retrieve"}), name="webhook-log-detail"),
]
