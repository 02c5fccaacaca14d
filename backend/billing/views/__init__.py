"""Billing API views."""
from .credits import (
    AddWorkspaceCreditsView,
    CheckWorkspaceCreditsView,
    DebitWorkspaceCreditsView,
    SetWorkspaceCreditBalanceView,
    WorkspaceCreditsView,
)
from .plans import ChangeWorkspacePlanView, CheckPlanLimitView
from .webhooks import TestTictoConnectionView, WebhookLogViewSet

__all__ = [
    "AddWorkspaceCreditsView",
    "ChangeWorkspacePlanView",
    "CheckPlanLimitView",
    "CheckWorkspaceCreditsView",
    "DebitWorkspaceCreditsView",
    "SetWorkspaceCreditBalanceView",
    "TestTictoConnectionView",
    "WebhookLogViewSet",
    "WorkspaceCreditsView",
]
