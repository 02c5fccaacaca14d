"""
Billing Permission Management - Unified workspace billing permission checks

Defines four levels of permissions:
1. VIEW_BASIC: View basic information (credit balance, current plan)
2. VIEW_BILLING: View detailed billing information (credit transactions, invoices)
3. USE_CREDITS: Spend credits on generations
4. MANAGE_BILLING: Manage billing (change plans)

Staff users pass every check; platform-wide operations (manual credit grants,
webhook log inspection) use DRF's ``IsAdminUser`` directly.
"""
import logging
from enum import Enum
from typing import Optional

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from rest_framework.exceptions import NotAuthenticated, NotFound, PermissionDenied

from workspace.models import Membership, Workspace

logger = logging.getLogger(__name__)
User = get_user_model()


class BillingPermissionLevel(Enum):
    """Billing permission level enumeration"""
    VIEW_BASIC = "view_basic"           # View basic information
    VIEW_BILLING = "view_billing"       # View billing details
    USE_CREDITS = "use_credits"         # Spend credits
    MANAGE_BILLING = "manage_billing"   # Manage billing/plans


PERMISSION_MAPPING = {
    BillingPermissionLevel.VIEW_BASIC: None,  # Members can view basic info
    BillingPermissionLevel.VIEW_BILLING: "can_view_billing",
    BillingPermissionLevel.USE_CREDITS: "can_use_credits",
    BillingPermissionLevel.MANAGE_BILLING: "can_manage_billing",
}

PERMISSION_DESCRIPTIONS = {
    "can_view_billing": "view billing information",
    "can_use_credits": "use workspace credits",
    "can_manage_billing": "manage billing and plans",
}


class WorkspaceBillingPermissions:
    """
    Workspace Billing Permission Checker

    Provides unified permission validation methods to ensure that users
    have the correct permissions to access billing functions
    """

    def __init__(self, user: User, workspace: Workspace):
        self.user = user
        self.workspace = workspace
        self._membership = None

    @property
    def membership(self) -> Optional[Membership]:
        """Get the user's active membership in the workspace"""
        if self._membership is None:
            self._membership = (
                Membership.objects.filter(workspace=self.workspace, user=self.user, is_active=True).first()
                or False  # Use False as a marker for non-existence
            )
        return self._membership if self._membership is not False else None

    def is_staff(self) -> bool:
        return bool(getattr(self.user, "is_staff", False))

    def is_member(self) -> bool:
        return self.membership is not None

    def is_owner(self) -> bool:
        return self.workspace.owner_id == self.user.pk

    def has_permission(self, permission_name: str) -> bool:
        """
        Check whether the user has the specified permission

        The owner and staff always have all permissions; everyone else goes
        through the role defaults of their membership.
        """
        if self.is_owner() or self.is_staff():
            return True

        membership = self.membership
        if not membership:
            return False

        return membership.has_permission(permission_name)

    def check_permission(self, level: BillingPermissionLevel) -> None:
        """
        Validate the required permission; raise an exception if not granted

        Raises:
            NotAuthenticated: User not logged in
            PermissionDenied: Insufficient permission
        """
        if not self.user or not self.user.is_authenticated:
            raise NotAuthenticated("User not logged in")

        if not self.is_member() and not self.is_staff():
            raise PermissionDenied("You are not a member of this workspace")

        required_permission = PERMISSION_MAPPING[level]
        if required_permission and not self.has_permission(required_permission):
            permission_desc = PERMISSION_DESCRIPTIONS.get(required_permission, required_permission)
            raise PermissionDenied(f"You do not have permission to {permission_desc}")

        logger.debug(
            "Permission granted: user %s has %s permission for workspace %s",
            self.user.pk,
            level.value,
            self.workspace.pk,
        )


def check_workspace_billing_permission(
    user: User,
    workspace_id,
    level: BillingPermissionLevel
) -> tuple[Workspace, WorkspaceBillingPermissions]:
    """
    Convenience function: check workspace billing permission

    Returns:
        tuple: (workspace object, permission checker object)

    Raises:
        NotFound: Workspace does not exist
        NotAuthenticated: User not logged in
        PermissionDenied: Insufficient permission
    """
    try:
        workspace = Workspace.objects.get(id=workspace_id)
    except (Workspace.DoesNotExist, ValidationError, ValueError, TypeError):
        raise NotFound("Workspace does not exist")

    permissions = WorkspaceBillingPermissions(user, workspace)
    permissions.check_permission(level)

    return workspace, permissions


def can_manage_billing(user: User, workspace: Workspace) -> bool:
    """True for the owner, staff, and active admin members."""
    if not user or not user.is_authenticated:
        return False
    permissions = WorkspaceBillingPermissions(user, workspace)
    if permissions.is_owner() or permissions.is_staff():
        return True
    membership = permissions.membership
    return bool(membership and membership.role == "admin")
