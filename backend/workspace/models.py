import uuid
from django.db import models
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
# Get the User model (supports custom user models)
User = get_user_model()


class Workspace(models.Model):
    """
    Workspace model - Core entity for multi-tenant architecture

    Represents the tenant that owns projects, copies, a credit balance and a
    subscription. Billing state lives in the billing app and hangs off the
    workspace through one-to-one / foreign key relations:
    - ``credits``: WorkspaceCredits balance row
    - ``subscriptions``: WorkspaceSubscription history (at most one active)
    """

    # Primary identification using UUID for global uniqueness and security
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the workspace"
    )

    name = models.CharField(
        max_length=200,
        help_text="Workspace name for identification"
    )
    description = models.TextField(
        blank=True,
        null=True,
        help_text="Optional description explaining workspace purpose"
    )

    # Ownership and access control
    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='owned_workspaces',
        help_text="User who created and owns this workspace - has all permissions"
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether workspace is active and accessible to members"
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="Timestamp of workspace creation"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp of last workspace modification"
    )

    class Meta:
        db_table = 'workspace'
        verbose_name = 'Workspace'
        verbose_name_plural = 'Workspaces'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'is_active'], name='workspace_owner_i_5c1a1e_idx'),
            models.Index(fields=['created_at'], name='workspace_created_3f1d2b_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.owner.username})"

    @property
    def member_count(self):
        """Get current number of workspace members"""
        return self.memberships.filter(is_active=True).count()

    @property
    def project_count(self):
        """Projects that count against the plan limit (archived ones do not)."""
        return self.projects.filter(is_archived=False).count()

    @property
    def copy_count(self):
        return self.copies.count()

    def save(self, *args, **kwargs):
        is_new = self._state.adding
        super().save(*args, **kwargs)
        if is_new:
            Membership.objects.get_or_create(
                workspace=self,
                user=self.owner,
                defaults={"role": "owner", "is_active": True}
            )


class Membership(models.Model):
    """
    Membership model - Manages user-workspace relationships and roles

    Implements the many-to-many relationship between users and workspaces with
    a role that drives billing access: owners and admins may change plans,
    every active member may check and spend credits.
    """

    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name='memberships',
        help_text="The workspace this membership belongs to"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='workspace_memberships',
        help_text="The user who is a member of the workspace"
    )

    ROLE_CHOICES = [
        ('owner', 'Owner'),  # Full control including billing and workspace deletion
        ('admin', 'Administrator'),  # Manages members and plan changes
        ('member', 'Member'),  # Creates projects and copies, spends credits
        ('viewer', 'Viewer'),  # Read-only access to workspace content
    ]
    role = models.CharField(
        max_length=20,
        choices=ROLE_CHOICES,
        help_text="Role determining user permissions within the workspace"
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this membership is currently active"
    )
    assigned_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user was first added to the workspace"
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sent_workspace_invitations',
        help_text="User who sent the workspace invitation"
    )

    # Fine-grained permissions
    custom_permissions = models.JSONField(
        default=dict,
        blank=True,
        help_text="Fine-grained permissions override for specific capabilities"
    )

    class Meta:
        db_table = 'workspace_membership'
        verbose_name = 'Workspace Membership'
        verbose_name_plural = 'Workspace Memberships'
        unique_together = ['workspace', 'user']
        ordering = ['-assigned_at']
        indexes = [
            models.Index(fields=['workspace', 'role', 'is_active'], name='workspace_m_workspa_8d0c3e_idx'),
            models.Index(fields=['user', 'is_active'], name='workspace_m_user_id_2a7f4c_idx'),
        ]
        constraints = [
            # Every workspace should only one owner
            models.UniqueConstraint(
                fields=['workspace'],
                condition=models.Q(role='owner'),
                name='unique_workspace_owner'
            ),
        ]

    def __str__(self):
        return f"{self.user.username} - {self.workspace.name} ({self.role})"

    @property
    def is_owner(self):
        """Check if this membership represents workspace ownership"""
        return self.role == 'owner'

    def has_permission(self, permission_name: str) -> bool:
        """
        Check if the user has a specific permission in this workspace.

        Role defaults apply first; ``custom_permissions`` entries override them.
        """
        role_permissions = {
            'owner': True,
            'admin': True,
            'member': permission_name in [
                'can_view_billing', 'can_use_credits', 'can_create_projects', 'can_create_copies'
            ],
            'viewer': permission_name in ['can_view_billing'],
        }

        allowed = role_permissions.get(self.role, False)

        if permission_name in self.custom_permissions:
            allowed = self.custom_permissions[permission_name]

        return allowed

    def clean(self):
        # Before setting this user as owner, verify whether the workspace already has an owner.
        if self.role == 'owner':
            existing_owner = Membership.objects.filter(
                workspace=self.workspace,
                role='owner'
            )
            if self.pk:
                existing_owner = existing_owner.exclude(pk=self.pk)
            if existing_owner.exists():
                raise ValidationError("This workspace already has an owner.")


class Project(models.Model):
    """Container for copies; counted against ``max_projects``."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name='projects',
    )
    name = models.CharField(max_length=200)
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_projects',
    )
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'workspace_project'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['workspace', 'is_archived'], name='workspace_p_workspa_6e2b91_idx'),
        ]

    def __str__(self):
        return self.name


class Copy(models.Model):
    """Marketing document; only its existence matters for plan limits."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name='copies',
    )
    project = models.ForeignKey(
        Project,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='copies',
    )
    title = models.CharField(max_length=255)
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_copies',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'workspace_copy'
        verbose_name_plural = 'Copies'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['workspace', 'created_at'], name='workspace_c_workspa_1f9a7d_idx'),
        ]

    def __str__(self):
        return self.title
