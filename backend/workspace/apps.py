"""
Django application configuration for the workspace app.

The workspace app is the tenant aggregate: workspaces, memberships with
owner/admin/member/viewer roles, and the projects and copies whose counts are
checked against plan limits by the billing app.
"""

from django.apps import AppConfig


class WorkspaceConfig(AppConfig):
    """Application configuration for the workspace Django app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'workspace'
    verbose_name = 'Workspace Management'
