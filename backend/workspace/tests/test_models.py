import pytest
from django.contrib.auth import get_user_model

from workspace.models import Copy, Membership, Project, Workspace


@pytest.fixture
def owner():
    return get_user_model().objects.create_user(username="owner", email="owner@example.com", password="pass1234")


@pytest.mark.django_db
def test_creating_workspace_registers_owner_membership(owner):
    workspace = Workspace.objects.create(name="Agência", owner=owner)

    membership = Membership.objects.get(workspace=workspace)
    assert membership.user == owner
    assert membership.role == "owner"
    assert membership.has_permission("can_manage_billing")


@pytest.mark.django_db
def test_usage_counts_skip_archived_projects(owner):
    workspace = Workspace.objects.create(name="Agência", owner=owner)
    live = Project.objects.create(workspace=workspace, name="Lançamento")
    Project.objects.create(workspace=workspace, name="Antigo", is_archived=True)
    Copy.objects.create(workspace=workspace, project=live, title="Headline")

    assert workspace.project_count == 1
    assert workspace.copy_count == 1


@pytest.mark.django_db
def test_role_defaults_and_custom_overrides(owner):
    workspace = Workspace.objects.create(name="Agência", owner=owner)
    viewer = get_user_model().objects.create_user(username="viewer", email="viewer@example.com", password="x")
    membership = Membership.objects.create(workspace=workspace, user=viewer, role="viewer")

    assert membership.has_permission("can_view_billing")
    assert not membership.has_permission("can_use_credits")

    membership.custom_permissions = {"can_use_credits": True}
    assert membership.has_permission("can_use_credits")
