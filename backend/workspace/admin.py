from django.contrib import admin

from .models import Copy, Membership, Project, Workspace


class MembershipInline(admin.TabularInline):
    model = Membership
    fk_name = "workspace"
    extra = 0
    raw_id_fields = ("user", "invited_by")


@admin.register(Workspace)
class WorkspaceAdmin(admin.ModelAdmin):
    """Workspace overview with member and usage counts."""

    list_display = ("name", "owner", "is_active", "member_count", "project_count", "copy_count", "created_at")
    list_filter = ("is_active", "created_at")
    search_fields = ("name", "owner__username", "owner__email")
    raw_id_fields = ("owner",)
    readonly_fields = ("created_at", "updated_at")
    inlines = [MembershipInline]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ("user", "workspace", "role", "is_active", "assigned_at")
    list_filter = ("role", "is_active")
    search_fields = ("user__username", "user__email", "workspace__name")
    raw_id_fields = ("user", "workspace", "invited_by")


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("name", "workspace", "is_archived", "created_at")
    list_filter = ("is_archived",)
    search_fields = ("name", "workspace__name")
    raw_id_fields = ("workspace", "created_by")


@admin.register(Copy)
class CopyAdmin(admin.ModelAdmin):
    list_display = ("title", "workspace", "project", "created_at")
    search_fields = ("title", "workspace__name")
    raw_id_fields = ("workspace", "project", "created_by")
