from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from workspace.models import Membership
from .models import User


class WorkspaceMembershipInline(admin.TabularInline):
    """Workspaces the user belongs to; purchases land on the one they own."""
    model = Membership
    fk_name = 'user'
    extra = 0
    fields = ('workspace', 'role', 'is_active', 'assigned_at')
    readonly_fields = ('assigned_at',)
    raw_id_fields = ('workspace',)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    User admin configuration

    Support staff look buyers up by the email the payment provider reported.
    """
    list_display = ('username', 'email', 'full_name', 'is_active', 'is_staff', 'created_at')
    list_filter = ('is_active', 'is_staff', 'created_at')
    search_fields = ('email', 'username', 'full_name')
    ordering = ('-created_at',)
    readonly_fields = ('created_at', 'updated_at')
    inlines = [WorkspaceMembershipInline]

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Profile', {
            'fields': ('full_name', 'phone')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )
