from django.contrib import admin

from .models import (
    CreditTransaction,
    Integration,
    Invoice,
    ModelMultiplier,
    PaymentGateway,
    PlanOffer,
    PlanOfferGatewayId,
    SubscriptionPlan,
    WebhookLog,
    WorkspaceCredits,
    WorkspaceSubscription,
)


class ReadOnlyAdminMixin:
    """Audit tables are append-only; the admin may inspect them but never edit."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class PlanOfferInline(admin.TabularInline):
    model = PlanOffer
    extra = 0
    fields = ("gateway_offer_id", "payment_gateway", "price", "billing_period_unit", "billing_period_value",
              "is_active")


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "slug",
        "monthly_price",
        "annual_price",
        "max_projects",
        "max_copies",
        "credits_per_month",
        "is_active",
    )
    list_filter = ("is_active", "copy_ai_enabled")
    search_fields = ("name", "slug")
    ordering = ("display_order", "monthly_price")
    inlines = [PlanOfferInline]


@admin.register(Integration)
class IntegrationAdmin(admin.ModelAdmin):
    list_display = ("slug", "name", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("slug", "name")


@admin.register(PaymentGateway)
class PaymentGatewayAdmin(admin.ModelAdmin):
    list_display = ("id", "integration", "workspace", "is_active", "updated_at")
    list_filter = ("is_active", "integration")
    list_select_related = ("integration", "workspace")
    raw_id_fields = ("workspace",)


class PlanOfferGatewayIdInline(admin.TabularInline):
    model = PlanOfferGatewayId
    extra = 0


@admin.register(PlanOffer)
class PlanOfferAdmin(admin.ModelAdmin):
    list_display = ("plan", "gateway_offer_id", "price", "billing_period_unit", "billing_period_value", "is_active")
    list_filter = ("is_active", "billing_period_unit")
    search_fields = ("gateway_offer_id", "plan__name")
    list_select_related = ("plan",)
    inlines = [PlanOfferGatewayIdInline]


@admin.register(WorkspaceSubscription)
class WorkspaceSubscriptionAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "workspace",
        "plan",
        "status",
        "billing_cycle",
        "current_period_end",
        "payment_gateway",
        "external_subscription_id",
    )
    list_filter = ("status", "billing_cycle", "payment_gateway")
    search_fields = ("workspace__name", "external_subscription_id")
    list_select_related = ("workspace", "plan")
    raw_id_fields = ("workspace", "plan_offer")
    ordering = ("-created_at",)


@admin.register(WorkspaceCredits)
class WorkspaceCreditsAdmin(admin.ModelAdmin):
    """Balances are edited through the set-balance action so every change is ledgered."""

    list_display = ("workspace", "balance", "total_added", "total_used", "low_credit_alert_shown", "updated_at")
    search_fields = ("workspace__name",)
    list_select_related = ("workspace",)
    readonly_fields = ("workspace", "balance", "total_added", "total_used", "created_at", "updated_at")


@admin.register(CreditTransaction)
class CreditTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Read-only audit log for credit ledger movements."""

    list_display = (
        "id",
        "workspace",
        "transaction_type",
        "amount",
        "balance_before",
        "balance_after",
        "model_used",
        "created_at",
    )
    list_filter = ("transaction_type", "created_at")
    search_fields = ("workspace__name", "idempotency_key", "generation_id", "description")
    list_select_related = ("workspace", "user")
    ordering = ("-created_at", "-id")


@admin.register(ModelMultiplier)
class ModelMultiplierAdmin(admin.ModelAdmin):
    list_display = ("model_name", "multiplier", "is_active", "updated_at")
    list_filter = ("is_active",)
    search_fields = ("model_name",)


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "workspace", "amount", "currency", "status", "paid_at", "created_at")
    list_filter = ("status", "currency")
    search_fields = ("invoice_number", "external_transaction_id", "workspace__name")
    list_select_related = ("workspace",)
    raw_id_fields = ("workspace", "subscription")
    ordering = ("-created_at",)


@admin.register(WebhookLog)
class WebhookLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "integration_slug", "event_type", "status", "attempts", "created_at", "processed_at")
    list_filter = ("status", "integration_slug", "event_category")
    search_fields = ("external_event_id", "event_type", "error_message")
    ordering = ("-created_at",)
