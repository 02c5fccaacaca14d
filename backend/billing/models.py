import calendar
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q
from django.utils import timezone

from workspace.models import Workspace


def _default_currency():
    return getattr(settings, "BILLING_DEFAULT_CURRENCY", "BRL")


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-accurate month arithmetic, clamping the day to the target month length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class BillingCycle(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    ANNUAL = "annual", "Annual"


class SubscriptionPlan(models.Model):
    """Catalog entry describing limits and the monthly credit grant of a plan."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=50, unique=True)
    description = models.TextField(blank=True)
    monthly_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    annual_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    max_projects = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum number of active projects; empty means unlimited.",
    )
    max_copies = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum number of copies; empty means unlimited.",
    )
    copy_ai_enabled = models.BooleanField(default=False)
    credits_per_month = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("0"))
    rollover_enabled = models.BooleanField(default=False)
    rollover_percentage = models.PositiveSmallIntegerField(default=0)
    rollover_days = models.PositiveSmallIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    display_order = models.PositiveSmallIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_subscription_plan"
        ordering = ["display_order", "monthly_price"]
        verbose_name = "Subscription plan"
        verbose_name_plural = "Subscription plans"

    def __str__(self):
        return self.name

    def price_for(self, billing_cycle: str) -> Decimal:
        if billing_cycle == BillingCycle.ANNUAL:
            return self.annual_price or Decimal("0.00")
        return self.monthly_price or Decimal("0.00")


class Integration(models.Model):
    """Third-party integration catalog entry (e.g. the ``ticto`` payment provider)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(max_length=50, unique=True)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_integration"
        ordering = ["name"]

    def __str__(self):
        return self.name


class PaymentGateway(models.Model):
    """Configured instance of a payment integration.

    ``workspace`` is empty for the platform-wide gateway that receives plan
    purchases. ``config`` holds ``validation_token``, ``webhook_url`` and an
    optional ``offer_mappings`` dict of gateway offer id to plan slug/id.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    integration = models.ForeignKey(Integration, on_delete=models.CASCADE, related_name="gateways")
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="payment_gateways",
    )
    is_active = models.BooleanField(default=False)
    config = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_payment_gateway"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["integration"],
                condition=Q(workspace__isnull=True),
                name="unique_platform_gateway_per_integration",
            ),
        ]

    def __str__(self):
        scope = self.workspace_id or "platform"
        return f"PaymentGateway<{self.integration_id}:{scope}>"

    @property
    def slug(self) -> str:
        return self.integration.slug

    @property
    def validation_token(self) -> str:
        return str((self.config or {}).get("validation_token") or "")

    @property
    def offer_mappings(self) -> dict:
        mappings = (self.config or {}).get("offer_mappings") or {}
        return mappings if isinstance(mappings, dict) else {}


class PlanOffer(models.Model):
    """Purchasable SKU of a plan on a payment gateway."""

    class PeriodUnit(models.TextChoices):
        DAYS = "days", "Days"
        MONTHS = "months", "Months"
        YEARS = "years", "Years"
        LIFETIME = "lifetime", "Lifetime"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.CASCADE, related_name="offers")
    payment_gateway = models.ForeignKey(
        PaymentGateway,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="offers",
    )
    gateway_offer_id = models.CharField(max_length=255, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    billing_period_unit = models.CharField(max_length=10, choices=PeriodUnit.choices, default=PeriodUnit.MONTHS)
    billing_period_value = models.PositiveIntegerField(default=1)
    checkout_url = models.URLField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_plan_offer"
        ordering = ["plan", "price"]
        indexes = [
            models.Index(fields=["gateway_offer_id"], name="plan_offer_gateway_idx"),
        ]

    def __str__(self):
        return f"{self.plan.name} ({self.billing_period_value} {self.billing_period_unit})"

    @property
    def billing_cycle(self) -> str:
        if self.billing_period_unit == self.PeriodUnit.YEARS and self.billing_period_value == 1:
            return BillingCycle.ANNUAL
        if self.billing_period_unit == self.PeriodUnit.MONTHS and self.billing_period_value == 12:
            return BillingCycle.ANNUAL
        return BillingCycle.MONTHLY

    def period_end(self, start: datetime) -> Optional[datetime]:
        """Return the end of one billing period starting at ``start``; ``None`` for lifetime."""
        value = self.billing_period_value or 1
        if self.billing_period_unit == self.PeriodUnit.LIFETIME:
            return None
        if self.billing_period_unit == self.PeriodUnit.DAYS:
            return start + timedelta(days=value)
        if self.billing_period_unit == self.PeriodUnit.YEARS:
            return add_months(start, 12 * value)
        return add_months(start, value)


class PlanOfferGatewayId(models.Model):
    """Additional external offer identifiers that resolve to the same plan offer."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    plan_offer = models.ForeignKey(PlanOffer, on_delete=models.CASCADE, related_name="gateway_ids")
    gateway_offer_id = models.CharField(max_length=255, unique=True)
    description = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_plan_offer_gateway_id"
        ordering = ["-created_at"]

    def __str__(self):
        return self.gateway_offer_id


class WorkspaceSubscription(models.Model):
    """A workspace's relationship to a plan over one stretch of time.

    Plan limits are copied onto the row when it is created so later catalog
    edits never alter a subscription that is already running.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        TRIALING = "trialing", "Trialing"
        PAST_DUE = "past_due", "Past due"
        PENDING_PAYMENT = "pending_payment", "Pending payment"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    workspace = models.ForeignKey(Workspace, on_delete=models.CASCADE, related_name="subscriptions")
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name="subscriptions")
    plan_offer = models.ForeignKey(
        PlanOffer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )
    billing_cycle = models.CharField(max_length=10, choices=BillingCycle.choices, default=BillingCycle.MONTHLY)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    current_max_projects = models.PositiveIntegerField(null=True, blank=True)
    current_max_copies = models.PositiveIntegerField(null=True, blank=True)
    current_copy_ai_enabled = models.BooleanField(default=False)
    started_at = models.DateTimeField(default=timezone.now)
    current_period_start = models.DateTimeField(default=timezone.now)
    current_period_end = models.DateTimeField(null=True, blank=True)
    payment_gateway = models.CharField(max_length=50, blank=True)
    external_subscription_id = models.CharField(max_length=255, null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_workspace_subscription"
        ordering = ["-created_at"]
        verbose_name = "Workspace subscription"
        verbose_name_plural = "Workspace subscriptions"
        constraints = [
            models.UniqueConstraint(
                fields=["workspace"],
                condition=Q(status="active"),
                name="unique_active_subscription_per_workspace",
            ),
        ]
        indexes = [
            models.Index(fields=["payment_gateway", "external_subscription_id"], name="subscription_external_idx"),
            models.Index(fields=["workspace", "status"], name="subscription_status_idx"),
        ]

    def __str__(self):
        return f"WorkspaceSubscription<{self.workspace_id}:{self.plan_id}:{self.status}>"

    def apply_plan_snapshot(self, plan: SubscriptionPlan) -> None:
        self.plan = plan
        self.current_max_projects = plan.max_projects
        self.current_max_copies = plan.max_copies
        self.current_copy_ai_enabled = plan.copy_ai_enabled

    def mark_cancelled(self, *, when=None) -> None:
        self.status = self.Status.CANCELLED
        self.cancelled_at = when or timezone.now()
        self.save(update_fields=["status", "cancelled_at", "updated_at"])


class WorkspaceCredits(models.Model):
    """Per-workspace credit balance; mutated only by ``billing.services.credit_ledger``."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    workspace = models.OneToOneField(Workspace, on_delete=models.CASCADE, related_name="credits")
    balance = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("0"))
    total_added = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("0"))
    total_used = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("0"))
    low_credit_threshold = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("10"))
    low_credit_alert_shown = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_workspace_credits"
        verbose_name = "Workspace credits"
        verbose_name_plural = "Workspace credits"
        constraints = [
            models.CheckConstraint(condition=Q(balance__gte=0), name="workspace_credits_non_negative_balance"),
            models.CheckConstraint(condition=Q(total_added__gte=0), name="workspace_credits_non_negative_added"),
            models.CheckConstraint(condition=Q(total_used__gte=0), name="workspace_credits_non_negative_used"),
        ]

    def __str__(self):
        return f"WorkspaceCredits<{self.workspace_id}:{self.balance}>"

    @property
    def is_low(self) -> bool:
        return self.balance <= self.low_credit_threshold


class CreditTransaction(models.Model):
    """Append-only ledger row; ``amount`` is positive and ``transaction_type`` carries the sign."""

    class TransactionType(models.TextChoices):
        CREDIT = "credit", "Credit"
        DEBIT = "debit", "Debit"

    id = models.BigAutoField(primary_key=True)
    workspace = models.ForeignKey(Workspace, on_delete=models.CASCADE, related_name="credit_transactions")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="credit_transactions",
        help_text="Actor; empty for system-triggered movements.",
    )
    transaction_type = models.CharField(max_length=10, choices=TransactionType.choices)
    amount = models.DecimalField(max_digits=14, decimal_places=4)
    balance_before = models.DecimalField(max_digits=14, decimal_places=4)
    balance_after = models.DecimalField(max_digits=14, decimal_places=4)
    description = models.TextField(blank=True)
    idempotency_key = models.CharField(max_length=255, null=True, blank=True)
    generation_id = models.CharField(max_length=255, null=True, blank=True)
    model_used = models.CharField(max_length=100, blank=True)
    tokens_used = models.PositiveIntegerField(null=True, blank=True)
    input_tokens = models.PositiveIntegerField(null=True, blank=True)
    output_tokens = models.PositiveIntegerField(null=True, blank=True)
    multiplier_snapshot = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    tpc_snapshot = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_credit_transaction"
        verbose_name = "Credit transaction"
        verbose_name_plural = "Credit transactions"
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="credit_transaction_positive_amount"),
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_credit_transaction_idempotency",
            ),
            models.UniqueConstraint(
                fields=["workspace", "generation_id"],
                condition=Q(generation_id__isnull=False),
                name="unique_credit_transaction_generation",
            ),
        ]
        indexes = [
            models.Index(fields=["workspace", "created_at"], name="credit_tx_workspace_idx"),
        ]

    def clean(self):
        super().clean()
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Amount must be positive; use transaction_type for direction.")

    def save(self, *args, **kwargs):
        if self.pk and CreditTransaction.objects.filter(pk=self.pk).exists():
            raise ValidationError("CreditTransaction records are immutable.")
        # Unique constraints are left to the database so races surface as IntegrityError.
        self.full_clean(validate_unique=False, validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("CreditTransaction records are immutable.")

    def __str__(self):
        return f"CreditTransaction<{self.transaction_type}:{self.amount} for {self.workspace_id}>"

    @property
    def signed_amount(self) -> Decimal:
        if self.transaction_type == self.TransactionType.DEBIT:
            return -self.amount
        return self.amount


class ModelMultiplier(models.Model):
    """Credit multiplier applied per AI model on top of the tokens-per-credit rate."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    model_name = models.CharField(max_length=100, unique=True)
    multiplier = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal("1"))
    is_active = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_model_multiplier"
        ordering = ["model_name"]

    def __str__(self):
        return f"{self.model_name} x{self.multiplier}"


class Invoice(models.Model):
    """Invoice issued for a subscription charge reported by the payment gateway."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        REFUNDED = "refunded", "Refunded"
        CHARGEBACK = "chargeback", "Chargeback"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    workspace = models.ForeignKey(Workspace, on_delete=models.CASCADE, related_name="invoices")
    subscription = models.ForeignKey(
        WorkspaceSubscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=32, unique=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=10, default=_default_currency)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    due_date = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    external_transaction_id = models.CharField(max_length=255, null=True, blank=True)
    line_items = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_invoice"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["external_transaction_id"], name="invoice_external_tx_idx"),
            models.Index(fields=["workspace", "status"], name="invoice_status_idx"),
        ]

    def __str__(self):
        return self.invoice_number

    @classmethod
    def next_invoice_number(cls, when=None) -> str:
        """Sequential per-month number in the ``INV-YYYYMM-000001`` format."""
        when = when or timezone.now()
        prefix = f"INV-{when:%Y%m}-"
        last = (
            cls.objects.filter(invoice_number__startswith=prefix)
            .order_by("-invoice_number")
            .values_list("invoice_number", flat=True)
            .first()
        )
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:06d}"


class WebhookLog(models.Model):
    """Append-only audit of every inbound payment webhook and its processing outcome."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSING = "processing", "Processing"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"

    id = models.BigAutoField(primary_key=True)
    integration_slug = models.CharField(max_length=50)
    gateway = models.ForeignKey(
        PaymentGateway,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_logs",
    )
    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_logs",
        help_text="Workspace resolved for this event when available.",
    )
    event_type = models.CharField(max_length=100, blank=True)
    event_category = models.CharField(max_length=50, blank=True)
    external_event_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider-side identity of the delivery used for de-duplication.",
    )
    payload = models.JSONField(null=True, blank=True)
    headers = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.RECEIVED)
    error_message = models.TextField(blank=True)
    result = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    attempts = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_webhook_log"
        verbose_name = "Webhook log"
        verbose_name_plural = "Webhook logs"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["integration_slug", "external_event_id"],
                condition=Q(external_event_id__isnull=False),
                name="unique_webhook_log_external_event",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="webhook_log_status_idx"),
            models.Index(fields=["event_type"], name="webhook_log_type_idx"),
            models.Index(fields=["created_at"], name="webhook_log_created_idx"),
        ]

    def __str__(self):
        return f"WebhookLog<{self.integration_slug}:{self.event_type}:{self.status}>"
