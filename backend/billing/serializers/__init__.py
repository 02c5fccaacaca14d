"""DRF serializers for billing RPC endpoints, credit history and webhook logs."""
from __future__ import annotations

from typing import Any, Dict

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from billing.models import (
    BillingCycle,
    CreditTransaction,
    WebhookLog,
    WorkspaceCredits,
    WorkspaceSubscription,
)

RPC_PREFIX = "p_"
LIMIT_TYPE_CHOICES = ("projects", "copies", "copy_ai")


class RpcSerializer(serializers.Serializer):
    """Accept RPC arguments with or without the ``p_`` prefix used by the client SDK."""

    def to_internal_value(self, data):
        if hasattr(data, "items"):
            normalized: Dict[str, Any] = {}
            for key, value in data.items():
                name = key[len(RPC_PREFIX):] if isinstance(key, str) and key.startswith(RPC_PREFIX) else key
                normalized.setdefault(name, value)
            data = normalized
        return super().to_internal_value(data)


class AddWorkspaceCreditsSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=4)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    idempotency_key = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)

    def validate_amount(self, value):
        if value == 0:
            raise serializers.ValidationError(_("Amount must be non-zero."))
        return value


class SetWorkspaceCreditBalanceSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    balance = serializers.DecimalField(max_digits=14, decimal_places=4, min_value=0)
    description = serializers.CharField(required=False, allow_blank=True, default="")


class DebitWorkspaceCreditsSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    model_name = serializers.CharField(required=False, allow_blank=True, default="")
    tokens_used = serializers.IntegerField(min_value=0)
    input_tokens = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    output_tokens = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    generation_id = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)


class CheckWorkspaceCreditsSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    estimated_tokens = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    model_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ChangeWorkspacePlanSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    new_plan_id = serializers.UUIDField()
    billing_cycle = serializers.ChoiceField(choices=BillingCycle.choices, default=BillingCycle.MONTHLY)


class CheckPlanLimitSerializer(RpcSerializer):
    workspace_id = serializers.UUIDField()
    limit_type = serializers.ChoiceField(choices=LIMIT_TYPE_CHOICES)


class TestTictoConnectionSerializer(RpcSerializer):
    validation_token = serializers.CharField(allow_blank=True)


class WorkspaceCreditsSerializer(serializers.ModelSerializer):
    workspace_id = serializers.UUIDField(read_only=True)
    is_low = serializers.BooleanField(read_only=True)

    class Meta:
        model = WorkspaceCredits
        fields = [
            "workspace_id",
            "balance",
            "total_added",
            "total_used",
            "low_credit_threshold",
            "low_credit_alert_shown",
            "is_low",
            "updated_at",
        ]
        read_only_fields = fields


class CreditTransactionSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = CreditTransaction
        fields = [
            "id",
            "transaction_type",
            "amount",
            "balance_before",
            "balance_after",
            "description",
            "user_id",
            "generation_id",
            "model_used",
            "tokens_used",
            "input_tokens",
            "output_tokens",
            "created_at",
        ]
        read_only_fields = fields


class ActiveSubscriptionSerializer(serializers.ModelSerializer):
    plan_slug = serializers.CharField(source="plan.slug", read_only=True)
    plan_name = serializers.CharField(source="plan.name", read_only=True)

    class Meta:
        model = WorkspaceSubscription
        fields = [
            "id",
            "plan_id",
            "plan_slug",
            "plan_name",
            "billing_cycle",
            "status",
            "current_max_projects",
            "current_max_copies",
            "current_copy_ai_enabled",
            "current_period_start",
            "current_period_end",
        ]
        read_only_fields = fields


class WebhookLogSerializer(serializers.ModelSerializer):
    workspace_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = WebhookLog
        fields = [
            "id",
            "integration_slug",
            "workspace_id",
            "event_type",
            "event_category",
            "external_event_id",
            "status",
            "error_message",
            "result",
            "attempts",
            "payload",
            "created_at",
            "processed_at",
        ]
        read_only_fields = fields
