"""FilterSet definitions for billing endpoints."""
from __future__ import annotations

import django_filters

from billing.models import CreditTransaction, WebhookLog


class CreditTransactionFilter(django_filters.FilterSet):
    transaction_type = django_filters.CharFilter(field_name="transaction_type", lookup_expr="iexact")
    model_used = django_filters.CharFilter(field_name="model_used", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = CreditTransaction
        fields = ["transaction_type", "model_used"]


class WebhookLogFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    event_type = django_filters.CharFilter(field_name="event_type", lookup_expr="iexact")
    event_category = django_filters.CharFilter(field_name="event_category", lookup_expr="iexact")
    integration = django_filters.CharFilter(field_name="integration_slug", lookup_expr="iexact")
    workspace_id = django_filters.UUIDFilter(field_name="workspace_id")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = WebhookLog
        fields = ["status", "event_type", "event_category", "integration", "workspace_id"]
