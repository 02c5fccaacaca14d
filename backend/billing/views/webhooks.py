"""Webhook log listing and gateway connection test endpoints."""
from __future__ import annotations

from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import WebhookLogFilter
from billing.models import WebhookLog
from billing.pagination import BoundedPageNumberPagination
from billing.serializers import TestTictoConnectionSerializer, WebhookLogSerializer
from billing.services.ticto import test_ticto_connection


class WebhookLogViewSet(ReadOnlyModelViewSet):
    serializer_class = WebhookLogSerializer
    permission_classes = [IsAuthenticated, IsAdminUser]
    pagination_class = BoundedPageNumberPagination
    filterset_class = WebhookLogFilter
    ordering_fields = ("created_at", "status", "event_type")
    ordering = ("-created_at",)

    def get_queryset(self):
        return WebhookLog.objects.order_by("-created_at")


class TestTictoConnectionView(APIView):
    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request):
        serializer = TestTictoConnectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(test_ticto_connection(serializer.validated_data["validation_token"]))
