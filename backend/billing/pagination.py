"""Custom pagination classes for billing endpoints."""
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class BoundedPageNumberPagination(PageNumberPagination):
    """PageNumberPagination enforcing upper bound on page size.

    Overview endpoints pass a dict whose keys are merged next to the paging
    fields; list endpoints keep the usual ``results`` key.
    """

    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100

    def get_paginated_response(self, data):
        payload = {
            "count": self.page.paginator.count,
            "next": self.get_next_link(),
            "previous": self.get_previous_link(),
        }
        if isinstance(data, dict):
            payload.update(data)
        else:
            payload["results"] = data
        return Response(payload)
