from django.conf import settings
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response


class LimitSkipPagination(LimitOffsetPagination):
    """Shared pagination behavior for list endpoints.

    Clients page with `?limit=` and `?skip=`; limits are capped to keep
    payload sizes predictable.
    """

    offset_query_param = "skip"

    @property
    def default_limit(self):
        return getattr(settings, "INVENTORY_TRANSFER_PAGE_SIZE", 50)

    @property
    def max_limit(self):
        return getattr(settings, "INVENTORY_TRANSFER_MAX_PAGE_SIZE", 200)

    def get_paginated_response(self, data):
        return Response(
            {
                "count": self.count,
                "limit": self.limit,
                "skip": self.offset,
                "results": data,
            }
        )
