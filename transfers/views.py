from rest_framework import mixins, status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.pagination import LimitSkipPagination
from common.permissions import RoleCapabilityPermission
from transfers.models import TransferRequest
from transfers.serializers import (
    TransferActionSerializer,
    TransferCreateSerializer,
    TransferFilterSerializer,
    TransferRequestSerializer,
)
from transfers.services import (
    approve_transfer,
    cancel_transfer,
    create_transfer,
    delete_transfer,
    get_transfer,
    list_transfers,
)


class TransferRequestViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = TransferRequest.objects.prefetch_related("items")
    serializer_class = TransferRequestSerializer
    pagination_class = LimitSkipPagination
    http_method_names = ["get", "post", "put", "delete", "head", "options"]
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.transfer.list",
        "create": "stock.transfer.create",
        "retrieve": "stock.transfer.view",
        "update": "stock.transfer.approve",
        "destroy": "stock.transfer.delete",
    }

    def get_queryset(self):
        if self.action != "list":
            return super().get_queryset()
        filters = TransferFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        return list_transfers(**filters.validated_data)

    def get_object(self):
        return get_transfer(self.kwargs.get("pk"))

    def create(self, request, *args, **kwargs):
        serializer = TransferCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        transfer = create_transfer(
            data["origin_branch_id"],
            data["destination_branch_id"],
            [dict(item) for item in data["items"]],
            immediate=data["immediate"],
            actor=request.user,
            notes=data["notes"],
        )
        return Response(self.get_serializer(transfer).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        serializer = TransferActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data["action"] == TransferActionSerializer.ACTION_APPROVE:
            transfer = approve_transfer(kwargs.get("pk"), actor=request.user)
        else:
            transfer = cancel_transfer(kwargs.get("pk"), actor=request.user, reason=data["cancel_reason"])
        return Response(self.get_serializer(transfer).data)

    def destroy(self, request, *args, **kwargs):
        delete_transfer(kwargs.get("pk"))
        return Response({"detail": "Transfer deleted."}, status=status.HTTP_200_OK)
