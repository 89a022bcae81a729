import uuid

from django.conf import settings
from django.db.models import Prefetch
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission
from inventory.alerts import delete_alert, evaluate_ledger_alerts, get_alert, transition_alert
from inventory.ledger import StockLedger
from inventory.models import BranchStock, Product, StockAlert
from inventory.serializers import (
    BranchStockUpdateSerializer,
    ProductSerializer,
    StockAlertSerializer,
    StockAlertStateSerializer,
    StockMoveSerializer,
)
from transfers.services import move_stock, resolve_branch


def _ledger_response(ledger, response_status=status.HTTP_200_OK):
    serializer = ProductSerializer(ledger.product, context={"branch_stocks": ledger.entries})
    return Response(serializer.data, status=response_status)


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.prefetch_related(
        Prefetch("branch_stocks", queryset=BranchStock.objects.order_by("created_at", "id"))
    ).order_by("name")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view", "branch_stock": "stock.adjust"}

    def get_queryset(self):
        qs = super().get_queryset()
        if self.request.query_params.get("include_inactive") not in {"1", "true"}:
            qs = qs.filter(is_active=True)
        return qs

    @action(detail=True, methods=["put"], url_path="branch-stock")
    def branch_stock(self, request, pk=None):
        serializer = BranchStockUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        branch = resolve_branch(serializer.validated_data["branch_id"])

        ledger = StockLedger.load(pk)
        ledger.set_branch_stock(
            branch.id,
            branch.name,
            serializer.validated_data["quantity"],
            serializer.validated_data.get("min_threshold"),
        )
        ledger.save(actor=request.user)
        evaluate_ledger_alerts(ledger, [branch.id])
        return _ledger_response(ledger)


class StockMoveView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "stock.move"}

    def post(self, request):
        serializer = StockMoveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ledger = move_stock(
            data["product_id"],
            data["origin_branch_id"],
            data["destination_branch_id"],
            data["quantity"],
            destination_branch_name=data.get("destination_branch_name") or None,
            actor=request.user,
        )
        return _ledger_response(ledger)


class StockAlertViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = StockAlert.objects.all()
    serializer_class = StockAlertSerializer
    pagination_class = None
    http_method_names = ["get", "put", "delete", "head", "options"]
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "update": "alert.update",
        "destroy": "alert.delete",
    }

    def get_queryset(self):
        qs = super().get_queryset().order_by("-created_at")
        if self.action != "list":
            return qs

        params = self.request.query_params
        state = params.get("state") or StockAlert.State.PENDING
        if state != "all":
            qs = qs.filter(state=state)
        alert_type = params.get("type")
        if alert_type:
            qs = qs.filter(alert_type=alert_type)
        for param in ("branch_id", "product_id"):
            value = params.get(param)
            if not value:
                continue
            try:
                qs = qs.filter(**{param: uuid.UUID(value)})
            except ValueError:
                return qs.none()
        return qs

    def list(self, request, *args, **kwargs):
        limit = getattr(settings, "INVENTORY_ALERT_LIST_LIMIT", 100)
        alerts = list(self.get_queryset()[:limit])
        return Response(self.get_serializer(alerts, many=True).data)

    def get_object(self):
        return get_alert(self.kwargs.get("pk"))

    def update(self, request, *args, **kwargs):
        serializer = StockAlertStateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        alert = transition_alert(kwargs.get("pk"), serializer.validated_data["state"], actor=request.user)
        return Response(self.get_serializer(alert).data)

    def destroy(self, request, *args, **kwargs):
        delete_alert(kwargs.get("pk"))
        return Response({"detail": "Alert deleted."}, status=status.HTTP_200_OK)
