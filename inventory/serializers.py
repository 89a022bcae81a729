from rest_framework import serializers

from inventory.models import BranchStock, Product, StockAlert


class BranchStockSerializer(serializers.ModelSerializer):
    branch_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = BranchStock
        fields = ["branch_id", "branch_name", "quantity", "min_threshold", "updated_at"]
        read_only_fields = fields


class ProductSerializer(serializers.ModelSerializer):
    branch_stocks = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            "id",
            "sku",
            "name",
            "stock_total",
            "stock_minimum",
            "version",
            "is_active",
            "branch_stocks",
            "updated_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_branch_stocks(self, obj):
        entries = self.context.get("branch_stocks")
        if entries is None:
            entries = obj.branch_stocks.all()
        return BranchStockSerializer(entries, many=True).data


class StockMoveSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    origin_branch_id = serializers.UUIDField()
    destination_branch_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    destination_branch_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if attrs["origin_branch_id"] == attrs["destination_branch_id"]:
            raise serializers.ValidationError({"destination_branch_id": "Origin and destination branches must differ."})
        return attrs


class BranchStockUpdateSerializer(serializers.Serializer):
    branch_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=0)
    min_threshold = serializers.IntegerField(min_value=0, required=False)


class StockAlertSerializer(serializers.ModelSerializer):
    type = serializers.CharField(source="alert_type", read_only=True)
    product_id = serializers.UUIDField(read_only=True)
    branch_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = StockAlert
        fields = [
            "id",
            "product_id",
            "product_name",
            "branch_id",
            "branch_name",
            "current_stock",
            "min_threshold",
            "type",
            "state",
            "message",
            "resolved_by",
            "resolved_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class StockAlertStateSerializer(serializers.Serializer):
    state = serializers.ChoiceField(choices=StockAlert.State.choices)
