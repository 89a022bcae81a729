from rest_framework import serializers

from transfers.models import TransferItem, TransferRequest


class TransferItemSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = TransferItem
        fields = [
            "position",
            "product_id",
            "product_name",
            "quantity",
            "origin_qty_before",
            "origin_qty_after",
            "destination_qty_before",
            "destination_qty_after",
        ]
        read_only_fields = fields


class TransferRequestSerializer(serializers.ModelSerializer):
    origin_branch_id = serializers.UUIDField(read_only=True)
    destination_branch_id = serializers.UUIDField(read_only=True)
    items = TransferItemSerializer(many=True, read_only=True)

    class Meta:
        model = TransferRequest
        fields = [
            "id",
            "reference",
            "origin_branch_id",
            "origin_branch_name",
            "destination_branch_id",
            "destination_branch_name",
            "total_items",
            "total_quantity",
            "state",
            "created_by",
            "created_by_name",
            "approved_by",
            "approved_by_name",
            "approved_at",
            "notes",
            "cancel_reason",
            "created_at",
            "updated_at",
            "items",
        ]
        read_only_fields = fields


class TransferItemInputSerializer(serializers.Serializer):
    # Per-item problems (unknown product, non-positive quantity) are reported
    # by the transfer validation pass, not here.
    product_id = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField()


class TransferCreateSerializer(serializers.Serializer):
    origin_branch_id = serializers.UUIDField()
    destination_branch_id = serializers.UUIDField()
    items = TransferItemInputSerializer(many=True, allow_empty=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    immediate = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs["origin_branch_id"] == attrs["destination_branch_id"]:
            raise serializers.ValidationError({"destination_branch_id": "Origin and destination branches must differ."})
        return attrs


class TransferActionSerializer(serializers.Serializer):
    ACTION_APPROVE = "approve"
    ACTION_CANCEL = "cancel"

    action = serializers.ChoiceField(choices=[ACTION_APPROVE, ACTION_CANCEL])
    cancel_reason = serializers.CharField(required=False, allow_blank=True, default="")


class TransferFilterSerializer(serializers.Serializer):
    state = serializers.ChoiceField(choices=[*TransferRequest.State.values, "all"], required=False)
    branch_id = serializers.UUIDField(required=False)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)

    def to_internal_value(self, data):
        data = {key: value for key, value in data.items() if value not in (None, "")}
        for public, internal in (("from", "date_from"), ("to", "date_to")):
            if public in data:
                data[internal] = data.pop(public)
        return super().to_internal_value(data)

    def validate(self, attrs):
        date_from = attrs.get("date_from")
        date_to = attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"to": "Must not be earlier than 'from'."})
        return attrs
