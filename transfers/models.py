import uuid

from django.db import models

from core.models import Branch
from inventory.models import Product


class TransferRequest(models.Model):
    class State(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    reference = models.CharField(max_length=64, unique=True)
    origin_branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="outgoing_transfers")
    origin_branch_name = models.CharField(max_length=255)
    destination_branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="incoming_transfers")
    destination_branch_name = models.CharField(max_length=255)
    total_items = models.PositiveIntegerField(default=0)
    total_quantity = models.PositiveIntegerField(default=0)
    state = models.CharField(max_length=16, choices=State.choices, default=State.PENDING)
    created_by = models.ForeignKey(
        "core.User",
        on_delete=models.SET_NULL,
        related_name="created_transfers",
        null=True,
        blank=True,
    )
    created_by_name = models.CharField(max_length=255, blank=True, default="")
    approved_by = models.ForeignKey(
        "core.User",
        on_delete=models.SET_NULL,
        related_name="approved_transfers",
        null=True,
        blank=True,
    )
    approved_by_name = models.CharField(max_length=255, blank=True, default="")
    approved_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    cancel_reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["state", "created_at"]),
            models.Index(fields=["origin_branch", "created_at"]),
            models.Index(fields=["destination_branch", "created_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(origin_branch=models.F("destination_branch")),
                name="transfer_origin_differs_from_destination",
            ),
        ]

    @property
    def is_terminal(self):
        return self.state in {self.State.COMPLETED, self.State.CANCELLED}


class TransferItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transfer = models.ForeignKey(TransferRequest, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField()
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="transfer_items")
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    origin_qty_before = models.PositiveIntegerField()
    origin_qty_after = models.PositiveIntegerField()
    destination_qty_before = models.PositiveIntegerField()
    destination_qty_after = models.PositiveIntegerField()

    class Meta:
        ordering = ["position"]
        unique_together = ("transfer", "position")
        indexes = [
            models.Index(fields=["product"]),
        ]
