import uuid

from django.db import models

from core.models import Branch


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sku = models.CharField(max_length=64, null=True, blank=True)
    name = models.CharField(max_length=255)
    stock_total = models.PositiveIntegerField(default=0)
    stock_minimum = models.PositiveIntegerField(default=0)
    version = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    updated_by = models.ForeignKey(
        "core.User",
        on_delete=models.SET_NULL,
        related_name="stock_updated_products",
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["is_active", "name"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["sku"],
                name="uniq_product_sku_when_present",
                condition=models.Q(sku__isnull=False) & ~models.Q(sku=""),
            ),
        ]

    def __str__(self):
        return self.name


class BranchStock(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="branch_stocks")
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="stock_entries")
    branch_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=0)
    min_threshold = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("product", "branch")
        indexes = [
            models.Index(fields=["branch", "quantity"]),
        ]


class StockAlert(models.Model):
    class Type(models.TextChoices):
        LOW = "low", "Low"
        CRITICAL = "critical", "Critical"
        OUT = "out", "Out of stock"

    class State(models.TextChoices):
        PENDING = "pending", "Pending"
        REVIEWED = "reviewed", "Reviewed"
        RESOLVED = "resolved", "Resolved"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="stock_alerts")
    product_name = models.CharField(max_length=255)
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="stock_alerts")
    branch_name = models.CharField(max_length=255)
    current_stock = models.PositiveIntegerField()
    min_threshold = models.PositiveIntegerField()
    alert_type = models.CharField(max_length=16, choices=Type.choices)
    state = models.CharField(max_length=16, choices=State.choices, default=State.PENDING)
    message = models.TextField(blank=True, default="")
    resolved_by = models.ForeignKey(
        "core.User",
        on_delete=models.SET_NULL,
        related_name="resolved_stock_alerts",
        null=True,
        blank=True,
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["product", "branch", "state"]),
            models.Index(fields=["alert_type", "state"]),
            models.Index(fields=["created_at"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "branch"],
                name="uniq_pending_alert_per_product_branch",
                condition=models.Q(state="pending"),
            ),
        ]
