import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sku", models.CharField(blank=True, max_length=64, null=True)),
                ("name", models.CharField(max_length=255)),
                ("stock_total", models.PositiveIntegerField(default=0)),
                ("stock_minimum", models.PositiveIntegerField(default=0)),
                ("version", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "updated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stock_updated_products",
                        to="core.user",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["is_active", "name"], name="inventory_p_is_acti_f494ee_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("sku__isnull", False), models.Q(("sku", ""), _negated=True)),
                        fields=("sku",),
                        name="uniq_product_sku_when_present",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BranchStock",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("branch_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField(default=0)),
                ("min_threshold", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_entries",
                        to="core.branch",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="branch_stocks",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["branch", "quantity"], name="inventory_b_branch__0d490d_idx"),
                ],
                "unique_together": {("product", "branch")},
            },
        ),
        migrations.CreateModel(
            name="StockAlert",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("product_name", models.CharField(max_length=255)),
                ("branch_name", models.CharField(max_length=255)),
                ("current_stock", models.PositiveIntegerField()),
                ("min_threshold", models.PositiveIntegerField()),
                (
                    "alert_type",
                    models.CharField(
                        choices=[("low", "Low"), ("critical", "Critical"), ("out", "Out of stock")],
                        max_length=16,
                    ),
                ),
                (
                    "state",
                    models.CharField(
                        choices=[("pending", "Pending"), ("reviewed", "Reviewed"), ("resolved", "Resolved")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("message", models.TextField(blank=True, default="")),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "branch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_alerts",
                        to="core.branch",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_alerts",
                        to="inventory.product",
                    ),
                ),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="resolved_stock_alerts",
                        to="core.user",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["product", "branch", "state"], name="inventory_s_product_8c7e38_idx"),
                    models.Index(fields=["alert_type", "state"], name="inventory_s_alert_t_c008ad_idx"),
                    models.Index(fields=["created_at"], name="inventory_s_created_671808_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("state", "pending")),
                        fields=("product", "branch"),
                        name="uniq_pending_alert_per_product_branch",
                    ),
                ],
            },
        ),
    ]
