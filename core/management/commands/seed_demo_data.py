from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import Branch
from inventory.alerts import evaluate_ledger_alerts
from inventory.ledger import StockLedger
from inventory.models import Product

DEMO_BRANCHES = [
    ("CENTRAL", "Central Branch"),
    ("NORTH", "North Branch"),
    ("SOUTH", "South Branch"),
]

# sku, name, stock_minimum, {branch code: quantity}
DEMO_PRODUCTS = [
    ("SKU-COLA-001", "Cola 330ml", 20, {"CENTRAL": 120, "NORTH": 30, "SOUTH": 8}),
    ("SKU-CHIPS-001", "Potato Chips", 10, {"CENTRAL": 60, "NORTH": 4}),
    ("SKU-WATER-001", "Mineral Water 1L", 15, {"CENTRAL": 200, "SOUTH": 0}),
]


class Command(BaseCommand):
    help = "Seed demo branches, users and stocked products for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        branches = {}
        for code, name in DEMO_BRANCHES:
            branches[code], _ = Branch.objects.get_or_create(
                code=code,
                defaults={"name": name, "timezone": "UTC", "is_active": True},
            )
        central = branches["CENTRAL"]

        users = [
            ("admin", "admin@example.com", User.Role.ADMIN, "admin1234", True),
            ("supervisor", "supervisor@example.com", User.Role.SUPERVISOR, "supervisor1234", False),
            ("cashier", "cashier@example.com", User.Role.CASHIER, "cashier1234", False),
        ]
        for username, email, role, password, is_staff in users:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": email,
                    "role": role,
                    "branch": central,
                    "is_staff": is_staff,
                    "is_active": True,
                },
            )
            if created:
                user.set_password(password)
                user.save(update_fields=["password"])

        seeded = 0
        for sku, name, stock_minimum, quantities in DEMO_PRODUCTS:
            product, created = Product.objects.get_or_create(
                sku=sku,
                defaults={"name": name, "stock_minimum": stock_minimum, "is_active": True},
            )
            if not created:
                continue

            ledger = StockLedger.load(product.pk)
            for code, quantity in quantities.items():
                branch = branches[code]
                ledger.set_branch_stock(branch.id, branch.name, quantity)
            ledger.save()
            evaluate_ledger_alerts(ledger, [branches[code].id for code in quantities])
            seeded += 1

        self.stdout.write(
            self.style.SUCCESS(
                f"Demo data seeded: {len(branches)} branches, {len(users)} users, {seeded} new products."
            )
        )
