from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from common.exceptions import ConcurrentModification
from core.models import Branch
from inventory.ledger import StockLedger
from inventory.models import Product


class Command(BaseCommand):
    help = (
        "Recompute product stock totals from their branch entries and assign stock of "
        "products that have no branch entries yet to the central branch."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--branch-code",
            default=None,
            help="Code of the branch that receives unallocated stock (defaults to INVENTORY_CENTRAL_BRANCH_CODE).",
        )
        parser.add_argument(
            "--create-branch",
            action="store_true",
            help="Create the central branch when no active branch can be found.",
        )
        parser.add_argument("--dry-run", action="store_true", help="Report changes without writing them.")

    def _central_branch(self, code, create):
        branch = Branch.objects.filter(code=code, is_active=True).first()
        if branch is None:
            branch = Branch.objects.filter(name__icontains="central", is_active=True).order_by("created_at").first()
        if branch is None:
            branch = Branch.objects.filter(is_active=True).order_by("created_at").first()
        if branch is None and create:
            branch = Branch.objects.create(code=code, name="Central Branch", is_active=True)
            self.stdout.write(f"Created branch {branch.code} ({branch.name}).")
        return branch

    def handle(self, *args, **options):
        code = options["branch_code"] or settings.INVENTORY_CENTRAL_BRANCH_CODE
        dry_run = options["dry_run"]

        allocated = 0
        recomputed = 0
        conflicts = 0
        central = None

        for product_id in Product.objects.order_by("name").values_list("id", flat=True):
            ledger = StockLedger.load(product_id)
            product = ledger.product

            if not ledger.entries:
                if product.stock_total == 0:
                    continue
                if central is None:
                    central = self._central_branch(code, options["create_branch"] and not dry_run)
                    if central is None:
                        raise CommandError("No active branch to receive unallocated stock. Use --create-branch.")
                self.stdout.write(f"{product.name}: {product.stock_total} units -> {central.name}")
                if not dry_run:
                    ledger.set_branch_stock(central.id, central.name, product.stock_total)
                allocated += 1
            elif ledger.is_consistent():
                continue
            else:
                expected = sum(ledger.quantities().values())
                self.stdout.write(f"{product.name}: total {product.stock_total} -> {expected}")
                recomputed += 1

            if dry_run:
                continue
            try:
                ledger.save()
            except ConcurrentModification:
                conflicts += 1
                self.stderr.write(f"{product.name}: changed while reconciling, skipped.")

        summary = f"Allocated {allocated} products, recomputed {recomputed} totals"
        if conflicts:
            summary += f", {conflicts} skipped after concurrent changes"
        if dry_run:
            summary += " (dry run)"
        self.stdout.write(self.style.SUCCESS(summary + "."))
