import logging
import uuid

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from common.exceptions import ConcurrentModification, DomainValidationError
from inventory.exceptions import BranchNotFound, InsufficientStock, MissingBranchName, ProductNotFound
from inventory.models import BranchStock, Product

logger = logging.getLogger(__name__)


def _branch_key(branch_id):
    if isinstance(branch_id, uuid.UUID):
        return branch_id
    try:
        return uuid.UUID(str(branch_id))
    except (TypeError, ValueError, AttributeError):
        return None


def _require_quantity(value, field):
    if isinstance(value, bool) or not isinstance(value, int):
        raise DomainValidationError(errors={field: "Must be an integer."})
    if value < 0:
        raise DomainValidationError(errors={field: "Must be >= 0."})
    return value


class StockLedger:
    """Per-branch quantities of one product plus its aggregate ``stock_total``.

    Branch rows are kept in a dict keyed by branch id and are only changed
    through the methods below. ``save()`` always recomputes the total and
    performs a compare-and-swap on ``Product.version`` so a stale ledger never
    overwrites a newer one.
    """

    def __init__(self, product, entries=None):
        if entries is None:
            entries = product.branch_stocks.order_by("created_at", "id") if product.pk else []
        self.product = product
        self._entries = {entry.branch_id: entry for entry in entries}
        self._dirty = set()
        self._loaded_version = product.version

    @classmethod
    def load(cls, product_id, *, for_update=False):
        queryset = Product.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            product = queryset.get(pk=product_id)
        except (Product.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise ProductNotFound(product_id)
        return cls(product, BranchStock.objects.filter(product=product).order_by("created_at", "id"))

    @property
    def entries(self):
        return tuple(self._entries.values())

    @property
    def is_dirty(self):
        return bool(self._dirty)

    def quantities(self):
        return {branch_id: entry.quantity for branch_id, entry in self._entries.items()}

    def get_entry(self, branch_id):
        key = _branch_key(branch_id)
        if key is None:
            return None
        return self._entries.get(key)

    def has_branch(self, branch_id):
        return self.get_entry(branch_id) is not None

    def get_branch_quantity(self, branch_id):
        entry = self.get_entry(branch_id)
        return entry.quantity if entry else 0

    def _new_entry(self, key, branch_name, quantity, min_threshold=None):
        if not branch_name:
            raise MissingBranchName(key)
        entry = BranchStock(
            product=self.product,
            branch_id=key,
            branch_name=branch_name,
            quantity=quantity,
            min_threshold=self.product.stock_minimum if min_threshold is None else min_threshold,
        )
        self._entries[key] = entry
        self._dirty.add(key)
        return entry

    def adjust_branch_quantity(self, branch_id, branch_name, delta):
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise DomainValidationError(errors={"delta": "Must be an integer."})

        key = _branch_key(branch_id)
        entry = self._entries.get(key) if key is not None else None
        if entry is None:
            if key is None or delta <= 0:
                raise BranchNotFound(branch_id, message="Branch has no stock entry for this product.")
            return self._new_entry(key, branch_name, delta).quantity

        new_quantity = entry.quantity + delta
        if new_quantity < 0:
            raise InsufficientStock(
                product_id=self.product.id,
                branch_id=key,
                available=entry.quantity,
                requested=-delta,
            )
        entry.quantity = new_quantity
        self._dirty.add(key)
        return new_quantity

    def set_branch_stock(self, branch_id, branch_name, quantity, min_threshold=None):
        """Initial stocking or a physical count: sets the branch quantity outright."""
        _require_quantity(quantity, "quantity")
        if min_threshold is not None:
            _require_quantity(min_threshold, "min_threshold")

        key = _branch_key(branch_id)
        if key is None:
            raise BranchNotFound(branch_id)

        entry = self._entries.get(key)
        if entry is None:
            return self._new_entry(key, branch_name, quantity, min_threshold)

        entry.quantity = quantity
        if min_threshold is not None:
            entry.min_threshold = min_threshold
        if branch_name:
            entry.branch_name = branch_name
        self._dirty.add(key)
        return entry

    def recompute_total(self):
        total = sum(entry.quantity for entry in self._entries.values())
        self.product.stock_total = total
        return total

    def is_consistent(self):
        return self.product.stock_total == sum(entry.quantity for entry in self._entries.values())

    def save(self, actor=None):
        total = self.recompute_total()
        expected_version = self._loaded_version
        now = timezone.now()

        changes = {"stock_total": total, "version": F("version") + 1, "updated_at": now}
        if actor is not None:
            changes["updated_by"] = actor

        with transaction.atomic():
            updated = Product.objects.filter(pk=self.product.pk, version=expected_version).update(**changes)
            if updated != 1:
                logger.warning(
                    "ledger_version_conflict",
                    extra={"product_id": str(self.product.pk)},
                )
                raise ConcurrentModification(errors={"product_id": str(self.product.pk), "expected_version": expected_version})

            for key, entry in self._entries.items():
                if key not in self._dirty:
                    continue
                if entry._state.adding:
                    entry.save()
                else:
                    entry.save(update_fields=["branch_name", "quantity", "min_threshold", "updated_at"])

        self.product.version = expected_version + 1
        self.product.updated_at = now
        if actor is not None:
            self.product.updated_by = actor
        self._loaded_version = self.product.version
        self._dirty.clear()
        return self.product
