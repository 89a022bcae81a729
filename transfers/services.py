import logging
import uuid

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from common.exceptions import DomainValidationError, InvalidStateTransition
from core.models import Branch
from inventory.alerts import evaluate_ledger_alerts
from inventory.exceptions import BranchNotFound, InsufficientStock, MissingBranchName, ProductNotFound
from inventory.ledger import StockLedger
from transfers.exceptions import TransferNotFound, TransferValidationFailed
from transfers.models import TransferItem, TransferRequest

logger = logging.getLogger(__name__)

REFERENCE_ATTEMPTS = 5


def _same_branch(left, right):
    return str(left).lower() == str(right).lower()


def _is_positive_int(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _actor_name(actor):
    if actor is None:
        return ""
    return getattr(actor, "display_name", None) or getattr(actor, "username", "") or str(actor)


def resolve_branch(branch_id):
    try:
        return Branch.objects.get(pk=branch_id)
    except (Branch.DoesNotExist, DjangoValidationError, ValueError, TypeError):
        raise BranchNotFound(branch_id)


def get_transfer(transfer_id, *, for_update=False):
    queryset = TransferRequest.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=transfer_id)
    except (TransferRequest.DoesNotExist, DjangoValidationError, ValueError, TypeError):
        raise TransferNotFound(transfer_id)


def _next_reference():
    prefix = timezone.now().strftime("TR-%Y%m%d-")
    existing = TransferRequest.objects.filter(reference__startswith=prefix).values_list("reference", flat=True)
    serial = max([int(ref.rsplit("-", 1)[-1]) for ref in existing if ref.rsplit("-", 1)[-1].isdigit()] + [0]) + 1
    return f"{prefix}{serial:04d}"


def _save_with_reference(transfer):
    """Insert ``transfer`` under the next free reference.

    Two requests on the same day can compute the same serial; the loser of the
    unique-constraint race recomputes it and tries again.
    """
    for attempt in range(1, REFERENCE_ATTEMPTS + 1):
        transfer.reference = _next_reference()
        try:
            with transaction.atomic():
                transfer.save(force_insert=True)
            return transfer
        except IntegrityError:
            taken = TransferRequest.objects.filter(reference=transfer.reference).exists()
            if not taken or attempt == REFERENCE_ATTEMPTS:
                raise
            logger.warning("transfer_reference_taken reference=%s attempt=%s", transfer.reference, attempt)


def _evaluate_alerts(ledgers, origin_branch_id, destination_branch_id):
    for ledger in ledgers:
        evaluate_ledger_alerts(ledger, [origin_branch_id, destination_branch_id])


def move_stock(product_id, origin_branch_id, destination_branch_id, quantity, destination_branch_name=None, actor=None):
    """Move ``quantity`` units of one product between two branches right away."""
    if not _is_positive_int(quantity):
        raise DomainValidationError("Quantity must be greater than zero.", errors={"quantity": "Must be a positive integer."})
    if _same_branch(origin_branch_id, destination_branch_id):
        raise DomainValidationError(
            "Origin and destination branches must differ.",
            errors={"destination_branch_id": "Must differ from origin_branch_id."},
        )

    ledger = StockLedger.load(product_id)
    origin_entry = ledger.get_entry(origin_branch_id)
    if origin_entry is None:
        raise BranchNotFound(origin_branch_id, message="Origin branch has no stock entry for this product.")
    if origin_entry.quantity < quantity:
        raise InsufficientStock(
            product_id=ledger.product.id,
            branch_id=origin_entry.branch_id,
            available=origin_entry.quantity,
            requested=quantity,
        )

    destination_entry = ledger.get_entry(destination_branch_id)
    if destination_entry is None:
        if not destination_branch_name:
            raise MissingBranchName(destination_branch_id)
        resolve_branch(destination_branch_id)
        destination_name = destination_branch_name
    else:
        destination_name = destination_entry.branch_name

    ledger.adjust_branch_quantity(origin_entry.branch_id, origin_entry.branch_name, -quantity)
    ledger.adjust_branch_quantity(destination_branch_id, destination_name, quantity)
    ledger.save(actor=actor)

    logger.info(
        "stock_moved",
        extra={
            "product_id": str(ledger.product.id),
            "branch_id": str(origin_entry.branch_id),
            "quantity": quantity,
            "user_id": str(actor.id) if actor else None,
        },
    )
    _evaluate_alerts([ledger], origin_entry.branch_id, destination_branch_id)
    return ledger


def _item_error(index, product_id, product_name, code, message, *, available=None, requested=None):
    return {
        "index": index,
        "product_id": str(product_id) if product_id is not None else None,
        "product_name": product_name,
        "code": code,
        "message": message,
        "available": available,
        "requested": requested,
    }


def validate_transfer_items(origin_branch_id, origin_branch_name, destination_branch_id, items, *, for_update=False):
    """Check every item against current stock without mutating anything.

    Returns ``(planned, errors)``. Units claimed by earlier items of the same
    product are not available to later ones, so the plan always fits the
    ledger as it stands now. With ``for_update`` the product rows stay locked
    until the caller's transaction ends, so an apply in the same transaction
    sees the validated quantities.
    """
    planned = []
    errors = []
    ledgers = {}
    claimed = {}

    for index, item in enumerate(items):
        product_id = item.get("product_id")
        quantity = item.get("quantity")

        if product_id in (None, "") or not _is_positive_int(quantity):
            errors.append(
                _item_error(index, product_id, None, "invalid_item", f"Invalid item at position {index + 1}.", requested=quantity)
            )
            continue

        cache_key = str(product_id).lower()
        ledger = ledgers.get(cache_key)
        if ledger is None:
            try:
                ledger = StockLedger.load(product_id, for_update=for_update)
            except ProductNotFound:
                errors.append(
                    _item_error(index, product_id, None, "product_not_found", f"Product not found: {product_id}.", requested=quantity)
                )
                continue
            ledgers[cache_key] = ledger

        product = ledger.product
        already_claimed = claimed.get(cache_key, 0)
        available = ledger.get_branch_quantity(origin_branch_id) - already_claimed
        if not ledger.has_branch(origin_branch_id) or available < quantity:
            errors.append(
                _item_error(
                    index,
                    product.id,
                    product.name,
                    "insufficient_stock",
                    f"{product.name}: insufficient stock at {origin_branch_name} (available: {available}, requested: {quantity}).",
                    available=available,
                    requested=quantity,
                )
            )
            continue

        destination_before = ledger.get_branch_quantity(destination_branch_id) + already_claimed
        planned.append(
            {
                "product_id": product.id,
                "product_name": product.name,
                "quantity": quantity,
                "origin_qty_before": available,
                "origin_qty_after": available - quantity,
                "destination_qty_before": destination_before,
                "destination_qty_after": destination_before + quantity,
            }
        )
        claimed[cache_key] = already_claimed + quantity

    return planned, errors


def _apply_items(planned, origin_branch, destination_branch, actor):
    """Apply planned items in order, each a read-modify-write of its product ledger."""
    applied = []
    ledgers = {}
    for item in planned:
        ledger = StockLedger.load(item["product_id"], for_update=True)
        origin_before = ledger.get_branch_quantity(origin_branch.id)
        destination_before = ledger.get_branch_quantity(destination_branch.id)
        origin_after = ledger.adjust_branch_quantity(origin_branch.id, origin_branch.name, -item["quantity"])
        destination_after = ledger.adjust_branch_quantity(destination_branch.id, destination_branch.name, item["quantity"])
        ledger.save(actor=actor)

        applied.append(
            {
                **item,
                "origin_qty_before": origin_before,
                "origin_qty_after": origin_after,
                "destination_qty_before": destination_before,
                "destination_qty_after": destination_after,
            }
        )
        ledgers[ledger.product.id] = ledger
    return applied, list(ledgers.values())


def create_transfer(origin_branch_id, destination_branch_id, items, *, immediate=False, actor=None, notes=""):
    if _same_branch(origin_branch_id, destination_branch_id):
        raise DomainValidationError(
            "Origin and destination branches must differ.",
            errors={"destination_branch_id": "Must differ from origin_branch_id."},
        )
    if not items:
        raise DomainValidationError("At least one item is required.", errors={"items": "Must contain at least one item."})

    origin_branch = resolve_branch(origin_branch_id)
    destination_branch = resolve_branch(destination_branch_id)

    now = timezone.now()
    ledgers = []
    with transaction.atomic():
        planned, errors = validate_transfer_items(
            origin_branch.id,
            origin_branch.name,
            destination_branch.id,
            items,
            for_update=immediate,
        )
        if errors:
            logger.warning(
                "transfer_rejected items=%s failed=%s",
                len(items),
                len(errors),
                extra={"branch_id": str(origin_branch.id)},
            )
            raise TransferValidationFailed(errors)

        transfer = TransferRequest(
            origin_branch=origin_branch,
            origin_branch_name=origin_branch.name,
            destination_branch=destination_branch,
            destination_branch_name=destination_branch.name,
            total_items=len(planned),
            total_quantity=sum(item["quantity"] for item in planned),
            state=TransferRequest.State.PENDING,
            created_by=actor,
            created_by_name=_actor_name(actor),
            notes=notes or "",
        )
        if immediate:
            planned, ledgers = _apply_items(planned, origin_branch, destination_branch, actor)
            transfer.state = TransferRequest.State.COMPLETED
            transfer.approved_by = actor
            transfer.approved_by_name = _actor_name(actor)
            transfer.approved_at = now
        _save_with_reference(transfer)

        TransferItem.objects.bulk_create(
            [TransferItem(transfer=transfer, position=position, **item) for position, item in enumerate(planned)]
        )

    logger.info(
        "transfer_created",
        extra={"transfer_id": str(transfer.id), "state": transfer.state, "quantity": transfer.total_quantity},
    )
    if ledgers:
        _evaluate_alerts(ledgers, origin_branch.id, destination_branch.id)
    return transfer


def approve_transfer(transfer_id, actor=None):
    with transaction.atomic():
        transfer = get_transfer(transfer_id, for_update=True)
        if transfer.state != TransferRequest.State.PENDING:
            raise InvalidStateTransition(
                f"Cannot approve a {transfer.state} transfer.",
                current_state=transfer.state,
                target_state=TransferRequest.State.COMPLETED,
            )

        items = list(transfer.items.all())
        planned, errors = validate_transfer_items(
            transfer.origin_branch_id,
            transfer.origin_branch_name,
            transfer.destination_branch_id,
            [{"product_id": item.product_id, "quantity": item.quantity} for item in items],
            for_update=True,
        )
        if errors:
            logger.warning(
                "transfer_approval_rejected failed=%s",
                len(errors),
                extra={"transfer_id": str(transfer.id)},
            )
            raise TransferValidationFailed(errors, message="Transfer cannot be approved: stock changed since it was created.")

        origin_branch = resolve_branch(transfer.origin_branch_id)
        destination_branch = resolve_branch(transfer.destination_branch_id)
        applied, ledgers = _apply_items(planned, origin_branch, destination_branch, actor)

        snapshot_fields = ["origin_qty_before", "origin_qty_after", "destination_qty_before", "destination_qty_after"]
        for item, result in zip(items, applied):
            for field in snapshot_fields:
                setattr(item, field, result[field])
        TransferItem.objects.bulk_update(items, snapshot_fields)

        transfer.state = TransferRequest.State.COMPLETED
        transfer.approved_by = actor
        transfer.approved_by_name = _actor_name(actor)
        transfer.approved_at = timezone.now()
        transfer.save(update_fields=["state", "approved_by", "approved_by_name", "approved_at", "updated_at"])

    logger.info(
        "transfer_approved",
        extra={"transfer_id": str(transfer.id), "user_id": str(actor.id) if actor else None},
    )
    _evaluate_alerts(ledgers, transfer.origin_branch_id, transfer.destination_branch_id)
    return transfer


def cancel_transfer(transfer_id, actor=None, reason=""):
    with transaction.atomic():
        transfer = get_transfer(transfer_id, for_update=True)
        if transfer.state != TransferRequest.State.PENDING:
            raise InvalidStateTransition(
                f"Cannot cancel a {transfer.state} transfer.",
                current_state=transfer.state,
                target_state=TransferRequest.State.CANCELLED,
            )

        reason = (reason or "").strip()
        if not reason:
            raise DomainValidationError(
                "A cancellation reason is required.",
                errors={"cancel_reason": "This field is required."},
            )

        transfer.state = TransferRequest.State.CANCELLED
        transfer.cancel_reason = reason
        transfer.approved_by = actor
        transfer.approved_by_name = _actor_name(actor)
        transfer.approved_at = timezone.now()
        transfer.save(update_fields=["state", "cancel_reason", "approved_by", "approved_by_name", "approved_at", "updated_at"])

    logger.info(
        "transfer_cancelled",
        extra={"transfer_id": str(transfer.id), "user_id": str(actor.id) if actor else None},
    )
    return transfer


def delete_transfer(transfer_id):
    with transaction.atomic():
        transfer = get_transfer(transfer_id, for_update=True)
        if transfer.state == TransferRequest.State.COMPLETED:
            raise InvalidStateTransition(
                "Completed transfers cannot be deleted.",
                current_state=transfer.state,
                target_state=None,
            )
        transfer_pk = transfer.pk
        transfer.delete()
    logger.info("transfer_deleted", extra={"transfer_id": str(transfer_pk)})


def list_transfers(*, state=None, branch_id=None, date_from=None, date_to=None):
    queryset = TransferRequest.objects.prefetch_related("items").order_by("-created_at")
    if state and state != "all":
        queryset = queryset.filter(state=state)
    if branch_id:
        try:
            branch_key = uuid.UUID(str(branch_id))
        except ValueError:
            return queryset.none()
        queryset = queryset.filter(Q(origin_branch_id=branch_key) | Q(destination_branch_id=branch_key))
    if date_from:
        queryset = queryset.filter(created_at__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__lte=date_to)
    return queryset
