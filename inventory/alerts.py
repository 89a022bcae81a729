import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from common.exceptions import DomainValidationError, InvalidStateTransition
from inventory.exceptions import AlertNotFound
from inventory.models import StockAlert

logger = logging.getLogger(__name__)

ALLOWED_ALERT_TRANSITIONS = {
    StockAlert.State.PENDING: {StockAlert.State.REVIEWED, StockAlert.State.RESOLVED},
    StockAlert.State.REVIEWED: {StockAlert.State.RESOLVED},
    StockAlert.State.RESOLVED: set(),
}


def classify_stock_level(current_stock, min_threshold):
    """Return the alert type for a branch quantity, or None when stock is healthy.

    Order matters: a quantity of exactly half the threshold is critical, not low.
    """
    if current_stock == 0:
        return StockAlert.Type.OUT
    if current_stock * 2 <= min_threshold:
        return StockAlert.Type.CRITICAL
    if current_stock <= min_threshold:
        return StockAlert.Type.LOW
    return None


def build_alert_message(alert_type, product_name, branch_name, current_stock, min_threshold):
    if alert_type == StockAlert.Type.OUT:
        return f'"{product_name}" is out of stock at "{branch_name}".'
    if alert_type == StockAlert.Type.CRITICAL:
        return f'"{product_name}" is at a critical level at "{branch_name}" ({current_stock}/{min_threshold} units).'
    return f'"{product_name}" is below the minimum stock at "{branch_name}" ({current_stock}/{min_threshold} units).'


def _refresh_pending(alert, alert_type, message, current_stock, min_threshold):
    alert.current_stock = current_stock
    alert.min_threshold = min_threshold
    alert.alert_type = alert_type
    alert.message = message
    alert.save(update_fields=["current_stock", "min_threshold", "alert_type", "message", "updated_at"])
    return alert


def evaluate_stock_alert(product_id, product_name, branch_id, branch_name, current_stock, min_threshold):
    alert_type = classify_stock_level(current_stock, min_threshold)
    if alert_type is None:
        return None

    message = build_alert_message(alert_type, product_name, branch_name, current_stock, min_threshold)

    with transaction.atomic():
        existing = (
            StockAlert.objects.select_for_update()
            .filter(product_id=product_id, branch_id=branch_id, state=StockAlert.State.PENDING)
            .first()
        )
        if existing is not None:
            alert = _refresh_pending(existing, alert_type, message, current_stock, min_threshold)
            logger.info(
                "alert_updated",
                extra={"alert_id": str(alert.id), "product_id": str(product_id), "branch_id": str(branch_id), "state": alert.alert_type},
            )
            return alert

        try:
            with transaction.atomic():
                alert = StockAlert.objects.create(
                    product_id=product_id,
                    product_name=product_name,
                    branch_id=branch_id,
                    branch_name=branch_name,
                    current_stock=current_stock,
                    min_threshold=min_threshold,
                    alert_type=alert_type,
                    message=message,
                )
        except IntegrityError:
            # Another request raised the pending alert first.
            existing = StockAlert.objects.get(product_id=product_id, branch_id=branch_id, state=StockAlert.State.PENDING)
            return _refresh_pending(existing, alert_type, message, current_stock, min_threshold)

    logger.info(
        "alert_raised",
        extra={"alert_id": str(alert.id), "product_id": str(product_id), "branch_id": str(branch_id), "state": alert.alert_type},
    )
    return alert


def evaluate_ledger_alerts(ledger, branch_ids):
    """Evaluate every listed branch the ledger holds, each against its own threshold."""
    alerts = []
    product = ledger.product
    for branch_id in branch_ids:
        entry = ledger.get_entry(branch_id)
        if entry is None:
            continue
        alert = evaluate_stock_alert(
            product.id,
            product.name,
            entry.branch_id,
            entry.branch_name,
            entry.quantity,
            entry.min_threshold,
        )
        if alert is not None:
            alerts.append(alert)
    return alerts


def get_alert(alert_id):
    try:
        return StockAlert.objects.get(pk=alert_id)
    except (StockAlert.DoesNotExist, DjangoValidationError, ValueError):
        raise AlertNotFound(alert_id)


def transition_alert(alert_id, new_state, actor=None):
    if new_state not in StockAlert.State.values:
        raise DomainValidationError(
            errors={"state": f"Must be one of: {', '.join(StockAlert.State.values)}."},
        )

    with transaction.atomic():
        alert = get_alert(alert_id)
        alert = StockAlert.objects.select_for_update().get(pk=alert.pk)
        current_state = alert.state
        if new_state not in ALLOWED_ALERT_TRANSITIONS[current_state]:
            raise InvalidStateTransition(
                f"Cannot move alert from {current_state} to {new_state}.",
                current_state=current_state,
                target_state=new_state,
            )

        alert.state = new_state
        update_fields = ["state", "updated_at"]
        if new_state == StockAlert.State.RESOLVED:
            alert.resolved_by = actor
            alert.resolved_at = timezone.now()
            update_fields += ["resolved_by", "resolved_at"]
        alert.save(update_fields=update_fields)

    logger.info(
        "alert_transitioned",
        extra={"alert_id": str(alert.id), "state": new_state, "user_id": str(actor.id) if actor else None},
    )
    return alert


def delete_alert(alert_id):
    alert = get_alert(alert_id)
    alert_pk = alert.pk
    alert.delete()
    logger.info("alert_deleted", extra={"alert_id": str(alert_pk)})
