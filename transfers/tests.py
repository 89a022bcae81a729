from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from common.exceptions import DomainValidationError, InvalidStateTransition
from core.models import Branch
from inventory.exceptions import BranchNotFound, InsufficientStock
from inventory.ledger import StockLedger
from inventory.models import BranchStock, Product, StockAlert
from transfers.exceptions import TransferNotFound, TransferValidationFailed
from transfers.models import TransferRequest
from transfers.services import (
    approve_transfer,
    cancel_transfer,
    create_transfer,
    delete_transfer,
    get_transfer,
    list_transfers,
    move_stock,
)


def stocked_product(name, quantities, stock_minimum=0):
    product = Product.objects.create(name=name, stock_minimum=stock_minimum)
    ledger = StockLedger.load(product.pk)
    for branch, quantity in quantities.items():
        ledger.set_branch_stock(branch.id, branch.name, quantity)
    ledger.save()
    return product


def branch_quantities(product):
    return dict(BranchStock.objects.filter(product=product).values_list("branch__code", "quantity"))


class TransferServiceTestCase(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.branch_a = Branch.objects.create(code="A", name="Branch A")
        self.branch_b = Branch.objects.create(code="B", name="Branch B")
        self.admin = self.user_model.objects.create_user(
            username="tr-admin",
            password="pass1234",
            role="admin",
            first_name="Ana",
            last_name="Admin",
        )
        self.supervisor = self.user_model.objects.create_user(username="tr-sup", password="pass1234", role="supervisor")

    def assert_ledger_consistent(self, product):
        product.refresh_from_db()
        self.assertEqual(product.stock_total, sum(branch_quantities(product).values()))


class MoveStockTests(TransferServiceTestCase):
    def test_move_to_absent_branch_creates_entry_and_raises_alert(self):
        product = stocked_product("Beans", {self.branch_a: 20}, stock_minimum=10)

        move_stock(product.id, self.branch_a.id, self.branch_b.id, 15, "Branch B", actor=self.supervisor)

        self.assertEqual(branch_quantities(product), {"A": 5, "B": 15})
        self.assert_ledger_consistent(product)
        self.assertEqual(product.stock_total, 20)
        alert = StockAlert.objects.get(product=product, state=StockAlert.State.PENDING)
        self.assertEqual(alert.branch_id, self.branch_a.id)
        self.assertEqual(alert.alert_type, StockAlert.Type.CRITICAL)

    def test_move_leaving_stock_above_half_threshold_is_low(self):
        product = stocked_product("Lentils", {self.branch_a: 20}, stock_minimum=10)

        move_stock(product.id, self.branch_a.id, self.branch_b.id, 14, "Branch B")

        alert = StockAlert.objects.get(product=product, branch=self.branch_a)
        self.assertEqual(alert.alert_type, StockAlert.Type.LOW)
        self.assertEqual(alert.current_stock, 6)

    def test_move_conserves_units_and_leaves_other_products_alone(self):
        product = stocked_product("Pasta", {self.branch_a: 8, self.branch_b: 2})
        bystander = stocked_product("Salt", {self.branch_a: 9})

        move_stock(product.id, self.branch_a.id, self.branch_b.id, 3)

        self.assertEqual(branch_quantities(product), {"A": 5, "B": 5})
        self.assertEqual(branch_quantities(bystander), {"A": 9})
        bystander.refresh_from_db()
        self.assertEqual(bystander.version, 1)

    def test_move_failures_do_not_mutate(self):
        product = stocked_product("Corn", {self.branch_a: 4})

        with self.assertRaises(InsufficientStock) as ctx:
            move_stock(product.id, self.branch_a.id, self.branch_b.id, 5, "Branch B")
        self.assertEqual(ctx.exception.available, 4)
        with self.assertRaises(DomainValidationError):
            move_stock(product.id, self.branch_a.id, self.branch_a.id, 1)
        with self.assertRaises(DomainValidationError):
            move_stock(product.id, self.branch_a.id, self.branch_b.id, 0, "Branch B")
        with self.assertRaises(BranchNotFound):
            move_stock(product.id, self.branch_b.id, self.branch_a.id, 1)

        self.assertEqual(branch_quantities(product), {"A": 4})


class CreateTransferTests(TransferServiceTestCase):
    def test_pending_transfer_snapshots_without_mutation(self):
        product = stocked_product("Coffee", {self.branch_a: 10, self.branch_b: 1})

        transfer = create_transfer(
            self.branch_a.id,
            self.branch_b.id,
            [{"product_id": str(product.id), "quantity": 4}],
            actor=self.admin,
            notes="Weekly restock",
        )

        self.assertEqual(transfer.state, TransferRequest.State.PENDING)
        self.assertEqual(transfer.created_by_name, "Ana Admin")
        self.assertEqual((transfer.total_items, transfer.total_quantity), (1, 4))
        self.assertRegex(transfer.reference, r"^TR-\d{8}-0001$")
        item = transfer.items.get()
        self.assertEqual(
            (item.origin_qty_before, item.origin_qty_after, item.destination_qty_before, item.destination_qty_after),
            (10, 6, 1, 5),
        )
        self.assertEqual(branch_quantities(product), {"A": 10, "B": 1})

    def test_rejects_whole_request_when_any_item_fails(self):
        p1 = stocked_product("P1", {self.branch_a: 5})
        p2 = stocked_product("P2", {self.branch_a: 3})

        with self.assertRaises(TransferValidationFailed) as ctx:
            create_transfer(
                self.branch_a.id,
                self.branch_b.id,
                [
                    {"product_id": str(p1.id), "quantity": 5},
                    {"product_id": str(p2.id), "quantity": 100},
                ],
                immediate=True,
                actor=self.admin,
            )

        errors = ctx.exception.errors
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["index"], 1)
        self.assertEqual(errors[0]["product_id"], str(p2.id))
        self.assertEqual(errors[0]["code"], "insufficient_stock")
        self.assertEqual((errors[0]["available"], errors[0]["requested"]), (3, 100))
        self.assertEqual(branch_quantities(p1), {"A": 5})
        self.assertFalse(TransferRequest.objects.exists())

    def test_collects_every_item_error(self):
        product = stocked_product("Tea", {self.branch_a: 5})

        with self.assertRaises(TransferValidationFailed) as ctx:
            create_transfer(
                self.branch_a.id,
                self.branch_b.id,
                [
                    {"product_id": "00000000-0000-0000-0000-000000000000", "quantity": 1},
                    {"product_id": str(product.id), "quantity": 0},
                    {"product_id": str(product.id), "quantity": 2},
                ],
            )

        self.assertEqual([error["code"] for error in ctx.exception.errors], ["product_not_found", "invalid_item"])

    def test_repeated_product_cannot_overdraw(self):
        product = stocked_product("Sugar", {self.branch_a: 10})

        with self.assertRaises(TransferValidationFailed) as ctx:
            create_transfer(
                self.branch_a.id,
                self.branch_b.id,
                [
                    {"product_id": str(product.id), "quantity": 6},
                    {"product_id": str(product.id), "quantity": 6},
                ],
            )

        self.assertEqual(ctx.exception.errors[0]["index"], 1)
        self.assertEqual(ctx.exception.errors[0]["available"], 4)

    def test_immediate_transfer_applies_and_completes(self):
        p1 = stocked_product("Oil", {self.branch_a: 12}, stock_minimum=5)
        p2 = stocked_product("Vinegar", {self.branch_a: 6, self.branch_b: 1})

        transfer = create_transfer(
            self.branch_a.id,
            self.branch_b.id,
            [
                {"product_id": str(p1.id), "quantity": 10},
                {"product_id": str(p2.id), "quantity": 6},
            ],
            immediate=True,
            actor=self.admin,
        )

        self.assertEqual(transfer.state, TransferRequest.State.COMPLETED)
        self.assertEqual(transfer.approved_by, self.admin)
        self.assertIsNotNone(transfer.approved_at)
        self.assertEqual(branch_quantities(p1), {"A": 2, "B": 10})
        self.assertEqual(branch_quantities(p2), {"A": 0, "B": 7})
        self.assert_ledger_consistent(p1)
        self.assert_ledger_consistent(p2)
        self.assertEqual(StockAlert.objects.get(product=p1).alert_type, StockAlert.Type.CRITICAL)
        self.assertEqual(StockAlert.objects.get(product=p2).alert_type, StockAlert.Type.OUT)

    def test_same_branch_and_unknown_branch(self):
        product = stocked_product("Honey", {self.branch_a: 3})
        items = [{"product_id": str(product.id), "quantity": 1}]

        with self.assertRaises(DomainValidationError):
            create_transfer(self.branch_a.id, self.branch_a.id, items)
        with self.assertRaises(BranchNotFound):
            create_transfer(self.branch_a.id, "00000000-0000-0000-0000-000000000000", items)


class TransferStateMachineTests(TransferServiceTestCase):
    def setUp(self):
        super().setUp()
        self.product = stocked_product("Rice", {self.branch_a: 10})
        self.transfer = create_transfer(
            self.branch_a.id,
            self.branch_b.id,
            [{"product_id": str(self.product.id), "quantity": 4}],
            actor=self.admin,
        )

    def test_approve_applies_and_refreshes_snapshots(self):
        ledger = StockLedger.load(self.product.pk)
        ledger.adjust_branch_quantity(self.branch_a.id, self.branch_a.name, 5)
        ledger.save()

        transfer = approve_transfer(self.transfer.id, actor=self.supervisor)

        self.assertEqual(transfer.state, TransferRequest.State.COMPLETED)
        self.assertEqual(transfer.approved_by, self.supervisor)
        self.assertEqual(branch_quantities(self.product), {"A": 11, "B": 4})
        self.assert_ledger_consistent(self.product)
        item = transfer.items.get()
        self.assertEqual((item.origin_qty_before, item.origin_qty_after), (15, 11))
        self.assertEqual((item.destination_qty_before, item.destination_qty_after), (0, 4))

    def test_approve_rechecks_stock(self):
        ledger = StockLedger.load(self.product.pk)
        ledger.set_branch_stock(self.branch_a.id, self.branch_a.name, 2)
        ledger.save()

        with self.assertRaises(TransferValidationFailed) as ctx:
            approve_transfer(self.transfer.id, actor=self.supervisor)

        self.assertEqual(ctx.exception.errors[0]["available"], 2)
        self.transfer.refresh_from_db()
        self.assertEqual(self.transfer.state, TransferRequest.State.PENDING)
        self.assertEqual(branch_quantities(self.product), {"A": 2})

    def test_terminal_transfers_reject_transitions(self):
        approve_transfer(self.transfer.id, actor=self.supervisor)

        with self.assertRaises(InvalidStateTransition):
            approve_transfer(self.transfer.id, actor=self.supervisor)
        with self.assertRaises(InvalidStateTransition):
            cancel_transfer(self.transfer.id, actor=self.supervisor, reason="Too late")
        with self.assertRaises(InvalidStateTransition):
            delete_transfer(self.transfer.id)

    def test_cancel_requires_reason_and_leaves_ledger(self):
        with self.assertRaises(DomainValidationError):
            cancel_transfer(self.transfer.id, actor=self.supervisor, reason="  ")

        transfer = cancel_transfer(self.transfer.id, actor=self.supervisor, reason="Truck broke down")

        self.assertEqual(transfer.state, TransferRequest.State.CANCELLED)
        self.assertEqual(transfer.cancel_reason, "Truck broke down")
        self.assertEqual(transfer.approved_by, self.supervisor)
        self.assertEqual(branch_quantities(self.product), {"A": 10})
        with self.assertRaises(InvalidStateTransition):
            approve_transfer(self.transfer.id, actor=self.supervisor)

    def test_delete_pending_or_cancelled(self):
        other = create_transfer(
            self.branch_a.id,
            self.branch_b.id,
            [{"product_id": str(self.product.id), "quantity": 1}],
        )
        cancel_transfer(other.id, reason="Duplicate")

        delete_transfer(self.transfer.id)
        delete_transfer(other.id)

        self.assertFalse(TransferRequest.objects.exists())
        with self.assertRaises(TransferNotFound):
            delete_transfer(self.transfer.id)

    def test_list_filters_by_branch_state_and_date(self):
        branch_c = Branch.objects.create(code="C", name="Branch C")
        completed = create_transfer(
            self.branch_a.id,
            branch_c.id,
            [{"product_id": str(self.product.id), "quantity": 1}],
            immediate=True,
        )

        self.assertEqual(list(list_transfers(branch_id=self.branch_b.id)), [self.transfer])
        self.assertEqual(list(list_transfers(branch_id=branch_c.id)), [completed])
        self.assertEqual(list(list_transfers(state="completed")), [completed])
        self.assertEqual(len(list_transfers(state="all")), 2)
        self.assertEqual(list(list_transfers(date_from=timezone.now() + timedelta(days=1))), [])
        self.assertEqual(list(list_transfers(branch_id="nope")), [])
        self.assertEqual(completed.reference[-4:], "0002")


class TransferLockingTests(TransferServiceTestCase):
    def setUp(self):
        super().setUp()
        self.rice = stocked_product("Rice", {self.branch_a: 12})
        self.oil = stocked_product("Oil", {self.branch_a: 6})
        self.items = [
            {"product_id": str(self.rice.id), "quantity": 5},
            {"product_id": str(self.oil.id), "quantity": 2},
        ]

    def failing_second_save(self):
        original_save = StockLedger.save
        calls = []

        def save(ledger, actor=None):
            calls.append(ledger.product.id)
            if len(calls) == 2:
                raise DatabaseError("write failed")
            return original_save(ledger, actor=actor)

        return patch.object(StockLedger, "save", autospec=True, side_effect=save)

    def test_immediate_transfer_rolls_back_when_a_later_item_fails(self):
        with self.failing_second_save():
            with self.assertRaises(DatabaseError):
                create_transfer(self.branch_a.id, self.branch_b.id, self.items, immediate=True, actor=self.admin)

        self.assertEqual(branch_quantities(self.rice), {"A": 12})
        self.assertEqual(branch_quantities(self.oil), {"A": 6})
        self.assert_ledger_consistent(self.rice)
        self.assertFalse(TransferRequest.objects.exists())

    def test_approval_rolls_back_when_a_later_item_fails(self):
        transfer = create_transfer(self.branch_a.id, self.branch_b.id, self.items, actor=self.admin)

        with self.failing_second_save():
            with self.assertRaises(DatabaseError):
                approve_transfer(transfer.id, actor=self.supervisor)

        transfer.refresh_from_db()
        self.assertEqual(transfer.state, TransferRequest.State.PENDING)
        self.assertEqual(branch_quantities(self.rice), {"A": 12})
        self.assertEqual(branch_quantities(self.oil), {"A": 6})
        self.assert_ledger_consistent(self.rice)
        self.assertFalse(TransferRequest.objects.filter(state=TransferRequest.State.COMPLETED).exists())

    def test_approval_validates_against_locked_ledgers(self):
        transfer = create_transfer(self.branch_a.id, self.branch_b.id, self.items, actor=self.admin)

        with patch.object(StockLedger, "load", wraps=StockLedger.load) as load:
            approve_transfer(transfer.id, actor=self.supervisor)

        self.assertTrue(load.call_args_list)
        for call in load.call_args_list:
            self.assertIs(call.kwargs.get("for_update"), True)

    def test_delete_locks_the_transfer_row(self):
        transfer = create_transfer(self.branch_a.id, self.branch_b.id, self.items, actor=self.admin)

        with patch("transfers.services.get_transfer", wraps=get_transfer) as lookup:
            delete_transfer(transfer.id)

        lookup.assert_called_once_with(transfer.id, for_update=True)
        self.assertFalse(TransferRequest.objects.filter(pk=transfer.pk).exists())

    def test_completed_transfer_survives_delete(self):
        transfer = create_transfer(self.branch_a.id, self.branch_b.id, self.items, immediate=True, actor=self.admin)

        with self.assertRaises(InvalidStateTransition):
            delete_transfer(transfer.id)

        self.assertTrue(TransferRequest.objects.filter(pk=transfer.pk).exists())

    def test_reference_collision_takes_the_next_serial(self):
        first = create_transfer(self.branch_a.id, self.branch_b.id, self.items[:1], actor=self.admin)

        with patch("transfers.services._next_reference", side_effect=[first.reference, "TR-20990101-0009"]):
            with self.assertLogs("transfers.services", "WARNING") as logs:
                second = create_transfer(self.branch_a.id, self.branch_b.id, self.items[1:], actor=self.admin)

        self.assertEqual(second.reference, "TR-20990101-0009")
        self.assertEqual(second.items.count(), 1)
        self.assertEqual(TransferRequest.objects.count(), 2)
        self.assertIn("transfer_reference_taken", logs.output[0])


class TransferApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch_a = Branch.objects.create(code="A", name="Branch A")
        self.branch_b = Branch.objects.create(code="B", name="Branch B")
        self.supervisor = self.user_model.objects.create_user(username="api-sup", password="pass1234", role="supervisor")
        self.admin = self.user_model.objects.create_user(username="api-admin", password="pass1234", role="admin")
        self.product = stocked_product("Cocoa", {self.branch_a: 10})

    def create(self, quantity=4, **extra):
        payload = {
            "origin_branch_id": str(self.branch_a.id),
            "destination_branch_id": str(self.branch_b.id),
            "items": [{"product_id": str(self.product.id), "quantity": quantity}],
        }
        payload.update(extra)
        return self.client.post("/api/v1/transfers/", payload, format="json")

    def test_admin_creates_transfer(self):
        self.client.force_authenticate(user=self.admin)

        response = self.create(notes="Restock")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["state"], "pending")
        self.assertEqual(payload["origin_branch_id"], str(self.branch_a.id))
        self.assertEqual(payload["items"][0]["origin_qty_after"], 6)
        self.assertEqual(payload["notes"], "Restock")

    def test_supervisor_cannot_create_or_list(self):
        self.client.force_authenticate(user=self.supervisor)

        self.assertEqual(self.create().status_code, 403)
        self.assertEqual(self.client.get("/api/v1/transfers/").status_code, 403)

    def test_item_failures_come_back_as_a_list(self):
        self.client.force_authenticate(user=self.admin)

        response = self.create(quantity=11)

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "transfer_validation_failed")
        self.assertIsInstance(payload["errors"], list)
        self.assertEqual(payload["errors"][0]["available"], 10)

    def test_empty_items_is_a_validation_error(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/transfers/",
            {
                "origin_branch_id": str(self.branch_a.id),
                "destination_branch_id": str(self.branch_b.id),
                "items": [],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_list_pages_with_limit_and_skip(self):
        self.client.force_authenticate(user=self.admin)
        self.create(quantity=1)
        self.create(quantity=2)
        self.create(quantity=3, immediate=True)

        first_page = self.client.get("/api/v1/transfers/?limit=2").json()
        completed = self.client.get("/api/v1/transfers/?state=completed").json()
        bad_date = self.client.get("/api/v1/transfers/?from=yesterday")

        self.assertEqual(sorted(first_page.keys()), ["count", "limit", "results", "skip"])
        self.assertEqual(first_page["count"], 3)
        self.assertEqual(len(first_page["results"]), 2)
        self.assertEqual(completed["count"], 1)
        self.assertEqual(bad_date.status_code, 400)

    def test_supervisor_approves_and_cancels(self):
        self.client.force_authenticate(user=self.admin)
        first = self.create(quantity=2).json()
        second = self.create(quantity=3).json()
        self.client.force_authenticate(user=self.supervisor)

        approved = self.client.put(f"/api/v1/transfers/{first['id']}/", {"action": "approve"}, format="json")
        no_reason = self.client.put(f"/api/v1/transfers/{second['id']}/", {"action": "cancel"}, format="json")
        cancelled = self.client.put(
            f"/api/v1/transfers/{second['id']}/",
            {"action": "cancel", "cancel_reason": "Wrong branch"},
            format="json",
        )

        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["state"], "completed")
        self.assertEqual(no_reason.status_code, 400)
        self.assertEqual(no_reason.json()["code"], "validation_error")
        self.assertEqual(cancelled.json()["state"], "cancelled")
        self.assertEqual(branch_quantities(self.product), {"A": 8, "B": 2})

    def test_detail_and_delete(self):
        self.client.force_authenticate(user=self.admin)
        created = self.create(immediate=True).json()
        self.client.force_authenticate(user=self.supervisor)

        detail = self.client.get(f"/api/v1/transfers/{created['id']}/")
        delete_completed = self.client.delete(f"/api/v1/transfers/{created['id']}/")
        missing = self.client.get("/api/v1/transfers/00000000-0000-0000-0000-000000000000/")

        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["reference"], created["reference"])
        self.assertEqual(delete_completed.status_code, 400)
        self.assertEqual(delete_completed.json()["code"], "invalid_state_transition")
        self.assertEqual(missing.status_code, 404)
