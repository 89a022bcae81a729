from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import ConcurrentModification, DomainValidationError, InvalidStateTransition
from core.models import Branch
from inventory.alerts import (
    build_alert_message,
    classify_stock_level,
    evaluate_ledger_alerts,
    evaluate_stock_alert,
    transition_alert,
)
from inventory.exceptions import BranchNotFound, InsufficientStock, MissingBranchName, ProductNotFound
from inventory.ledger import StockLedger
from inventory.models import BranchStock, Product, StockAlert


def stocked_product(name, quantities, stock_minimum=0, thresholds=None):
    thresholds = thresholds or {}
    product = Product.objects.create(name=name, stock_minimum=stock_minimum)
    ledger = StockLedger.load(product.pk)
    for branch, quantity in quantities.items():
        ledger.set_branch_stock(branch.id, branch.name, quantity, thresholds.get(branch))
    ledger.save()
    return product


class StockLedgerTests(TestCase):
    def setUp(self):
        self.branch_a = Branch.objects.create(code="LA", name="Ledger A")
        self.branch_b = Branch.objects.create(code="LB", name="Ledger B")
        self.product = stocked_product("Rice 1kg", {self.branch_a: 20, self.branch_b: 5}, stock_minimum=4)

    def test_save_recomputes_total_and_bumps_version(self):
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_total, 25)
        self.assertEqual(self.product.version, 1)

        ledger = StockLedger.load(self.product.pk)
        ledger.adjust_branch_quantity(self.branch_a.id, self.branch_a.name, -7)
        ledger.adjust_branch_quantity(self.branch_b.id, self.branch_b.name, 7)
        ledger.save()

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_total, 25)
        self.assertEqual(self.product.version, 2)
        quantities = dict(BranchStock.objects.filter(product=self.product).values_list("branch_id", "quantity"))
        self.assertEqual(quantities, {self.branch_a.id: 13, self.branch_b.id: 12})

    def test_new_entry_inherits_product_minimum(self):
        branch_c = Branch.objects.create(code="LC", name="Ledger C")
        ledger = StockLedger.load(self.product.pk)

        ledger.adjust_branch_quantity(str(branch_c.id), "Ledger C", 3)
        ledger.save()

        entry = BranchStock.objects.get(product=self.product, branch=branch_c)
        self.assertEqual(entry.quantity, 3)
        self.assertEqual(entry.min_threshold, 4)
        self.assertEqual(entry.branch_name, "Ledger C")

    def test_adjust_never_goes_negative(self):
        ledger = StockLedger.load(self.product.pk)

        with self.assertRaises(InsufficientStock) as ctx:
            ledger.adjust_branch_quantity(self.branch_b.id, self.branch_b.name, -6)

        self.assertEqual(ctx.exception.errors["available"], 5)
        self.assertEqual(ctx.exception.errors["requested"], 6)
        self.assertEqual(ledger.get_branch_quantity(self.branch_b.id), 5)

    def test_adjust_unknown_branch(self):
        branch_c = Branch.objects.create(code="LC", name="Ledger C")
        ledger = StockLedger.load(self.product.pk)

        with self.assertRaises(MissingBranchName):
            ledger.adjust_branch_quantity(branch_c.id, "", 3)
        with self.assertRaises(BranchNotFound):
            ledger.adjust_branch_quantity(branch_c.id, "Ledger C", -1)
        with self.assertRaises(BranchNotFound):
            ledger.adjust_branch_quantity("not-a-branch", "Ledger C", 1)

    def test_set_branch_stock_rejects_negative_quantity(self):
        ledger = StockLedger.load(self.product.pk)

        with self.assertRaises(DomainValidationError):
            ledger.set_branch_stock(self.branch_a.id, self.branch_a.name, -1)

    def test_load_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            StockLedger.load("00000000-0000-0000-0000-000000000000")
        with self.assertRaises(ProductNotFound):
            StockLedger.load("garbage")

    def test_stale_ledger_save_raises_conflict(self):
        first = StockLedger.load(self.product.pk)
        stale = StockLedger.load(self.product.pk)

        first.adjust_branch_quantity(self.branch_a.id, self.branch_a.name, -10)
        first.save()

        stale.adjust_branch_quantity(self.branch_a.id, self.branch_a.name, -20)
        with self.assertLogs("inventory.ledger", level="WARNING"):
            with self.assertRaises(ConcurrentModification):
                stale.save()

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_total, 15)
        self.assertEqual(BranchStock.objects.get(product=self.product, branch=self.branch_a).quantity, 10)


class AlertEngineTests(TestCase):
    def setUp(self):
        self.branch = Branch.objects.create(code="AE", name="Alert Branch")
        self.product = Product.objects.create(name="Olive Oil")
        self.user = get_user_model().objects.create_user(username="alert-sup", password="pass1234", role="supervisor")

    def evaluate(self, current_stock, min_threshold=10):
        return evaluate_stock_alert(
            self.product.id,
            self.product.name,
            self.branch.id,
            self.branch.name,
            current_stock,
            min_threshold,
        )

    def test_classification_boundaries(self):
        self.assertEqual(classify_stock_level(0, 10), StockAlert.Type.OUT)
        self.assertEqual(classify_stock_level(5, 10), StockAlert.Type.CRITICAL)
        self.assertEqual(classify_stock_level(6, 10), StockAlert.Type.LOW)
        self.assertEqual(classify_stock_level(10, 10), StockAlert.Type.LOW)
        self.assertIsNone(classify_stock_level(11, 10))
        self.assertEqual(classify_stock_level(0, 0), StockAlert.Type.OUT)
        self.assertIsNone(classify_stock_level(3, 0))

    def test_messages_mention_product_branch_and_quantities(self):
        low = build_alert_message(StockAlert.Type.LOW, "Olive Oil", "Alert Branch", 7, 10)
        out = build_alert_message(StockAlert.Type.OUT, "Olive Oil", "Alert Branch", 0, 10)

        self.assertIn("Olive Oil", low)
        self.assertIn("Alert Branch", low)
        self.assertIn("7/10", low)
        self.assertIn("out of stock", out)

    def test_healthy_stock_raises_nothing(self):
        self.assertIsNone(self.evaluate(11))
        self.assertFalse(StockAlert.objects.exists())

    def test_repeated_evaluation_updates_the_pending_alert(self):
        first = self.evaluate(8)
        second = self.evaluate(3)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(StockAlert.objects.filter(state=StockAlert.State.PENDING).count(), 1)
        alert = StockAlert.objects.get()
        self.assertEqual(alert.alert_type, StockAlert.Type.CRITICAL)
        self.assertEqual(alert.current_stock, 3)
        self.assertIn("3/10", alert.message)

    def test_resolved_alert_does_not_suppress_a_new_one(self):
        alert = self.evaluate(8)
        transition_alert(alert.id, StockAlert.State.RESOLVED, actor=self.user)

        fresh = self.evaluate(7)

        self.assertNotEqual(fresh.pk, alert.pk)
        self.assertEqual(StockAlert.objects.count(), 2)
        self.assertEqual(StockAlert.objects.filter(state=StockAlert.State.PENDING).count(), 1)

    def test_ledger_alerts_use_each_branch_threshold(self):
        other = Branch.objects.create(code="AF", name="Other Branch")
        product = stocked_product(
            "Tea",
            {self.branch: 4, other: 4},
            thresholds={self.branch: 5, other: 2},
        )
        ledger = StockLedger.load(product.pk)

        alerts = evaluate_ledger_alerts(ledger, [self.branch.id, other.id])

        self.assertEqual([(a.branch_id, a.alert_type) for a in alerts], [(self.branch.id, StockAlert.Type.LOW)])

    def test_transition_rules(self):
        alert = self.evaluate(8)

        reviewed = transition_alert(alert.id, StockAlert.State.REVIEWED, actor=self.user)
        self.assertEqual(reviewed.state, StockAlert.State.REVIEWED)
        self.assertIsNone(reviewed.resolved_at)

        resolved = transition_alert(alert.id, StockAlert.State.RESOLVED, actor=self.user)
        self.assertEqual(resolved.resolved_by, self.user)
        self.assertIsNotNone(resolved.resolved_at)

        with self.assertRaises(InvalidStateTransition):
            transition_alert(alert.id, StockAlert.State.PENDING, actor=self.user)
        with self.assertRaises(DomainValidationError):
            transition_alert(alert.id, "archived", actor=self.user)


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch_a = Branch.objects.create(code="IA", name="Branch A")
        self.branch_b = Branch.objects.create(code="IB", name="Branch B")

        self.cashier = self.user_model.objects.create_user(username="inv-cashier", password="pass1234", role="cashier")
        self.supervisor = self.user_model.objects.create_user(
            username="inv-supervisor",
            password="pass1234",
            role="supervisor",
        )
        self.admin = self.user_model.objects.create_user(username="inv-admin", password="pass1234", role="admin")

        self.product = stocked_product("Flour 1kg", {self.branch_a: 20}, stock_minimum=10)

    def move(self, **overrides):
        payload = {
            "product_id": str(self.product.id),
            "origin_branch_id": str(self.branch_a.id),
            "destination_branch_id": str(self.branch_b.id),
            "quantity": 15,
            "destination_branch_name": "Branch B",
        }
        payload.update(overrides)
        return self.client.post("/api/v1/stock/move/", payload, format="json")

    def test_product_list_is_paginated_with_limit_and_skip(self):
        stocked_product("Sugar 1kg", {self.branch_a: 3})
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/products/?limit=1&skip=1")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "limit", "results", "skip"])
        self.assertEqual(payload["count"], 2)
        self.assertEqual([item["name"] for item in payload["results"]], ["Sugar 1kg"])

    def test_product_detail_shows_branch_ledger(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["stock_total"], 20)
        self.assertEqual(
            [(row["branch_id"], row["quantity"]) for row in payload["branch_stocks"]],
            [(str(self.branch_a.id), 20)],
        )

    def test_supervisor_moves_stock_to_new_branch_entry(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.move()

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["stock_total"], 20)
        quantities = {row["branch_id"]: row["quantity"] for row in payload["branch_stocks"]}
        self.assertEqual(quantities, {str(self.branch_a.id): 5, str(self.branch_b.id): 15})
        self.assertEqual(payload["updated_by"], str(self.supervisor.id))
        alert = StockAlert.objects.get(product=self.product)
        self.assertEqual(alert.branch_id, self.branch_a.id)
        self.assertEqual(alert.alert_type, StockAlert.Type.CRITICAL)

    def test_move_reports_available_quantity(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.move(quantity=21)

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["errors"]["available"], 20)
        self.assertEqual(payload["errors"]["requested"], 21)
        self.product.refresh_from_db()
        self.assertEqual(self.product.version, 1)

    def test_move_requires_name_for_new_destination(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.move(destination_branch_name="")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "missing_branch_name")

    def test_move_input_validation(self):
        self.client.force_authenticate(user=self.supervisor)

        same_branch = self.move(destination_branch_id=str(self.branch_a.id))
        zero = self.move(quantity=0)
        unknown = self.move(product_id="00000000-0000-0000-0000-000000000000")

        self.assertEqual(same_branch.json()["code"], "validation_error")
        self.assertEqual(zero.status_code, 400)
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.json()["errors"]["resource"], "product")

    def test_admin_sets_initial_branch_stock(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.put(
            f"/api/v1/products/{self.product.id}/branch-stock/",
            {"branch_id": str(self.branch_b.id), "quantity": 2, "min_threshold": 6},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["stock_total"], 22)
        entry = BranchStock.objects.get(product=self.product, branch=self.branch_b)
        self.assertEqual((entry.branch_name, entry.quantity, entry.min_threshold), ("Branch B", 2, 6))
        self.assertTrue(StockAlert.objects.filter(product=self.product, branch=self.branch_b).exists())

    def test_supervisor_cannot_set_branch_stock(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.put(
            f"/api/v1/products/{self.product.id}/branch-stock/",
            {"branch_id": str(self.branch_b.id), "quantity": 2},
            format="json",
        )

        self.assertEqual(response.status_code, 403)


class StockAlertApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch_a = Branch.objects.create(code="SA", name="Alert A")
        self.branch_b = Branch.objects.create(code="SB", name="Alert B")
        self.cashier = self.user_model.objects.create_user(username="al-cashier", password="pass1234", role="cashier")
        self.supervisor = self.user_model.objects.create_user(
            username="al-supervisor",
            password="pass1234",
            role="supervisor",
        )
        self.admin = self.user_model.objects.create_user(username="al-admin", password="pass1234", role="admin")

        self.product = Product.objects.create(name="Milk 1L")
        self.pending_a = self.make_alert(self.branch_a, 0)
        self.pending_b = self.make_alert(self.branch_b, 4)
        self.resolved = self.make_alert(self.branch_a, 2, state=StockAlert.State.RESOLVED)

    def make_alert(self, branch, current_stock, state=StockAlert.State.PENDING):
        alert_type = classify_stock_level(current_stock, 10)
        return StockAlert.objects.create(
            product=self.product,
            product_name=self.product.name,
            branch=branch,
            branch_name=branch.name,
            current_stock=current_stock,
            min_threshold=10,
            alert_type=alert_type,
            state=state,
            message=build_alert_message(alert_type, self.product.name, branch.name, current_stock, 10),
        )

    def test_list_defaults_to_pending(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/alerts/")

        self.assertEqual(response.status_code, 200)
        ids = {item["id"] for item in response.json()}
        self.assertEqual(ids, {str(self.pending_a.id), str(self.pending_b.id)})

    def test_list_filters(self):
        self.client.force_authenticate(user=self.cashier)

        everything = self.client.get("/api/v1/alerts/?state=all").json()
        by_type = self.client.get("/api/v1/alerts/?type=out").json()
        by_branch = self.client.get(f"/api/v1/alerts/?branch_id={self.branch_b.id}").json()
        bad_branch = self.client.get("/api/v1/alerts/?branch_id=nope").json()

        self.assertEqual(len(everything), 3)
        self.assertEqual([item["id"] for item in by_type], [str(self.pending_a.id)])
        self.assertEqual([item["id"] for item in by_branch], [str(self.pending_b.id)])
        self.assertEqual(bad_branch, [])

    @override_settings(INVENTORY_ALERT_LIST_LIMIT=1)
    def test_list_is_capped(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/alerts/?state=all")

        self.assertEqual(len(response.json()), 1)

    def test_supervisor_reviews_alert(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.put(f"/api/v1/alerts/{self.pending_a.id}/", {"state": "reviewed"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["state"], "reviewed")
        self.assertEqual(response.json()["type"], "out")

    def test_resolved_alert_cannot_reopen(self):
        self.client.force_authenticate(user=self.supervisor)

        response = self.client.put(f"/api/v1/alerts/{self.resolved.id}/", {"state": "pending"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_state_transition")

    def test_cashier_cannot_update_alert(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.put(f"/api/v1/alerts/{self.pending_a.id}/", {"state": "reviewed"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_only_admin_deletes_alerts(self):
        self.client.force_authenticate(user=self.supervisor)
        denied = self.client.delete(f"/api/v1/alerts/{self.pending_a.id}/")
        self.client.force_authenticate(user=self.admin)
        deleted = self.client.delete(f"/api/v1/alerts/{self.pending_a.id}/")
        missing = self.client.delete(f"/api/v1/alerts/{self.pending_a.id}/")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["errors"], {"resource": "alert", "id": str(self.pending_a.id)})
