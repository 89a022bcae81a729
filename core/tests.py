from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import ConcurrentModification, custom_exception_handler
from common.permissions import user_has_capability
from core.models import Branch
from inventory.exceptions import ProductNotFound
from inventory.ledger import StockLedger
from inventory.models import BranchStock, Product


class TokenAuthTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.branch = Branch.objects.create(code="TK", name="Token Branch")
        self.user = get_user_model().objects.create_user(
            username="token-user",
            email="Token.User@example.com",
            password="pass1234",
            branch=self.branch,
            role="supervisor",
        )

    def test_login_with_username_returns_tokens(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_login_with_email_is_case_insensitive(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "TOKEN.user@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)

    def test_bad_credentials_use_error_envelope(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["status"], 401)

    def test_bearer_token_authenticates_api_requests(self):
        login = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "pass1234"},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.json()['access']}")

        response = self.client.get("/api/v1/branches/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["code"] for item in response.json()], ["TK"])


class HealthEndpointTests(TestCase):
    def test_healthz_is_anonymous(self):
        response = APIClient().get("/api/v1/healthz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertTrue(response.json()["request_id"])

    def test_readyz_checks_database(self):
        response = APIClient().get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class RolePermissionTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.branch = Branch.objects.create(code="RP", name="Role Perm")
        self.cashier = self.user_model.objects.create_user(
            username="cashier-core",
            password="pass1234",
            branch=self.branch,
            role="cashier",
        )
        self.supervisor = self.user_model.objects.create_user(
            username="supervisor-core",
            password="pass1234",
            branch=self.branch,
            role="supervisor",
        )

    def test_capability_matrix(self):
        self.assertTrue(user_has_capability(self.cashier, "inventory.view"))
        self.assertFalse(user_has_capability(self.cashier, "stock.move"))
        self.assertTrue(user_has_capability(self.supervisor, "stock.transfer.approve"))
        self.assertFalse(user_has_capability(self.supervisor, "stock.transfer.create"))
        self.assertFalse(user_has_capability(self.supervisor, "unknown.capability"))

    def test_cashier_cannot_move_stock_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post("/api/v1/stock/move/", {}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_anonymous_request_is_rejected(self):
        response = self.client.get("/api/v1/alerts/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class ExceptionHandlerTests(TestCase):
    def test_domain_error_keeps_code_and_errors(self):
        response = custom_exception_handler(ProductNotFound("abc"), {})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.data,
            {
                "code": "not_found",
                "message": "Product not found.",
                "errors": {"resource": "product", "id": "abc"},
                "status": 404,
            },
        )

    def test_concurrent_modification_is_conflict(self):
        response = custom_exception_handler(ConcurrentModification(), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "concurrent_modification")

    def test_database_error_is_reported_generically(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(DatabaseError("disk full at /var/lib"), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "persistence_error")
        self.assertNotIn("disk full", response.data["message"])


class ManagementCommandTests(TestCase):
    def test_seed_demo_data_builds_consistent_ledgers(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Branch.objects.count(), 3)
        self.assertEqual(Product.objects.count(), 3)
        for product in Product.objects.all():
            self.assertTrue(StockLedger.load(product.pk).is_consistent())
        cola = Product.objects.get(sku="SKU-COLA-001")
        self.assertEqual(cola.stock_total, 158)

    def test_reconcile_assigns_unallocated_stock_to_central_branch(self):
        central = Branch.objects.create(code="CENTRAL", name="Central Branch")
        legacy = Product.objects.create(name="Legacy Rice", stock_total=40, stock_minimum=5)

        out = StringIO()
        call_command("reconcile_stock", stdout=out)

        entry = BranchStock.objects.get(product=legacy)
        self.assertEqual(entry.branch_id, central.id)
        self.assertEqual(entry.quantity, 40)
        self.assertEqual(entry.min_threshold, 5)
        legacy.refresh_from_db()
        self.assertEqual(legacy.stock_total, 40)
        self.assertEqual(legacy.version, 1)
        self.assertIn("Allocated 1 products", out.getvalue())

    def test_reconcile_recomputes_drifted_totals(self):
        branch = Branch.objects.create(code="CENTRAL", name="Central Branch")
        product = Product.objects.create(name="Drifted Flour", stock_total=99)
        BranchStock.objects.create(product=product, branch=branch, branch_name=branch.name, quantity=12)

        call_command("reconcile_stock", stdout=StringIO())

        product.refresh_from_db()
        self.assertEqual(product.stock_total, 12)

    def test_reconcile_dry_run_writes_nothing(self):
        Branch.objects.create(code="CENTRAL", name="Central Branch")
        product = Product.objects.create(name="Legacy Oil", stock_total=7)

        call_command("reconcile_stock", "--dry-run", stdout=StringIO())

        self.assertFalse(BranchStock.objects.filter(product=product).exists())
        product.refresh_from_db()
        self.assertEqual(product.version, 0)
