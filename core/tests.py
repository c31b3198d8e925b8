from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from billing.models import CashClosure, Invoice, InvoiceStatusChange, PaymentMethod
from core.models import AuditLog, Employee


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.clerk = self.user_model.objects.create_user(username="clerk-core", password="pass1234", role="employee")
        self.manager = self.user_model.objects.create_user(username="manager-core", password="pass1234", role="manager")

    def test_employee_can_list_employees(self):
        Employee.objects.create(name="Ana")
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/employees/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual([item["name"] for item in payload["results"]], ["Ana"])

    def test_employee_cannot_manage_employees_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.clerk)

        with self.assertLogs("security.authorization", level="WARNING") as logs:
            response = self.client.post("/api/v1/employees/", {"name": "Luis"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in line and "employees.manage" in line for line in logs.output))
        self.assertFalse(Employee.objects.exists())

    def test_manager_can_manage_employees(self):
        self.client.force_authenticate(user=self.manager)

        created = self.client.post("/api/v1/employees/", {"name": "  Luis  ", "phone": "809-555-0101"}, format="json")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["name"], "Luis")

        employee_id = created.json()["id"]
        updated = self.client.patch(f"/api/v1/employees/{employee_id}/", {"is_active": False}, format="json")
        self.assertEqual(updated.status_code, 200)
        self.assertFalse(updated.json()["is_active"])

        active = self.client.get("/api/v1/employees/", {"active": "true"})
        self.assertEqual(active.json()["count"], 0)

    def test_blank_employee_name_is_rejected(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post("/api/v1/employees/", {"name": "   "}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("name", response.json()["errors"])

    def test_unauthenticated_requests_get_error_envelope(self):
        response = self.client.get("/api/v1/invoices/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)

    def test_token_obtain_returns_jwt_pair(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "manager-core", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="audit-admin", password="pass1234", role="admin")
        self.manager = self.user_model.objects.create_user(username="audit-manager", password="pass1234", role="manager")

    def test_employee_create_writes_audit_log(self):
        self.client.force_authenticate(user=self.manager)

        res = self.client.post("/api/v1/employees/", {"name": "Ana"}, format="json", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(res.status_code, 201)
        self.assertEqual(res["X-Request-ID"], "req-123")
        log = AuditLog.objects.get(action="employee.create")
        self.assertEqual(log.entity, "employee")
        self.assertEqual(str(log.entity_id), res.json()["id"])
        self.assertEqual(log.request_id, "req-123")
        self.assertEqual(log.actor, self.manager)
        self.assertEqual(log.after_snapshot["name"], "Ana")

    def test_employee_delete_keeps_invoices(self):
        employee = Employee.objects.create(name="Luis")
        invoice = Invoice.objects.create(
            invoice_number="A-1",
            date=timezone.now(),
            employee=employee,
            subtotal=Decimal("10.00"),
            total=Decimal("10.00"),
        )
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/employees/{employee.id}/")

        self.assertEqual(response.status_code, 204)
        invoice.refresh_from_db()
        self.assertIsNone(invoice.employee_id)
        self.assertTrue(AuditLog.objects.filter(action="employee.delete", entity_id=employee.id).exists())

    def test_audit_logs_are_admin_only(self):
        self.client.force_authenticate(user=self.manager)
        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_can_be_filtered_and_exported(self):
        AuditLog.objects.create(action="invoice.create", entity="invoice", actor=self.admin)
        AuditLog.objects.create(action="cash_closure.create", entity="cash_closure", actor=self.admin)
        self.client.force_authenticate(user=self.admin)

        listed = self.client.get("/api/v1/admin/audit-logs/", {"entity": "cash_closure"})
        exported = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(listed.status_code, 200)
        self.assertEqual([item["action"] for item in listed.json()["results"]], ["cash_closure.create"])
        self.assertEqual(exported.status_code, 200)
        self.assertEqual(exported["Content-Type"], "text/csv")
        lines = exported.content.decode().strip().splitlines()
        self.assertEqual(lines[0], "id,created_at,actor,action,entity,entity_id,request_id")
        self.assertEqual(len(lines), 3)


class HealthCheckTests(TestCase):
    def test_healthz_is_public(self):
        response = APIClient().get("/healthz/", HTTP_X_REQUEST_ID="probe-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "probe-1"})

    def test_readyz_checks_database(self):
        response = APIClient().get("/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class ManagementCommandTests(TestCase):
    def test_seed_demo_data_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(PaymentMethod.objects.count(), 4)
        self.assertEqual(Invoice.objects.filter(invoice_number__startswith="DEMO-").count(), 5)
        self.assertEqual(InvoiceStatusChange.objects.count(), 5)
        self.assertEqual(Employee.objects.get(name="Ana").user.username, "ana")
        self.assertTrue(get_user_model().objects.get(username="manager").check_password("manager1234"))

    def test_create_cash_closure_command(self):
        call_command("seed_demo_data", stdout=StringIO())
        out = StringIO()

        call_command(
            "create_cash_closure",
            "--opening-cash",
            "100.00",
            "--counted-cash",
            "395.00",
            "--notes",
            "Cierre demo",
            "--username",
            "manager",
            stdout=out,
        )

        closure = CashClosure.objects.get(closing_date=timezone.localdate())
        # DEMO-0001 is the only delivered cash invoice: 250.00 + 18% tax.
        self.assertEqual(closure.system_cash, Decimal("395.00"))
        self.assertEqual(closure.variance, Decimal("0.00"))
        self.assertEqual(closure.created_by.username, "manager")
        self.assertEqual(closure.summary["delivered_invoices"], 2)
        self.assertEqual(closure.summary["pending_invoices"], 2)
        self.assertIn("Variance: 0.00", out.getvalue())

    def test_create_cash_closure_command_rejects_duplicates(self):
        call_command("create_cash_closure", "--date", "2024-05-10", "--counted-cash", "0", stdout=StringIO())

        with self.assertRaises(CommandError):
            call_command("create_cash_closure", "--date", "2024-05-10", "--counted-cash", "0", stdout=StringIO())
        self.assertEqual(CashClosure.objects.count(), 1)

    def test_create_cash_closure_command_rejects_unknown_user(self):
        with self.assertRaises(CommandError):
            call_command(
                "create_cash_closure",
                "--date",
                "2024-05-10",
                "--counted-cash",
                "0",
                "--username",
                "nobody",
                stdout=StringIO(),
            )
        self.assertFalse(CashClosure.objects.exists())
