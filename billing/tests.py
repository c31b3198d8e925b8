from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ParseError, ValidationError
from rest_framework.test import APIClient

from billing.closure import (
    UNKNOWN_EMPLOYEE_LABEL,
    UNKNOWN_METHOD_LABEL,
    compute_daily_summary,
    compute_system_cash,
    compute_variance,
    parse_money,
)
from billing.models import CashClosure, Invoice, InvoiceStatusChange, PaymentMethod
from billing.services import (
    build_daily_report,
    change_invoice_status,
    create_cash_closure,
    delivery_analytics,
    delivery_metrics,
    get_cash_closure,
    invoices_for_date,
)
from common.exceptions import DuplicateClosureError
from core.models import AuditLog, Employee

CLOSING_DATE = date(2024, 5, 10)


def local_dt(day, hour, minute=0):
    return timezone.make_aware(datetime(day.year, day.month, day.day, hour, minute))


def invoice_row(**overrides):
    row = {
        "id": overrides.pop("id", "inv-1"),
        "status": "delivered",
        "paid": True,
        "payment_method": "cash",
        "employee_id": "e1",
        "subtotal": "21.19",
        "tax": "3.81",
        "total": "25.00",
    }
    row.update(overrides)
    return row


class ParseMoneyTests(SimpleTestCase):
    def test_accepts_strings_ints_decimals_and_floats(self):
        self.assertEqual(parse_money("10"), Decimal("10.00"))
        self.assertEqual(parse_money(" 12.5 "), Decimal("12.50"))
        self.assertEqual(parse_money(7), Decimal("7.00"))
        self.assertEqual(parse_money(Decimal("3.455")), Decimal("3.46"))
        self.assertEqual(parse_money(0.1), Decimal("0.10"))

    def test_malformed_values_raise_parse_error_naming_the_field(self):
        for value in ("abc", "12,50", "", "   ", None, True, "NaN", "Infinity", float("nan"), [1]):
            with self.subTest(value=value):
                with self.assertRaises(ParseError) as ctx:
                    parse_money(value, "counted_cash")
                self.assertIn("counted_cash", ctx.exception.detail)


class DailySummaryComputationTests(SimpleTestCase):
    def setUp(self):
        self.payment_methods = [
            {"code": "cash", "name": "Efectivo"},
            {"code": "card", "name": "Tarjeta"},
            {"code": "transfer", "name": "Transferencia"},
        ]
        self.employees = [
            {"id": "e1", "name": "Ana"},
            {"id": "e2", "name": "Luis"},
        ]

    def _mixed_invoices(self):
        return [
            invoice_row(id="1", total="25.00", subtotal="21.19", tax="3.81"),
            invoice_row(id="2", payment_method="card", employee_id="e2", total="118.00", subtotal="100.00", tax="18.00"),
            invoice_row(id="3", payment_method="xyz", total="10.10", subtotal="10.10", tax="0"),
            invoice_row(id="4", employee_id="missing", total="0.20", subtotal="0.20", tax="0.00"),
            invoice_row(id="5", status="ready", paid=False, total="40.00"),
            invoice_row(id="6", status="received", paid=False, total="15.00"),
            invoice_row(id="7", status="cancelled", paid=False, total="99.00"),
            invoice_row(id="8", status="delivered", paid=False, total="12.00"),
            invoice_row(id="9", status="ready", paid=True, total="33.00"),
            invoice_row(id="10", payment_method="", employee_id=None, total="0.10", subtotal="0.10", tax="0"),
        ]

    def test_single_cash_invoice_scenario(self):
        invoices = [{"status": "delivered", "paid": True, "payment_method": "cash", "total": "25.00", "employee_id": "e1"}]

        summary = compute_daily_summary(invoices, [{"code": "cash", "name": "Efectivo"}], [{"id": "e1", "name": "Ana"}])

        self.assertEqual(summary["total_revenue"], Decimal("25.00"))
        self.assertEqual(summary["payment_summary"]["Efectivo"], {"quantity": 1, "total": Decimal("25.00")})
        self.assertEqual(summary["employee_stats"]["Ana"], {"sales": 1, "total": Decimal("25.00")})
        self.assertEqual(
            compute_system_cash(summary, [{"code": "cash", "name": "Efectivo"}], 0),
            Decimal("25.00"),
        )

    def test_counts_delivered_and_pending_invoices(self):
        summary = compute_daily_summary(self._mixed_invoices(), self.payment_methods, self.employees)

        self.assertEqual(summary["total_invoices"], 10)
        self.assertEqual(summary["delivered_invoices"], 5)
        # unpaid and not cancelled: ready, received, delivered-but-unpaid
        self.assertEqual(summary["pending_invoices"], 3)
        self.assertEqual(summary["total_revenue"], Decimal("153.40"))
        self.assertEqual(summary["total_subtotal"], Decimal("131.59"))
        self.assertEqual(summary["total_tax"], Decimal("21.81"))

    def test_payment_summary_accounts_for_every_delivered_invoice(self):
        summary = compute_daily_summary(self._mixed_invoices(), self.payment_methods, self.employees)
        buckets = summary["payment_summary"].values()

        self.assertEqual(sum(bucket["quantity"] for bucket in buckets), summary["delivered_invoices"])
        self.assertEqual(sum((bucket["total"] for bucket in buckets), Decimal("0")), summary["total_revenue"])

    def test_employee_stats_account_for_every_delivered_invoice(self):
        summary = compute_daily_summary(self._mixed_invoices(), self.payment_methods, self.employees)
        stats = summary["employee_stats"]

        self.assertEqual(sum(item["sales"] for item in stats.values()), summary["delivered_invoices"])
        self.assertEqual(sum((item["total"] for item in stats.values()), Decimal("0")), summary["total_revenue"])
        self.assertEqual(stats[UNKNOWN_EMPLOYEE_LABEL], {"sales": 2, "total": Decimal("0.30")})

    def test_payment_summary_is_seeded_with_every_known_method(self):
        summary = compute_daily_summary([], self.payment_methods, self.employees)

        self.assertEqual(list(summary["payment_summary"]), ["Efectivo", "Tarjeta", "Transferencia", UNKNOWN_METHOD_LABEL])
        for bucket in summary["payment_summary"].values():
            self.assertEqual(bucket, {"quantity": 0, "total": Decimal("0.00")})
        self.assertEqual(summary["employee_stats"], {})

    def test_unknown_payment_method_goes_to_pending_bucket(self):
        summary = compute_daily_summary([invoice_row(payment_method="xyz")], self.payment_methods, self.employees)

        self.assertEqual(summary["payment_summary"][UNKNOWN_METHOD_LABEL]["quantity"], 1)
        self.assertEqual(summary["payment_summary"][UNKNOWN_METHOD_LABEL]["total"], Decimal("25.00"))
        self.assertEqual(summary["payment_summary"]["Efectivo"]["quantity"], 0)

    def test_unknown_employee_goes_to_unknown_bucket(self):
        summary = compute_daily_summary([invoice_row(employee_id="missing")], self.payment_methods, self.employees)

        self.assertEqual(summary["employee_stats"][UNKNOWN_EMPLOYEE_LABEL]["sales"], 1)
        self.assertNotIn("Ana", summary["employee_stats"])

    def test_summary_is_deterministic(self):
        first = compute_daily_summary(self._mixed_invoices(), self.payment_methods, self.employees)
        second = compute_daily_summary(self._mixed_invoices(), self.payment_methods, self.employees)

        self.assertEqual(first, second)
        self.assertEqual(list(first["payment_summary"]), list(second["payment_summary"]))
        self.assertEqual(list(first["employee_stats"]), list(second["employee_stats"]))

    def test_malformed_amount_aborts_the_aggregation(self):
        invoices = [invoice_row(id="ok"), invoice_row(id="bad", status="received", paid=False, total="12.3.4")]

        with self.assertRaises(ParseError) as ctx:
            compute_daily_summary(invoices, self.payment_methods, self.employees)
        self.assertIn("invoices[bad].total", ctx.exception.detail)

    def test_missing_total_is_rejected_but_missing_breakdown_is_zero(self):
        with self.assertRaises(ParseError):
            compute_daily_summary([{"status": "delivered", "paid": True, "payment_method": "cash"}], self.payment_methods, [])

        summary = compute_daily_summary([{"status": "delivered", "paid": True, "total": "5.00"}], self.payment_methods, [])
        self.assertEqual(summary["total_subtotal"], Decimal("0.00"))
        self.assertEqual(summary["total_tax"], Decimal("0.00"))

    def test_accepts_model_like_objects(self):
        class Row:
            def __init__(self, **kwargs):
                self.__dict__.update(kwargs)

        invoices = [Row(**invoice_row())]
        methods = [Row(code="cash", name="Efectivo")]
        employees = [Row(id="e1", name="Ana")]

        summary = compute_daily_summary(invoices, methods, employees)

        self.assertEqual(summary["payment_summary"]["Efectivo"]["quantity"], 1)
        self.assertEqual(summary["employee_stats"]["Ana"]["sales"], 1)


class CashReconciliationTests(SimpleTestCase):
    payment_methods = [{"code": "cash", "name": "Efectivo"}, {"code": "card", "name": "Tarjeta"}]

    def test_system_cash_adds_cash_revenue_to_opening_cash(self):
        summary = compute_daily_summary(
            [invoice_row(total="50.00"), invoice_row(id="2", payment_method="card", total="70.00")],
            self.payment_methods,
            [],
        )

        self.assertEqual(compute_system_cash(summary, self.payment_methods, "100.00"), Decimal("150.00"))

    def test_system_cash_without_cash_method_is_opening_cash(self):
        methods = [{"code": "card", "name": "Tarjeta"}]
        summary = compute_daily_summary([invoice_row(payment_method="card")], methods, [])

        self.assertEqual(compute_system_cash(summary, methods, "80.00"), Decimal("80.00"))

    def test_variance_can_be_negative(self):
        self.assertEqual(compute_variance("140.00", Decimal("150.00")), Decimal("-10.00"))
        self.assertEqual(compute_variance("155.50", Decimal("150.00")), Decimal("5.50"))


class CashClosureServiceTests(TestCase):
    def setUp(self):
        PaymentMethod.objects.create(code="cash", name="Efectivo")
        PaymentMethod.objects.create(code="card", name="Tarjeta")
        self.ana = Employee.objects.create(name="Ana")
        self.luis = Employee.objects.create(name="Luis")

    def _invoice(self, number, when, *, method="cash", total="50.00", status=Invoice.Status.DELIVERED, paid=True, employee=None):
        amount = Decimal(total)
        return Invoice.objects.create(
            invoice_number=number,
            date=when,
            status=status,
            paid=paid,
            payment_method=method,
            employee=employee or self.ana,
            subtotal=amount,
            tax=Decimal("0.00"),
            total=amount,
        )

    def test_invoices_are_selected_by_business_local_date(self):
        self._invoice("LATE", local_dt(CLOSING_DATE, 23, 30))
        self._invoice("EARLY", local_dt(CLOSING_DATE, 0, 0))
        self._invoice("NEXT", local_dt(date(2024, 5, 11), 0, 10))
        self._invoice("PREV", local_dt(date(2024, 5, 9), 23, 59))

        numbers = {row["id"] for row in invoices_for_date(CLOSING_DATE)}

        self.assertEqual(numbers, set(Invoice.objects.filter(invoice_number__in=["LATE", "EARLY"]).values_list("id", flat=True)))

    def test_build_daily_report_reads_invoices_methods_and_employees(self):
        self._invoice("A", local_dt(CLOSING_DATE, 9), total="50.00")
        self._invoice("B", local_dt(CLOSING_DATE, 10), method="card", total="30.00", employee=self.luis)
        self._invoice("C", local_dt(CLOSING_DATE, 11), method="xyz", total="5.00")
        self._invoice("D", local_dt(CLOSING_DATE, 12), status=Invoice.Status.READY, paid=False, total="20.00")

        report = build_daily_report(CLOSING_DATE, "100.00")

        self.assertEqual(report["total_invoices"], 4)
        self.assertEqual(report["delivered_invoices"], 3)
        self.assertEqual(report["pending_invoices"], 1)
        self.assertEqual(report["total_revenue"], Decimal("85.00"))
        self.assertEqual(report["payment_summary"]["Pendiente"], {"quantity": 1, "total": Decimal("5.00")})
        self.assertEqual(report["employee_stats"]["Luis"], {"sales": 1, "total": Decimal("30.00")})
        self.assertEqual(report["system_cash"], Decimal("150.00"))

    def test_deleted_employee_is_reported_as_unknown(self):
        self._invoice("A", local_dt(CLOSING_DATE, 9), employee=self.luis)
        self.luis.delete()

        report = build_daily_report(CLOSING_DATE)

        self.assertEqual(report["employee_stats"], {"Desconocido": {"sales": 1, "total": Decimal("50.00")}})

    def test_create_cash_closure_persists_reconciliation(self):
        self._invoice("A", local_dt(CLOSING_DATE, 9), total="50.00")
        self._invoice("B", local_dt(CLOSING_DATE, 10), method="card", total="30.00")

        with self.assertLogs("billing.services", level="INFO") as cm:
            closure = create_cash_closure(CLOSING_DATE, "100.00", "140.00", notes="Faltan 10")

        closure.refresh_from_db()
        self.assertEqual(closure.system_cash, Decimal("150.00"))
        self.assertEqual(closure.variance, Decimal("-10.00"))
        self.assertEqual(closure.opening_cash, Decimal("100.00"))
        self.assertEqual(closure.counted_cash, Decimal("140.00"))
        self.assertEqual(closure.notes, "Faltan 10")
        self.assertEqual(closure.summary["payment_summary"]["Efectivo"], {"quantity": 1, "total": "50.00"})
        self.assertEqual(closure.summary["total_revenue"], "80.00")
        self.assertEqual(closure.summary["date"], "2024-05-10")
        self.assertTrue(any("cash_closure_created" in line for line in cm.output))

    def test_closing_date_accepts_iso_string(self):
        closure = create_cash_closure("2024-05-10", None, "0")

        self.assertEqual(closure.closing_date, CLOSING_DATE)
        self.assertEqual(closure.opening_cash, Decimal("0.00"))
        self.assertEqual(get_cash_closure("2024-05-10"), closure)

    def test_second_closure_for_same_date_is_rejected(self):
        create_cash_closure(CLOSING_DATE, "0", "10.00")

        with self.assertLogs("billing.services", level="WARNING"):
            with self.assertRaises(DuplicateClosureError) as ctx:
                create_cash_closure(CLOSING_DATE, "5.00", "20.00")

        self.assertEqual(ctx.exception.closing_date, CLOSING_DATE)
        self.assertEqual(CashClosure.objects.count(), 1)
        self.assertEqual(CashClosure.objects.get().counted_cash, Decimal("10.00"))

    def test_unique_date_constraint_rejects_concurrent_duplicate(self):
        first = create_cash_closure(CLOSING_DATE, "0", "10.00")

        # Simulates a concurrent request that passed the existence check first.
        with patch.object(CashClosure.objects, "filter") as mocked_filter:
            mocked_filter.return_value.exists.return_value = False
            with self.assertLogs("billing.services", level="WARNING") as cm:
                with self.assertRaises(DuplicateClosureError):
                    create_cash_closure(CLOSING_DATE, "5.00", "20.00")

        self.assertTrue(any("cash_closure_duplicate_rejected" in line for line in cm.output))
        self.assertEqual(CashClosure.objects.count(), 1)
        stored = CashClosure.objects.get()
        self.assertEqual(stored.id, first.id)
        self.assertEqual(stored.counted_cash, Decimal("10.00"))
        self.assertEqual(stored.opening_cash, Decimal("0.00"))

    def test_amounts_beyond_column_precision_are_rejected(self):
        with self.assertRaises(ValidationError) as counted_ctx:
            create_cash_closure(CLOSING_DATE, "0", "99999999999.00")
        with self.assertRaises(ValidationError) as opening_ctx:
            create_cash_closure(CLOSING_DATE, "10000000000", "0")

        self.assertIn("counted_cash", counted_ctx.exception.detail)
        self.assertIn("opening_cash", opening_ctx.exception.detail)
        self.assertFalse(CashClosure.objects.exists())

        closure = create_cash_closure(CLOSING_DATE, "0", "9999999999.99")
        self.assertEqual(closure.counted_cash, Decimal("9999999999.99"))

    def test_missing_or_negative_counted_cash_is_rejected_before_persisting(self):
        for counted in (None, "", "-0.01"):
            with self.subTest(counted=counted):
                with self.assertRaises(ValidationError) as ctx:
                    create_cash_closure(CLOSING_DATE, "0", counted)
                self.assertIn("counted_cash", ctx.exception.detail)

        with self.assertRaises(ValidationError):
            create_cash_closure(CLOSING_DATE, "-5", "10")
        self.assertFalse(CashClosure.objects.exists())

    def test_malformed_input_raises_parse_error(self):
        with self.assertRaises(ParseError):
            create_cash_closure(CLOSING_DATE, "0", "diez")
        with self.assertRaises(ParseError):
            create_cash_closure("10/05/2024", "0", "10")
        self.assertFalse(CashClosure.objects.exists())

    @override_settings(CASH_CLOSURE_NOTIFY_EMAILS=["owner@example.com"], CURRENCY_PREFIX="RD$")
    def test_notification_is_sent_after_commit(self):
        self._invoice("A", local_dt(CLOSING_DATE, 9), total="50.00")

        with self.captureOnCommitCallbacks(execute=True):
            create_cash_closure(CLOSING_DATE, "100.00", "140.00")

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["owner@example.com"])
        self.assertIn("2024-05-10", message.subject)
        self.assertIn("Efectivo (1): RD$50.00", message.body)
        self.assertIn("Variance: RD$-10.00", message.body)

    @override_settings(CASH_CLOSURE_NOTIFY_EMAILS=[])
    def test_notification_is_skipped_without_recipients(self):
        with self.captureOnCommitCallbacks(execute=True):
            create_cash_closure(CLOSING_DATE, "0", "0")

        self.assertEqual(len(mail.outbox), 0)

    @override_settings(CASH_CLOSURE_NOTIFY_EMAILS=["owner@example.com"])
    def test_notification_failure_is_logged_and_closure_kept(self):
        with patch("common.notifications.send_mail", side_effect=OSError("smtp down")):
            with self.assertLogs("common.notifications", level="ERROR") as cm:
                with self.captureOnCommitCallbacks(execute=True):
                    create_cash_closure(CLOSING_DATE, "0", "0")

        self.assertTrue(any("cash_closure_email_send_failed" in line for line in cm.output))
        self.assertTrue(CashClosure.objects.filter(closing_date=CLOSING_DATE).exists())


class InvoiceStatusTransitionTests(TestCase):
    def setUp(self):
        self.employee = Employee.objects.create(name="Ana")
        self.invoice = Invoice.objects.create(
            invoice_number="T-1",
            date=timezone.now(),
            subtotal=Decimal("10.00"),
            tax=Decimal("0.00"),
            total=Decimal("10.00"),
        )

    def test_forward_transitions_are_recorded(self):
        change_invoice_status(self.invoice, Invoice.Status.IN_PROCESS, employee=self.employee)
        change_invoice_status(self.invoice, Invoice.Status.READY)
        change = change_invoice_status(self.invoice, Invoice.Status.DELIVERED, paid=True)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.Status.DELIVERED)
        self.assertTrue(self.invoice.paid)
        self.assertEqual(self.invoice.delivered_at, change.changed_at)
        self.assertEqual(
            list(self.invoice.status_changes.values_list("previous_status", "status")),
            [("received", "in_process"), ("in_process", "ready"), ("ready", "delivered")],
        )

    def test_skipping_ahead_is_allowed(self):
        change_invoice_status(self.invoice, Invoice.Status.READY)

        self.assertEqual(self.invoice.status, Invoice.Status.READY)

    def test_moving_backwards_is_rejected(self):
        change_invoice_status(self.invoice, Invoice.Status.READY)

        with self.assertRaises(ValidationError):
            change_invoice_status(self.invoice, Invoice.Status.IN_PROCESS)

    def test_final_statuses_cannot_change(self):
        change_invoice_status(self.invoice, Invoice.Status.CANCELLED)

        with self.assertRaises(ValidationError):
            change_invoice_status(self.invoice, Invoice.Status.READY)
        self.assertEqual(InvoiceStatusChange.objects.filter(invoice=self.invoice).count(), 1)

    def test_same_status_is_rejected(self):
        with self.assertRaises(ValidationError):
            change_invoice_status(self.invoice, Invoice.Status.RECEIVED)


@override_settings(DELIVERY_PROMISE_HOURS=48)
class DeliveryMetricsTests(TestCase):
    def setUp(self):
        self.received_at = local_dt(CLOSING_DATE, 8)
        # Ready after 3h, delivered after 26h: within the 48h promise.
        self.fast = self._tracked_invoice("D-1", ready_after=3, delivered_after=26)
        # Ready step skipped, delivered after 50h: late.
        self.late = self._tracked_invoice("D-2", ready_after=None, delivered_after=50)
        self.open = self._tracked_invoice("D-3", ready_after=None, delivered_after=None)

    def _tracked_invoice(self, number, *, ready_after, delivered_after):
        invoice = Invoice.objects.create(
            invoice_number=number,
            date=self.received_at,
            subtotal=Decimal("10.00"),
            tax=Decimal("0.00"),
            total=Decimal("10.00"),
        )
        InvoiceStatusChange.objects.create(invoice=invoice, status=Invoice.Status.RECEIVED, changed_at=self.received_at)
        if ready_after is not None:
            change_invoice_status(invoice, Invoice.Status.READY, changed_at=self.received_at + timedelta(hours=ready_after))
        if delivered_after is not None:
            change_invoice_status(
                invoice,
                Invoice.Status.DELIVERED,
                paid=True,
                changed_at=self.received_at + timedelta(hours=delivered_after),
            )
        return invoice

    def test_metrics_for_delivered_invoice(self):
        metrics = delivery_metrics(self.fast)

        self.assertEqual(metrics["processing_minutes"], 180)
        self.assertEqual(metrics["total_minutes"], 26 * 60)
        self.assertEqual(metrics["estimated_delivery_hours"], 48)
        self.assertTrue(metrics["on_time"])

    def test_skipped_ready_step_measures_processing_until_delivery(self):
        metrics = delivery_metrics(self.late)

        self.assertEqual(metrics["processing_minutes"], 50 * 60)
        self.assertEqual(metrics["total_minutes"], 50 * 60)
        self.assertFalse(metrics["on_time"])

    def test_open_invoice_is_late_once_promise_has_passed(self):
        early = delivery_metrics(self.open, now=self.received_at + timedelta(hours=10))
        late = delivery_metrics(self.open, now=self.received_at + timedelta(hours=49))

        self.assertIsNone(early["processing_minutes"])
        self.assertIsNone(early["total_minutes"])
        self.assertTrue(early["on_time"])
        self.assertFalse(late["on_time"])

    def test_analytics_cover_delivered_invoices_in_range(self):
        report = delivery_analytics(CLOSING_DATE, CLOSING_DATE)

        self.assertEqual(report["total_orders"], 2)
        self.assertEqual(report["on_time_orders"], 1)
        self.assertEqual(report["delayed_orders"], 1)
        self.assertEqual(report["on_time_percentage"], 50.0)
        self.assertEqual(report["avg_processing_minutes"], (180 + 3000) / 2)
        self.assertEqual(report["avg_total_minutes"], (1560 + 3000) / 2)

    def test_analytics_for_empty_range(self):
        report = delivery_analytics(date(2024, 5, 11), None)

        self.assertEqual(report["total_orders"], 0)
        self.assertEqual(report["on_time_percentage"], 0.0)
        self.assertIsNone(report["avg_processing_minutes"])
        self.assertIsNone(report["avg_total_minutes"])


class BillingApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.manager = self.user_model.objects.create_user(username="manager", password="pass1234", role="manager")
        self.clerk_user = self.user_model.objects.create_user(username="clerk", password="pass1234", role="employee")
        self.clerk = Employee.objects.create(name="Ana", user=self.clerk_user)

        PaymentMethod.objects.create(code="cash", name="Efectivo")
        PaymentMethod.objects.create(code="card", name="Tarjeta")

        Invoice.objects.create(
            invoice_number="INV-1",
            date=local_dt(CLOSING_DATE, 9),
            status=Invoice.Status.DELIVERED,
            paid=True,
            payment_method="cash",
            employee=self.clerk,
            subtotal=Decimal("42.37"),
            tax=Decimal("7.63"),
            total=Decimal("50.00"),
        )
        Invoice.objects.create(
            invoice_number="INV-2",
            date=local_dt(CLOSING_DATE, 15),
            status=Invoice.Status.READY,
            paid=False,
            subtotal=Decimal("20.00"),
            tax=Decimal("0.00"),
            total=Decimal("20.00"),
        )

    def test_daily_summary_endpoint(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/reports/daily-summary/", {"date": "2024-05-10", "opening_cash": "100.00"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["date"], "2024-05-10")
        self.assertEqual(payload["total_invoices"], 2)
        self.assertEqual(payload["delivered_invoices"], 1)
        self.assertEqual(payload["pending_invoices"], 1)
        self.assertEqual(payload["total_revenue"], "50.00")
        self.assertEqual(payload["system_cash"], "150.00")
        self.assertEqual(payload["payment_summary"]["Efectivo"], {"quantity": 1, "total": "50.00"})
        self.assertEqual(payload["payment_summary"]["Pendiente"], {"quantity": 0, "total": "0.00"})
        self.assertEqual(payload["employee_stats"], {"Ana": {"sales": 1, "total": "50.00"}})

    def test_daily_summary_requires_date(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/reports/daily-summary/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("date", response.json()["errors"])

    def test_create_cash_closure_and_fetch_by_date(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/cash-closures/",
            {"closing_date": "2024-05-10", "opening_cash": "100.00", "counted_cash": "140.00", "notes": "Faltante"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["system_cash"], "150.00")
        self.assertEqual(payload["variance"], "-10.00")
        self.assertEqual(payload["created_by_username"], "manager")
        self.assertTrue(AuditLog.objects.filter(action="cash_closure.create", entity_id=payload["id"]).exists())

        by_date = self.client.get("/api/v1/cash-closures/by-date/2024-05-10/")
        self.assertEqual(by_date.status_code, 200)
        self.assertEqual(by_date.json()["id"], payload["id"])
        self.assertEqual(by_date.json()["summary"]["payment_summary"]["Efectivo"]["total"], "50.00")

    def test_duplicate_cash_closure_returns_conflict(self):
        self.client.force_authenticate(user=self.manager)
        body = {"closing_date": "2024-05-10", "opening_cash": "0", "counted_cash": "50.00"}

        first = self.client.post("/api/v1/cash-closures/", body, format="json")
        second = self.client.post("/api/v1/cash-closures/", body, format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "duplicate_closure")
        self.assertIn("closing_date", second.json()["errors"])
        self.assertEqual(CashClosure.objects.count(), 1)

    def test_cash_closure_payload_is_validated(self):
        self.client.force_authenticate(user=self.manager)

        missing = self.client.post("/api/v1/cash-closures/", {"closing_date": "2024-05-10"}, format="json")
        negative = self.client.post(
            "/api/v1/cash-closures/", {"closing_date": "2024-05-10", "counted_cash": "-1"}, format="json"
        )
        unknown = self.client.post(
            "/api/v1/cash-closures/", {"closing_date": "2024-05-10", "counted_cash": "1", "system_cash": "9"}, format="json"
        )
        malformed = self.client.post(
            "/api/v1/cash-closures/", {"closing_date": "2024-05-10", "counted_cash": "mil"}, format="json"
        )

        self.assertEqual(missing.status_code, 400)
        self.assertIn("counted_cash", missing.json()["errors"])
        self.assertEqual(negative.status_code, 400)
        self.assertIn("counted_cash", negative.json()["errors"])
        self.assertEqual(unknown.status_code, 400)
        self.assertIn("system_cash", unknown.json()["errors"])
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(malformed.json()["code"], "parse_error")
        self.assertIn("counted_cash", malformed.json()["errors"])
        self.assertFalse(CashClosure.objects.exists())

    def test_missing_closure_by_date_is_not_found(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/cash-closures/by-date/2024-05-11/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_employee_role_cannot_close_cash(self):
        self.client.force_authenticate(user=self.clerk_user)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/cash-closures/",
                {"closing_date": "2024-05-10", "counted_cash": "50.00"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in line for line in cm.output))

    def test_invoice_list_filters_by_business_date_and_status(self):
        self.client.force_authenticate(user=self.clerk_user)

        response = self.client.get("/api/v1/invoices/", {"date": "2024-05-10", "status": "ready"})

        self.assertEqual(response.status_code, 200)
        numbers = [item["invoice_number"] for item in response.json()["results"]]
        self.assertEqual(numbers, ["INV-2"])

    def test_invoice_lifecycle_through_api(self):
        self.client.force_authenticate(user=self.clerk_user)

        created = self.client.post(
            "/api/v1/invoices/",
            {
                "invoice_number": "INV-3",
                "date": "2024-05-10T16:00:00-04:00",
                "payment_method": "cash",
                "subtotal": "100.00",
                "tax": "18.00",
                "total": "118.00",
                "status": "delivered",
            },
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        invoice_id = created.json()["id"]
        self.assertEqual(created.json()["status"], "received")
        self.assertEqual(created.json()["employee_name"], "Ana")
        self.assertTrue(AuditLog.objects.filter(action="invoice.create", entity_id=invoice_id).exists())

        delivered = self.client.post(f"/api/v1/invoices/{invoice_id}/status/", {"status": "delivered", "paid": True}, format="json")
        self.assertEqual(delivered.status_code, 200)
        self.assertEqual(delivered.json()["status"], "delivered")
        self.assertTrue(delivered.json()["paid"])
        self.assertIsNotNone(delivered.json()["delivered_at"])

        backwards = self.client.post(f"/api/v1/invoices/{invoice_id}/status/", {"status": "ready"}, format="json")
        self.assertEqual(backwards.status_code, 400)

        timestamps = self.client.get(f"/api/v1/invoices/{invoice_id}/timestamps/")
        self.assertEqual(timestamps.status_code, 200)
        rows = timestamps.json()
        self.assertEqual([row["status"] for row in rows], ["received", "delivered"])
        self.assertIsNone(rows[0]["minutes_since_previous"])
        self.assertEqual(rows[1]["previous_status"], "received")
        self.assertEqual(rows[1]["employee"], "Ana")

    def test_delivered_invoice_cannot_be_edited(self):
        self.client.force_authenticate(user=self.manager)
        invoice = Invoice.objects.get(invoice_number="INV-1")

        response = self.client.patch(f"/api/v1/invoices/{invoice.id}/", {"notes": "late fix"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"])
        invoice.refresh_from_db()
        self.assertIsNone(invoice.notes)

    def test_invoice_total_must_match_breakdown(self):
        self.client.force_authenticate(user=self.clerk_user)

        response = self.client.post(
            "/api/v1/invoices/",
            {
                "invoice_number": "INV-4",
                "date": "2024-05-10T16:00:00-04:00",
                "subtotal": "100.00",
                "tax": "18.00",
                "total": "100.00",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("total", response.json()["errors"])

    def test_payment_methods_are_managed_by_managers(self):
        self.client.force_authenticate(user=self.clerk_user)
        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.post("/api/v1/payment-methods/", {"code": "mobile_pay", "name": "Pago Móvil"}, format="json")
        self.assertEqual(denied.status_code, 403)

        self.client.force_authenticate(user=self.manager)
        created = self.client.post("/api/v1/payment-methods/", {"code": "mobile_pay", "name": "Pago Móvil"}, format="json")
        self.assertEqual(created.status_code, 201)

        listed = self.client.get("/api/v1/payment-methods/")
        self.assertEqual([item["code"] for item in listed.json()], ["cash", "card", "mobile_pay"])

    def test_form_status_change_without_paid_keeps_payment(self):
        self.client.force_authenticate(user=self.clerk_user)
        invoice = Invoice.objects.create(
            invoice_number="INV-PAID",
            date=local_dt(CLOSING_DATE, 11),
            status=Invoice.Status.READY,
            paid=True,
            payment_method="cash",
            subtotal=Decimal("30.00"),
            tax=Decimal("0.00"),
            total=Decimal("30.00"),
        )

        # Multipart body, as sent by an HTML form.
        response = self.client.post(f"/api/v1/invoices/{invoice.id}/status/", {"status": "delivered"})

        self.assertEqual(response.status_code, 200)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.Status.DELIVERED)
        self.assertTrue(invoice.paid)

    def test_oversized_cash_amount_is_rejected(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/cash-closures/",
            {"closing_date": "2024-05-10", "counted_cash": "99999999999.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("counted_cash", response.json()["errors"])
        self.assertFalse(CashClosure.objects.exists())

    def test_delivered_invoice_cannot_be_deleted(self):
        self.client.force_authenticate(user=self.manager)
        delivered = Invoice.objects.get(invoice_number="INV-1")
        ready = Invoice.objects.get(invoice_number="INV-2")

        blocked = self.client.delete(f"/api/v1/invoices/{delivered.id}/")
        allowed = self.client.delete(f"/api/v1/invoices/{ready.id}/")

        self.assertEqual(blocked.status_code, 400)
        self.assertIn("status", blocked.json()["errors"])
        self.assertTrue(Invoice.objects.filter(id=delivered.id).exists())
        self.assertEqual(allowed.status_code, 204)
        self.assertFalse(Invoice.objects.filter(id=ready.id).exists())

    @override_settings(DELIVERY_PROMISE_HOURS=24)
    def test_delivery_metrics_endpoint(self):
        self.client.force_authenticate(user=self.clerk_user)
        received_at = local_dt(CLOSING_DATE, 8)
        invoice = Invoice.objects.create(
            invoice_number="INV-TRACK",
            date=received_at,
            subtotal=Decimal("15.00"),
            tax=Decimal("0.00"),
            total=Decimal("15.00"),
        )
        InvoiceStatusChange.objects.create(invoice=invoice, status=Invoice.Status.RECEIVED, changed_at=received_at)
        change_invoice_status(invoice, Invoice.Status.READY, changed_at=received_at + timedelta(hours=2))
        change_invoice_status(invoice, Invoice.Status.DELIVERED, paid=True, changed_at=received_at + timedelta(hours=30))

        response = self.client.get(f"/api/v1/invoices/{invoice.id}/delivery-metrics/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["invoice_id"], str(invoice.id))
        self.assertEqual(payload["processing_minutes"], 120)
        self.assertEqual(payload["total_minutes"], 30 * 60)
        self.assertEqual(payload["estimated_delivery_hours"], 24)
        self.assertFalse(payload["on_time"])

    @override_settings(DELIVERY_PROMISE_HOURS=48)
    def test_delivery_analytics_endpoint(self):
        self.client.force_authenticate(user=self.manager)
        received_at = local_dt(CLOSING_DATE, 8)
        invoice = Invoice.objects.create(
            invoice_number="INV-FAST",
            date=received_at,
            subtotal=Decimal("15.00"),
            tax=Decimal("0.00"),
            total=Decimal("15.00"),
        )
        InvoiceStatusChange.objects.create(invoice=invoice, status=Invoice.Status.RECEIVED, changed_at=received_at)
        change_invoice_status(invoice, Invoice.Status.DELIVERED, paid=True, changed_at=received_at + timedelta(hours=5))

        response = self.client.get(
            "/api/v1/reports/delivery-analytics/", {"date_from": "2024-05-10", "date_to": "2024-05-10"}
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        # INV-1 from setUp is delivered too, without recorded status changes.
        self.assertEqual(payload["date_from"], "2024-05-10")
        self.assertEqual(payload["total_orders"], 2)
        self.assertEqual(payload["estimated_delivery_hours"], 48)

        reversed_range = self.client.get(
            "/api/v1/reports/delivery-analytics/", {"date_from": "2024-05-11", "date_to": "2024-05-10"}
        )
        self.assertEqual(reversed_range.status_code, 400)
        self.assertIn("date_to", reversed_range.json()["errors"])

    def test_employee_role_cannot_read_delivery_analytics(self):
        self.client.force_authenticate(user=self.clerk_user)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/reports/delivery-analytics/")

        self.assertEqual(response.status_code, 403)
