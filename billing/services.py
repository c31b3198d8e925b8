import logging
from datetime import date, datetime, time, timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ParseError, ValidationError

from billing.closure import (
    ZERO,
    compute_daily_summary,
    compute_system_cash,
    compute_variance,
    ensure_storable,
    parse_money,
)
from billing.models import CashClosure, Invoice, InvoiceStatusChange, PaymentMethod
from common.exceptions import DuplicateClosureError
from common.notifications import send_cash_closure_notification
from common.utils import to_json_compatible
from core.models import Employee

logger = logging.getLogger(__name__)

INVOICE_SUMMARY_FIELDS = ("id", "status", "paid", "payment_method", "employee_id", "subtotal", "tax", "total")

STATUS_FLOW = [
    Invoice.Status.RECEIVED,
    Invoice.Status.IN_PROCESS,
    Invoice.Status.READY,
    Invoice.Status.DELIVERED,
]
FINAL_STATUSES = {Invoice.Status.DELIVERED, Invoice.Status.CANCELLED}


def coerce_date(value, field="closing_date"):
    if isinstance(value, datetime):
        return timezone.localtime(value).date() if timezone.is_aware(value) else value.date()
    if isinstance(value, date):
        return value
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_date(value.strip())
        except ValueError:
            parsed = None
    if parsed is None:
        raise ParseError({field: [f"Invalid date: {value!r}. Use YYYY-MM-DD."]})
    return parsed


def day_bounds(closing_date, tz=None):
    """Half-open [start, end) datetimes covering ``closing_date`` in the business time zone."""
    tz = tz or timezone.get_current_timezone()
    start = datetime.combine(closing_date, time.min).replace(tzinfo=tz)
    return start, start + timedelta(days=1)


def invoices_for_date(closing_date):
    start, end = day_bounds(closing_date)
    return (
        Invoice.objects.filter(date__gte=start, date__lt=end)
        .order_by("date", "invoice_number")
        .values(*INVOICE_SUMMARY_FIELDS)
    )


def load_closure_inputs(closing_date):
    # The three reads are independent; none of them feeds the other queries.
    invoices = list(invoices_for_date(closing_date))
    payment_methods = list(PaymentMethod.objects.order_by("id").values("code", "name"))
    employees = list(Employee.objects.values("id", "name"))
    return invoices, payment_methods, employees


def build_daily_report(closing_date, opening_cash=ZERO):
    """Daily summary for ``closing_date`` plus the system cash for ``opening_cash``."""
    closing_date = coerce_date(closing_date)
    opening = parse_money(opening_cash, "opening_cash")
    invoices, payment_methods, employees = load_closure_inputs(closing_date)
    summary = compute_daily_summary(invoices, payment_methods, employees)
    return {
        "date": closing_date,
        "opening_cash": opening,
        "system_cash": compute_system_cash(summary, payment_methods, opening),
        **summary,
    }


def get_cash_closure(closing_date):
    return CashClosure.objects.filter(closing_date=coerce_date(closing_date)).first()


def _validate_cash_amounts(opening_cash, counted_cash):
    if counted_cash is None or (isinstance(counted_cash, str) and not counted_cash.strip()):
        raise ValidationError({"counted_cash": ["Counted cash is required."]})

    counted = parse_money(counted_cash, "counted_cash")
    ensure_storable(counted, "counted_cash")
    if counted < 0:
        raise ValidationError({"counted_cash": ["Counted cash cannot be negative."]})

    opening = ZERO if opening_cash is None else parse_money(opening_cash, "opening_cash")
    ensure_storable(opening, "opening_cash")
    if opening < 0:
        raise ValidationError({"opening_cash": ["Opening cash cannot be negative."]})
    return opening, counted


def create_cash_closure(closing_date, opening_cash, counted_cash, notes=None, created_by=None):
    """Persist the closure for ``closing_date``; at most one closure exists per date."""
    closing_date = coerce_date(closing_date)
    opening, counted = _validate_cash_amounts(opening_cash, counted_cash)

    if CashClosure.objects.filter(closing_date=closing_date).exists():
        logger.warning("cash_closure_duplicate_rejected", extra={"closing_date": closing_date.isoformat()})
        raise DuplicateClosureError(closing_date)

    report = build_daily_report(closing_date, opening)
    system_cash = report["system_cash"]
    variance = compute_variance(counted, system_cash)
    ensure_storable(system_cash, "system_cash")
    ensure_storable(variance, "variance")

    try:
        with transaction.atomic():
            closure = CashClosure.objects.create(
                closing_date=closing_date,
                opening_cash=opening,
                counted_cash=counted,
                system_cash=system_cash,
                variance=variance,
                notes=notes or None,
                summary=to_json_compatible(report),
                created_by=created_by,
            )
    except IntegrityError:
        logger.warning("cash_closure_duplicate_rejected", extra={"closing_date": closing_date.isoformat()})
        raise DuplicateClosureError(closing_date)

    logger.info(
        "cash_closure_created",
        extra={
            "closing_date": closing_date.isoformat(),
            "system_cash": str(system_cash),
            "variance": str(variance),
        },
    )
    transaction.on_commit(lambda: send_cash_closure_notification(closure))
    return closure


def record_initial_status(invoice, employee=None):
    return InvoiceStatusChange.objects.create(
        invoice=invoice,
        status=invoice.status,
        previous_status=None,
        employee=employee,
        changed_at=invoice.created_at or timezone.now(),
    )


def validate_status_transition(current, new_status):
    if new_status not in Invoice.Status.values:
        raise ValidationError({"status": [f"Unknown status: {new_status!r}."]})
    if current in FINAL_STATUSES:
        raise ValidationError({"status": [f"Invoices that are {current} cannot change status."]})
    if new_status == current:
        raise ValidationError({"status": [f"Invoice is already {current}."]})
    if new_status == Invoice.Status.CANCELLED:
        return
    if STATUS_FLOW.index(new_status) < STATUS_FLOW.index(current):
        raise ValidationError({"status": [f"Cannot move an invoice back from {current} to {new_status}."]})


@transaction.atomic
def change_invoice_status(invoice, new_status, employee=None, paid=None, changed_at=None):
    previous = invoice.status
    validate_status_transition(previous, new_status)
    changed_at = changed_at or timezone.now()

    invoice.status = new_status
    update_fields = ["status", "updated_at"]
    if paid is not None:
        invoice.paid = paid
        update_fields.append("paid")
    if new_status == Invoice.Status.DELIVERED:
        invoice.delivered_at = changed_at
        update_fields.append("delivered_at")
    invoice.save(update_fields=update_fields)

    change = InvoiceStatusChange.objects.create(
        invoice=invoice,
        status=new_status,
        previous_status=previous,
        employee=employee,
        changed_at=changed_at,
    )
    logger.info(
        "invoice_status_changed",
        extra={
            "invoice_id": str(invoice.id),
            "status": new_status,
            "previous_status": previous,
            "employee_id": str(employee.id) if employee else None,
        },
    )
    return change


def _minutes_between(start, end):
    if start is None or end is None:
        return None
    return int((end - start).total_seconds() // 60)


def invoice_timestamps(invoice):
    rows = []
    previous_at = None
    for change in invoice.status_changes.select_related("employee").order_by("changed_at"):
        minutes = _minutes_between(previous_at, change.changed_at)
        rows.append(
            {
                "id": change.id,
                "status": change.status,
                "previous_status": change.previous_status,
                "employee": change.employee.name if change.employee else None,
                "changed_at": change.changed_at,
                "minutes_since_previous": minutes,
            }
        )
        previous_at = change.changed_at
    return rows


def _first_change_at(changes, status):
    for change in changes:
        if change.status == status:
            return change.changed_at
    return None


def delivery_metrics(invoice, now=None):
    """Turnaround of one invoice measured from its recorded status changes.

    Processing runs from reception until the order is ready (or delivered when
    the ready step was skipped); total time runs until delivery. An invoice
    still in the shop is on time while its elapsed time is within the promise.
    """
    promise_hours = settings.DELIVERY_PROMISE_HOURS
    # sorted() keeps prefetched status_changes usable.
    changes = sorted(invoice.status_changes.all(), key=lambda change: change.changed_at)
    started_at = changes[0].changed_at if changes else invoice.created_at
    ready_at = _first_change_at(changes, Invoice.Status.READY)
    delivered_at = _first_change_at(changes, Invoice.Status.DELIVERED) or invoice.delivered_at

    total_minutes = _minutes_between(started_at, delivered_at)
    elapsed = total_minutes
    if elapsed is None:
        elapsed = _minutes_between(started_at, now or timezone.now())

    return {
        "invoice_id": invoice.id,
        "status": invoice.status,
        "processing_minutes": _minutes_between(started_at, ready_at or delivered_at),
        "total_minutes": total_minutes,
        "estimated_delivery_hours": promise_hours,
        "on_time": elapsed <= promise_hours * 60,
    }


def _average(values):
    if not values:
        return None
    return round(sum(values) / len(values), 1)


def delivery_analytics(date_from=None, date_to=None):
    """Aggregate turnaround of delivered invoices whose business date is in range."""
    queryset = Invoice.objects.filter(status=Invoice.Status.DELIVERED).prefetch_related("status_changes")
    if date_from:
        start, _ = day_bounds(coerce_date(date_from, field="date_from"))
        queryset = queryset.filter(date__gte=start)
    if date_to:
        _, end = day_bounds(coerce_date(date_to, field="date_to"))
        queryset = queryset.filter(date__lt=end)

    metrics = [delivery_metrics(invoice) for invoice in queryset]
    total_orders = len(metrics)
    on_time_orders = sum(1 for item in metrics if item["on_time"])
    return {
        "date_from": date_from,
        "date_to": date_to,
        "total_orders": total_orders,
        "on_time_orders": on_time_orders,
        "delayed_orders": total_orders - on_time_orders,
        "on_time_percentage": round(on_time_orders * 100 / total_orders, 1) if total_orders else 0.0,
        "avg_processing_minutes": _average(
            [item["processing_minutes"] for item in metrics if item["processing_minutes"] is not None]
        ),
        "avg_total_minutes": _average([item["total_minutes"] for item in metrics if item["total_minutes"] is not None]),
        "estimated_delivery_hours": settings.DELIVERY_PROMISE_HOURS,
    }
