"""Daily cash-closure aggregation.

Everything here is a pure function of already-fetched rows: invoices, payment
methods and employees may be dicts (``QuerySet.values()`` rows, decoded JSON)
or model instances exposing the same attribute names. Monetary amounts are
handled as ``Decimal`` quantized to cents; malformed amounts abort the whole
aggregation with ``ParseError``.
"""
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from rest_framework.exceptions import ParseError, ValidationError

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a DecimalField(max_digits=12, decimal_places=2) column holds.
MAX_MONEY_AMOUNT = Decimal("9999999999.99")

CASH_METHOD_CODE = "cash"
UNKNOWN_METHOD_LABEL = "Pendiente"
UNKNOWN_EMPLOYEE_LABEL = "Desconocido"

DELIVERED_STATUS = "delivered"
CANCELLED_STATUS = "cancelled"


def _field(row, name):
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _parse_failure(field, value):
    return ParseError({field: [f"Invalid monetary amount: {value!r}."]})


def parse_money(value, field="amount"):
    """Parse ``value`` into a cent-quantized ``Decimal``.

    Accepts ``Decimal``, ``int``, ``float`` (through its shortest repr) and
    numeric strings. Anything else, including ``None``, blanks and non-finite
    numbers, raises ``ParseError`` keyed by ``field``.
    """
    if value is None or isinstance(value, bool):
        raise _parse_failure(field, value)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise _parse_failure(field, value)
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise _parse_failure(field, value)
    else:
        raise _parse_failure(field, value)

    if not amount.is_finite():
        raise _parse_failure(field, value)

    try:
        return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise _parse_failure(field, value)


def ensure_storable(amount, field="amount"):
    if abs(amount) > MAX_MONEY_AMOUNT:
        raise ValidationError({field: [f"Amount must not exceed {MAX_MONEY_AMOUNT} in absolute value."]})
    return amount


def is_delivered(invoice):
    return _field(invoice, "status") == DELIVERED_STATUS and bool(_field(invoice, "paid"))


def is_pending(invoice):
    return not _field(invoice, "paid") and _field(invoice, "status") != CANCELLED_STATUS


def _method_names_by_code(payment_methods):
    names = {}
    for method in payment_methods:
        names.setdefault(str(_field(method, "code")), _field(method, "name"))
    return names


def _employee_names_by_id(employees):
    names = {}
    for employee in employees:
        names.setdefault(str(_field(employee, "id")), _field(employee, "name"))
    return names


def compute_daily_summary(invoices, payment_methods, employees):
    invoices = list(invoices)
    payment_methods = list(payment_methods)
    method_names = _method_names_by_code(payment_methods)
    employee_names = _employee_names_by_id(employees)

    # Parse every amount up front so a bad row aborts before anything is summed.
    # total is mandatory; an absent subtotal or tax breakdown counts as zero.
    parsed = []
    for index, invoice in enumerate(invoices):
        invoice_id = _field(invoice, "id")
        prefix = f"invoices[{invoice_id if invoice_id is not None else index}]"
        amounts = {}
        for name in ("subtotal", "tax", "total"):
            value = _field(invoice, name)
            if value is None and name != "total":
                amounts[name] = ZERO
                continue
            amounts[name] = parse_money(value, f"{prefix}.{name}")
        parsed.append((invoice, amounts))

    delivered = [(invoice, amounts) for invoice, amounts in parsed if is_delivered(invoice)]
    pending_count = sum(1 for invoice, _ in parsed if is_pending(invoice))

    payment_summary = {}
    for method in payment_methods:
        payment_summary.setdefault(_field(method, "name"), {"quantity": 0, "total": ZERO})
    payment_summary.setdefault(UNKNOWN_METHOD_LABEL, {"quantity": 0, "total": ZERO})

    employee_stats = {}
    total_revenue = ZERO
    total_subtotal = ZERO
    total_tax = ZERO

    for invoice, amounts in delivered:
        code = _field(invoice, "payment_method")
        method_name = method_names.get(str(code), UNKNOWN_METHOD_LABEL) if code else UNKNOWN_METHOD_LABEL
        bucket = payment_summary[method_name]
        bucket["quantity"] += 1
        bucket["total"] += amounts["total"]

        employee_id = _field(invoice, "employee_id")
        employee_name = UNKNOWN_EMPLOYEE_LABEL
        if employee_id is not None:
            employee_name = employee_names.get(str(employee_id)) or UNKNOWN_EMPLOYEE_LABEL
        stats = employee_stats.setdefault(employee_name, {"sales": 0, "total": ZERO})
        stats["sales"] += 1
        stats["total"] += amounts["total"]

        total_revenue += amounts["total"]
        total_subtotal += amounts["subtotal"]
        total_tax += amounts["tax"]

    return {
        "total_invoices": len(invoices),
        "delivered_invoices": len(delivered),
        "pending_invoices": pending_count,
        "total_revenue": total_revenue,
        "total_subtotal": total_subtotal,
        "total_tax": total_tax,
        "payment_summary": payment_summary,
        "employee_stats": employee_stats,
    }


def cash_method_name(payment_methods):
    for method in payment_methods:
        if _field(method, "code") == CASH_METHOD_CODE:
            return _field(method, "name")
    return None


def compute_system_cash(summary, payment_methods, opening_cash):
    """Opening float plus the day's cash-method revenue."""
    opening = parse_money(opening_cash, "opening_cash")
    name = cash_method_name(payment_methods)
    if name is None:
        return opening
    cash_bucket = summary["payment_summary"].get(name)
    if cash_bucket is None:
        return opening
    return opening + cash_bucket["total"]


def compute_variance(counted_cash, system_cash):
    return parse_money(counted_cash, "counted_cash") - parse_money(system_cash, "system_cash")
