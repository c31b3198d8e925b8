import logging

from django.conf import settings
from django.core.mail import send_mail

from common.utils import format_money

logger = logging.getLogger(__name__)


def _cash_closure_message(closure):
    prefix = settings.CURRENCY_PREFIX
    summary = closure.summary or {}
    lines = [
        f"Cash closure for {closure.closing_date.isoformat()}",
        "",
        f"Invoices: {summary.get('total_invoices', 0)}",
        f"Delivered: {summary.get('delivered_invoices', 0)}",
        f"Pending: {summary.get('pending_invoices', 0)}",
        "",
        "Payment methods:",
    ]
    for name, bucket in (summary.get("payment_summary") or {}).items():
        if bucket.get("quantity"):
            lines.append(f"  {name} ({bucket['quantity']}): {format_money(bucket['total'], prefix)}")
    lines += [
        "",
        f"Total revenue: {format_money(summary.get('total_revenue', '0'), prefix)}",
        f"Opening cash: {format_money(closure.opening_cash, prefix)}",
        f"System cash: {format_money(closure.system_cash, prefix)}",
        f"Counted cash: {format_money(closure.counted_cash, prefix)}",
        f"Variance: {format_money(closure.variance, prefix)}",
    ]
    if closure.notes:
        lines += ["", f"Notes: {closure.notes}"]
    return "\n".join(lines)


def send_cash_closure_notification(closure):
    """Email the closure figures to CASH_CLOSURE_NOTIFY_EMAILS. Returns True when sent."""
    recipients = list(getattr(settings, "CASH_CLOSURE_NOTIFY_EMAILS", []))
    if not recipients:
        return False

    try:
        send_mail(
            subject=f"Cash closure {closure.closing_date.isoformat()}",
            message=_cash_closure_message(closure),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
            fail_silently=False,
        )
    except Exception:
        logger.exception(
            "cash_closure_email_send_failed",
            extra={"closing_date": closure.closing_date.isoformat(), "recipients": recipients},
        )
        return False
    return True
