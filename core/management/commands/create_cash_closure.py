from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from rest_framework.exceptions import APIException

from billing.services import create_cash_closure


class Command(BaseCommand):
    help = "Close the cash register for a business date and print the reconciliation."

    def add_arguments(self, parser):
        parser.add_argument("--date", dest="closing_date", help="Closing date YYYY-MM-DD (default: today).")
        parser.add_argument("--opening-cash", dest="opening_cash", default="0", help="Opening float (default: 0).")
        parser.add_argument("--counted-cash", dest="counted_cash", required=True, help="Physically counted cash.")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.add_argument("--username", dest="username", default=None, help="User recorded as creator.")

    def handle(self, *args, **options):
        closing_date = options.get("closing_date") or timezone.localdate()

        created_by = None
        username = options.get("username")
        if username:
            created_by = get_user_model().objects.filter(username=username).first()
            if created_by is None:
                raise CommandError(f"User {username!r} not found.")

        try:
            closure = create_cash_closure(
                closing_date,
                options["opening_cash"],
                options["counted_cash"],
                notes=options.get("notes"),
                created_by=created_by,
            )
        except APIException as exc:
            raise CommandError(f"{exc.__class__.__name__}: {exc.detail}") from exc

        summary = closure.summary
        self.stdout.write(self.style.SUCCESS(f"Cash closure {closure.closing_date.isoformat()} created."))
        self.stdout.write(
            f"Invoices: {summary['total_invoices']} | Delivered: {summary['delivered_invoices']} | Pending: {summary['pending_invoices']}"
        )
        self.stdout.write(f"Total revenue: {summary['total_revenue']}")
        self.stdout.write(f"System cash: {closure.system_cash} | Counted: {closure.counted_cash} | Variance: {closure.variance}")
