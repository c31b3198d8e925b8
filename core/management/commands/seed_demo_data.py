from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from billing.models import Customer, Invoice, PaymentMethod
from billing.services import record_initial_status
from core.models import Employee

PAYMENT_METHODS = [
    ("cash", "Efectivo"),
    ("card", "Tarjeta"),
    ("transfer", "Transferencia"),
    ("mobile_pay", "Pago Móvil"),
]

# (number, status, paid, method, subtotal)
DEMO_INVOICES = [
    ("DEMO-0001", Invoice.Status.DELIVERED, True, "cash", Decimal("250.00")),
    ("DEMO-0002", Invoice.Status.DELIVERED, True, "card", Decimal("480.00")),
    ("DEMO-0003", Invoice.Status.READY, False, "", Decimal("150.00")),
    ("DEMO-0004", Invoice.Status.IN_PROCESS, False, "", Decimal("320.00")),
    ("DEMO-0005", Invoice.Status.CANCELLED, False, "", Decimal("90.00")),
]
TAX_RATE = Decimal("0.18")


class Command(BaseCommand):
    help = "Seed demo laundry data (payment methods, employees, customers, today's invoices) for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        for code, name in PAYMENT_METHODS:
            PaymentMethod.objects.get_or_create(code=code, defaults={"name": name})

        manager_user, manager_created = User.objects.get_or_create(
            username="manager",
            defaults={
                "email": "manager@example.com",
                "role": User.Role.MANAGER,
                "is_active": True,
            },
        )
        if manager_created:
            manager_user.set_password("manager1234")
            manager_user.save(update_fields=["password"])

        employee_user, employee_created = User.objects.get_or_create(
            username="ana",
            defaults={
                "email": "ana@example.com",
                "role": User.Role.EMPLOYEE,
                "is_active": True,
            },
        )
        if employee_created:
            employee_user.set_password("ana12345")
            employee_user.save(update_fields=["password"])

        ana, _ = Employee.objects.get_or_create(name="Ana", defaults={"user": employee_user})
        luis, _ = Employee.objects.get_or_create(name="Luis")
        customer, _ = Customer.objects.get_or_create(name="Cliente Demo", defaults={"phone": "809-555-0100"})

        now = timezone.now()
        created_count = 0
        for index, (number, invoice_status, paid, method, subtotal) in enumerate(DEMO_INVOICES):
            tax = (subtotal * TAX_RATE).quantize(Decimal("0.01"))
            invoice, created = Invoice.objects.get_or_create(
                invoice_number=number,
                defaults={
                    "customer": customer,
                    "employee": ana if index % 2 == 0 else luis,
                    "date": now,
                    "status": invoice_status,
                    "paid": paid,
                    "payment_method": method,
                    "subtotal": subtotal,
                    "tax": tax,
                    "total": subtotal + tax,
                    "delivered_at": now if invoice_status == Invoice.Status.DELIVERED else None,
                },
            )
            if created:
                record_initial_status(invoice, employee=invoice.employee)
                created_count += 1

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: manager/manager1234, ana/ana12345")
        self.stdout.write(f"Invoices created today: {created_count}")
