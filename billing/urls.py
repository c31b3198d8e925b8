from django.urls import path
from rest_framework.routers import DefaultRouter

from billing.views import (
    CashClosureViewSet,
    CustomerViewSet,
    DailySummaryView,
    DeliveryAnalyticsView,
    InvoiceViewSet,
    PaymentMethodViewSet,
)

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"payment-methods", PaymentMethodViewSet, basename="payment-method")
router.register(r"invoices", InvoiceViewSet, basename="invoice")
router.register(r"cash-closures", CashClosureViewSet, basename="cash-closure")

urlpatterns = router.urls + [
    path("reports/daily-summary/", DailySummaryView.as_view(), name="report-daily-summary"),
    path("reports/delivery-analytics/", DeliveryAnalyticsView.as_view(), name="report-delivery-analytics"),
]
