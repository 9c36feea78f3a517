from django.urls import path
from .views import DailySalesReportView, OrdersCollectionView, OrderStatusView, RetrieveOrderView

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("reports/daily/", DailySalesReportView.as_view(), name="orders-daily-report"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
]
