from django.urls import path
from .views import LowStockView, ProductCollectionView, ProductDetailView, ProductStockView

app_name = "catalog"

urlpatterns = [
    path("", ProductCollectionView.as_view(), name="products-collection"),  # GET list / POST create
    path("low-stock/", LowStockView.as_view(), name="products-low-stock"),
    path("<uuid:pid>/", ProductDetailView.as_view(), name="products-detail"),
    path("<uuid:pid>/stock/", ProductStockView.as_view(), name="products-stock"),
]
