from django.urls import path

from . import views

app_name = "stockkeeper"

urlpatterns = [
    path("input", views.allocate, name="allocate"),
    path("count", views.count, name="count"),
    path("stock-check", views.stock_check, name="stock_check"),
]
