from django.urls import path

from . import api
from . import views
from .webhooks import midtrans_notification


urlpatterns = [
    path("", views.index, name="orders-index"),
    path("status", views.health, name="orders-health"),
    path(
        "create-transaction",
        api.CreateTransactionView.as_view(),
        name="orders-create-transaction",
    ),
    path(
        "check-transaction/<str:order_id>",
        api.CheckTransactionView.as_view(),
        name="orders-check-transaction",
    ),
    path("notification", midtrans_notification, name="orders-notification"),
    path("webhook", midtrans_notification, name="orders-webhook"),
]
