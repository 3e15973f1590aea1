from django.contrib import admin
from . import models


@admin.register(models.Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_id", "customer_name", "status", "amount",
        "currency", "version", "updated_at"
    )
    list_filter = ("status", "created_at")
    search_fields = ("order_id", "customer_name", "customer_email")
    # Status only changes through gateway notifications
    readonly_fields = (
        "status", "version", "last_vendor_status", "last_fraud_status",
        "snap_token", "redirect_url", "created_at", "updated_at"
    )


@admin.register(models.LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = ("event_id", "order", "applied_status", "applied_at")
    list_filter = ("provider", "applied_status")
    search_fields = ("event_id", "order__order_id")


@admin.register(models.NotificationRecord)
class NotificationRecordAdmin(admin.ModelAdmin):
    list_display = (
        "order_id", "transaction_status", "fraud_status",
        "outcome", "received_at"
    )
    list_filter = ("outcome", "transaction_status")
    search_fields = ("order_id", "event_id")
