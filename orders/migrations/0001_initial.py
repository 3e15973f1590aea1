import django.db.models.deletion
from django.db import migrations, models


STATUS_CHOICES = [
    ("created", "Created"),
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("pending_review", "Pending review"),
    ("expired", "Expired"),
    ("cancelled", "Cancelled"),
    ("denied", "Denied"),
    ("refunded", "Refunded"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ("order_id", models.CharField(max_length=50, unique=True)),
                ("amount", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="IDR", max_length=8)),
                (
                    "status",
                    models.CharField(
                        choices=STATUS_CHOICES,
                        default="created",
                        max_length=24,
                    ),
                ),
                ("version", models.PositiveIntegerField(default=0)),
                ("customer_name", models.CharField(blank=True, max_length=255)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                ("snap_token", models.CharField(blank=True, max_length=255)),
                ("redirect_url", models.URLField(blank=True, max_length=500)),
                ("last_vendor_status", models.CharField(blank=True, max_length=32)),
                ("last_fraud_status", models.CharField(blank=True, max_length=32)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="NotificationRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ("provider", models.CharField(default="midtrans", max_length=64)),
                ("event_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("order_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("transaction_status", models.CharField(blank=True, max_length=32)),
                ("fraud_status", models.CharField(blank=True, max_length=32)),
                ("payload", models.JSONField(blank=True, null=True)),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("applied", "Applied"),
                            ("unchanged", "Unchanged"),
                            ("duplicate", "Duplicate"),
                            ("rejected", "Rejected"),
                            ("failed", "Failed"),
                        ],
                        max_length=16,
                    ),
                ),
                ("detail", models.TextField(blank=True)),
                ("received_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-received_at"],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ("provider", models.CharField(default="midtrans", max_length=64)),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("applied_status", models.CharField(choices=STATUS_CHOICES, max_length=24)),
                ("applied_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(  # noqa
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="orders.order",
                        to_field="order_id",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "ledger entries",
            },
        ),
    ]
