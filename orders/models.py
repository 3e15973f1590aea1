from django.db import models


class Order(models.Model):
	"""Locally tracked payment order.

	Only the reconciler changes `status`, always through a conditional update
	on `version` so that concurrent notifications are linearised per order.
	Orders are never deleted, only transitioned.
	"""
	STATUS_CREATED = "created"
	STATUS_PENDING = "pending"
	STATUS_PAID = "paid"
	STATUS_PENDING_REVIEW = "pending_review"
	STATUS_EXPIRED = "expired"
	STATUS_CANCELLED = "cancelled"
	STATUS_DENIED = "denied"
	STATUS_REFUNDED = "refunded"

	STATUS_CHOICES = [
		(STATUS_CREATED, "Created"),
		(STATUS_PENDING, "Pending"),
		(STATUS_PAID, "Paid"),
		(STATUS_PENDING_REVIEW, "Pending review"),
		(STATUS_EXPIRED, "Expired"),
		(STATUS_CANCELLED, "Cancelled"),
		(STATUS_DENIED, "Denied"),
		(STATUS_REFUNDED, "Refunded"),
	]

	TERMINAL_STATUSES = (
		STATUS_PAID,
		STATUS_EXPIRED,
		STATUS_CANCELLED,
		STATUS_DENIED,
		STATUS_REFUNDED,
	)

	# Caller-assigned, also used as the gateway order id
	order_id = models.CharField(max_length=50, unique=True)
	# Whole units as sent to the gateway as gross_amount
	amount = models.PositiveBigIntegerField()
	currency = models.CharField(max_length=8, default="IDR")
	status = models.CharField(max_length=24, choices=STATUS_CHOICES, default=STATUS_CREATED)
	version = models.PositiveIntegerField(default=0)

	customer_name = models.CharField(max_length=255, blank=True)
	customer_email = models.EmailField(blank=True)
	# Snap token and redirect url returned when the transaction was created
	snap_token = models.CharField(max_length=255, blank=True)
	redirect_url = models.URLField(max_length=500, blank=True)
	# Authoritative gateway values behind the latest transition
	last_vendor_status = models.CharField(max_length=32, blank=True)
	last_fraud_status = models.CharField(max_length=32, blank=True)

	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	def __str__(self):
		return f"{self.order_id} ({self.status})"

	@property
	def is_terminal(self):
		return self.status in self.TERMINAL_STATUSES


class LedgerEntry(models.Model):
	"""Notification events already applied to an order.

	The unique constraint on `event_id` is what makes recording atomic: two
	deliveries of the same event cannot both insert a row.
	"""
	provider = models.CharField(max_length=64, default="midtrans")
	event_id = models.CharField(max_length=255, unique=True)
	order = models.ForeignKey(
		Order,
		to_field="order_id",
		on_delete=models.PROTECT,
		related_name="ledger_entries",
	)
	applied_status = models.CharField(max_length=24, choices=Order.STATUS_CHOICES)
	applied_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		verbose_name_plural = "ledger entries"

	def __str__(self):
		return f"{self.provider}:{self.event_id} -> {self.applied_status}"


class NotificationRecord(models.Model):
	"""Audit trail of every inbound gateway notification and how it ended."""
	OUTCOME_APPLIED = "applied"
	OUTCOME_UNCHANGED = "unchanged"
	OUTCOME_DUPLICATE = "duplicate"
	OUTCOME_REJECTED = "rejected"
	OUTCOME_FAILED = "failed"

	OUTCOME_CHOICES = [
		(OUTCOME_APPLIED, "Applied"),
		(OUTCOME_UNCHANGED, "Unchanged"),
		(OUTCOME_DUPLICATE, "Duplicate"),
		(OUTCOME_REJECTED, "Rejected"),
		(OUTCOME_FAILED, "Failed"),
	]

	provider = models.CharField(max_length=64, default="midtrans")
	event_id = models.CharField(max_length=255, blank=True, db_index=True)
	order_id = models.CharField(max_length=255, blank=True, db_index=True)
	transaction_status = models.CharField(max_length=32, blank=True)
	fraud_status = models.CharField(max_length=32, blank=True)
	payload = models.JSONField(blank=True, null=True)
	outcome = models.CharField(max_length=16, choices=OUTCOME_CHOICES)
	detail = models.TextField(blank=True)
	received_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ["-received_at"]

	def __str__(self):
		return f"{self.order_id} {self.transaction_status} ({self.outcome})"
