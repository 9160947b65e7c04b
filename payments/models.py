from django.db import models
import uuid


class Transaction(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = (Status.SUCCESS, Status.FAILED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, db_index=True)

    # Ours, supplied by the caller at initiation
    reference = models.CharField(max_length=100, unique=True, db_index=True)

    # PesaFlux identifiers; only the request id is known at initiation
    transaction_request_id = models.CharField(max_length=100, unique=True, db_index=True)
    merchant_request_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    checkout_request_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    transaction_id = models.CharField(max_length=100, null=True, blank=True, db_index=True)

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=10, default="KES")
    phone = models.CharField(max_length=15, db_index=True)  # 2547XXXXXXXX
    email = models.EmailField()

    status = models.CharField(
        max_length=10, choices=Status.choices, default=Status.PENDING, db_index=True
    )
    result_code = models.CharField(max_length=16, null=True, blank=True)
    result_description = models.CharField(max_length=255, null=True, blank=True)
    receipt_number = models.CharField(max_length=100, null=True, blank=True)
    transaction_date = models.CharField(max_length=50, null=True, blank=True)

    gateway_response = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"{self.phone} - {self.reference} - {self.status}"
