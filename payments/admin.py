from django.contrib import admin
from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("reference", "phone", "amount", "status", "receipt_number", "created_at")
    list_filter = ("status",)
    search_fields = (
        "reference",
        "phone",
        "transaction_request_id",
        "merchant_request_id",
        "checkout_request_id",
        "receipt_number",
    )
    readonly_fields = ("gateway_response", "created_at", "updated_at", "completed_at")
