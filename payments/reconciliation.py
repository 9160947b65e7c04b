"""
Status reconciliation.

Two paths write the outcome of a push onto the stored Transaction: the
gateway's webhook and an explicit status query against the gateway. Both
go through ``_apply_outcome`` so that a record reaches a terminal state
once and stays there. The poll path only reads.
"""
import logging
from functools import partial

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .models import Transaction
from .serializers import TransactionStatusSerializer, parse_code

logger = logging.getLogger(__name__)

SUCCESS_CODES = (0, 200)
PENDING_GATEWAY_STATUSES = {"pending", "processing", "initiated", "queued"}
GATEWAY_IDENTIFIERS = ("merchant_request_id", "checkout_request_id", "transaction_id")


def status_for_response_code(code):
    """0 is success, the cancellation codes are cancelled, everything else failed."""
    if code == 0:
        return Transaction.Status.SUCCESS
    if code in settings.PAYMENT_CANCELLATION_CODES:
        return Transaction.Status.CANCELLED
    return Transaction.Status.FAILED


def pending_payload(request_id):
    payload = {field: None for field in TransactionStatusSerializer.Meta.fields}
    payload.update(
        {
            "request_id": request_id,
            "status": Transaction.Status.PENDING.value,
            "description": "Waiting for payment confirmation.",
        }
    )
    return payload


def get_status_payload(request_id):
    """
    Poll contract. A missing row means the callback has not landed yet,
    and a storage fault is reported the same way rather than surfaced.
    """
    try:
        txn = Transaction.objects.filter(transaction_request_id=request_id).first()
    except DatabaseError as e:
        logger.error(f"Status lookup failed for {request_id}: {str(e)}", exc_info=True)
        return pending_payload(request_id)

    if txn is None:
        logger.debug(f"No transaction stored yet for {request_id}")
        return pending_payload(request_id)

    return TransactionStatusSerializer(txn).data


def find_transaction(
    queryset, merchant_request_id=None, checkout_request_id=None, reference=None, phone=None
):
    """
    Resolves partial identifiers to one transaction. Returns (txn, matched_on).
    """
    lookups = (
        ("merchant_request_id", merchant_request_id),
        ("checkout_request_id", checkout_request_id),
        ("reference", reference),
    )
    for field, value in lookups:
        if not value:
            continue
        txn = queryset.filter(**{field: value}).order_by("-created_at").first()
        if txn is not None:
            return txn, field

    # Last resort: the newest push still waiting on this handset
    if phone:
        txn = (
            queryset.filter(phone=phone, status=Transaction.Status.PENDING)
            .order_by("-created_at")
            .first()
        )
        if txn is not None:
            return txn, "phone"

    return None, None


def _queue_receipt(transaction_id):
    from notifications.tasks import send_payment_receipt

    try:
        send_payment_receipt.delay(str(transaction_id))
    except Exception as e:
        logger.error(f"Failed to queue receipt for transaction {transaction_id}: {e}")


def _apply_outcome(txn, outcome):
    """
    Writes a gateway outcome onto ``txn`` and saves it.

    Pending outcomes only record identifiers. A terminal record keeps its
    status; a repeat of the same outcome may refresh description and receipt.
    Returns True when this call moved the record to a terminal state.
    """
    update_fields = set()
    new_status = outcome["status"]

    for field in GATEWAY_IDENTIFIERS:
        value = outcome.get(field)
        if value and not getattr(txn, field):
            setattr(txn, field, value)
            update_fields.add(field)

    transitioned = False

    if txn.is_terminal:
        if new_status == Transaction.Status.PENDING:
            logger.debug(f"Pending outcome for settled transaction {txn.reference}")
        elif new_status != txn.status:
            logger.warning(
                f"Ignoring {new_status} outcome for {txn.reference}: "
                f"already {txn.status} (code {outcome.get('result_code')})"
            )
        else:
            for field, key in (("result_description", "description"), ("receipt_number", "receipt")):
                value = outcome.get(key)
                if value and value != getattr(txn, field):
                    setattr(txn, field, value)
                    update_fields.add(field)
            logger.info(f"Duplicate {new_status} outcome for {txn.reference}")
    elif new_status != Transaction.Status.PENDING:
        txn.status = new_status
        txn.result_code = outcome.get("result_code")
        txn.result_description = outcome.get("description") or txn.result_description
        txn.receipt_number = outcome.get("receipt") or txn.receipt_number
        txn.transaction_date = outcome.get("transaction_date") or txn.transaction_date
        txn.gateway_response = outcome.get("raw")
        txn.completed_at = timezone.now()
        update_fields.update(
            {
                "status",
                "result_code",
                "result_description",
                "receipt_number",
                "transaction_date",
                "gateway_response",
                "completed_at",
            }
        )
        transitioned = True
        logger.info(f"Transaction {txn.reference} is now {new_status}")

        if new_status == Transaction.Status.SUCCESS:
            transaction.on_commit(partial(_queue_receipt, txn.id))

    if update_fields:
        update_fields.add("updated_at")
        txn.save(update_fields=sorted(update_fields))

    return transitioned


def outcome_from_callback(data, raw=None):
    code = data["response_code"]
    return {
        "status": status_for_response_code(code),
        "result_code": str(code),
        "description": (data.get("description") or "")[:255] or None,
        "receipt": data.get("receipt") or None,
        "transaction_date": data.get("date") or None,
        "merchant_request_id": data.get("merchant_request_id") or None,
        "checkout_request_id": data.get("checkout_request_id") or None,
        "transaction_id": data.get("transaction_id") or None,
        "raw": raw,
    }


def outcome_from_status_query(data):
    """
    Maps a PesaFlux transaction-status answer. Without a result code, or
    while the gateway still reports it as in flight, the push is pending.
    """
    code = parse_code(data.get("ResultCode", data.get("TransactionCode")))
    label = str(data.get("TransactionStatus") or "").strip().lower()

    if label == "completed" or code in SUCCESS_CODES:
        new_status = Transaction.Status.SUCCESS
    elif code is None or label in PENDING_GATEWAY_STATUSES:
        new_status = Transaction.Status.PENDING
    else:
        new_status = status_for_response_code(code)

    receipt = data.get("TransactionReceipt")
    if receipt == "N/A":
        receipt = None

    return {
        "status": new_status,
        "result_code": str(code) if code is not None else None,
        "description": str(data.get("ResultDesc") or data.get("TransactionStatus") or "")[:255] or None,
        "receipt": receipt or None,
        "transaction_date": data.get("TransactionDate") or None,
        "merchant_request_id": data.get("MerchantRequestID") or None,
        "checkout_request_id": data.get("CheckoutRequestID") or None,
        "transaction_id": data.get("TransactionID") or None,
        "raw": data,
    }


def reconcile_callback(data, raw=None):
    """
    Callback contract: applies a validated webhook payload to the matching
    transaction. Returns the transaction, or None when nothing matched.
    """
    outcome = outcome_from_callback(data, raw=raw)

    with transaction.atomic():
        txn, matched_on = find_transaction(
            Transaction.objects.select_for_update(),
            merchant_request_id=data.get("merchant_request_id"),
            checkout_request_id=data.get("checkout_request_id"),
            reference=data.get("reference"),
            phone=data.get("phone"),
        )

        if txn is None:
            logger.error(
                "Webhook matched no transaction "
                f"(merchant={data.get('merchant_request_id')}, "
                f"checkout={data.get('checkout_request_id')}, "
                f"reference={data.get('reference')}, phone={data.get('phone')})"
            )
            return None

        logger.info(f"Webhook for {txn.reference} matched on {matched_on}")
        _apply_outcome(txn, outcome)

    return txn


def reconcile_gateway_status(request_id, gateway_data):
    """
    Applies a transaction-status answer to the transaction that owns
    ``request_id``. Raises Transaction.DoesNotExist for unknown ids.
    """
    outcome = outcome_from_status_query(gateway_data)

    with transaction.atomic():
        txn = Transaction.objects.select_for_update().get(transaction_request_id=request_id)
        _apply_outcome(txn, outcome)

    return txn
