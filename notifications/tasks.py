import logging
from celery import shared_task
from django.conf import settings
from django.utils import timezone

from notifications.email_service import send_email
from payments.models import Transaction

logger = logging.getLogger("notifications.tasks")


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=60,
    retry_backoff_max=600,
    max_retries=5,
)
def send_email_task(
        self,
        *,
        subject: str,
        recipients: list[str],
        template_name: str | None = None,
        context: dict | None = None,
        text_body: str | None = None,
        from_email: str | None = None,
) -> None:
    logger.info(f"Email task started: {subject} to {recipients}")
    try:
        send_email(
            subject=subject,
            recipients=recipients,
            template_name=template_name,
            context=context,
            text_body=text_body,
            from_email=from_email,
        )
    except Exception as e:
        logger.error(f"Email sending failed: {str(e)}", exc_info=True)
        logger.error(f"Retry attempt {self.request.retries}/{self.max_retries}")
        raise


@shared_task
def send_payment_receipt(transaction_id):
    """
    Queues the receipt e-mail for a payment that has just succeeded.
    """
    logger.info(f"Preparing receipt for transaction {transaction_id}")

    try:
        transaction = Transaction.objects.get(id=transaction_id)
    except Transaction.DoesNotExist:
        logger.error(f"Transaction {transaction_id} not found")
        return None

    if transaction.status != Transaction.Status.SUCCESS:
        logger.warning(
            f"Skipping receipt for {transaction.reference}: status is {transaction.status}"
        )
        return None

    completed = transaction.completed_at or transaction.updated_at
    context = {
        "company_name": settings.PAYMENT_COMPANY_NAME,
        "amount": f"{transaction.amount:,.2f}",
        "currency": transaction.currency,
        "phone": transaction.phone,
        "reference": transaction.reference,
        "receipt_number": transaction.receipt_number or "N/A",
        "date": timezone.localtime(completed).strftime("%B %d, %Y %H:%M"),
    }

    send_email_task.delay(
        subject=f"Payment received - {transaction.reference}",
        recipients=[transaction.email],
        template_name="email/payment_receipt.html",
        context=context,
    )

    logger.info(f"Receipt email queued for transaction {transaction.reference}")
    return transaction.reference
