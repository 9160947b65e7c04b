from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from unittest import mock

from django.core import mail
from django.test import TestCase, override_settings

from notifications.email_service import send_email
from notifications.tasks import send_payment_receipt
from payments.models import Transaction


@override_settings(PAYMENT_COMPANY_NAME="Acme Traders", DEFAULT_FROM_EMAIL="billing@acme.test")
class PaymentReceiptTaskTest(TestCase):
    def setUp(self):
        self.txn = Transaction.objects.create(
            reference="PAY1700000000000",
            transaction_request_id="TRQ1",
            amount=Decimal("1500.00"),
            phone="254712345678",
            email="payer@example.com",
            status=Transaction.Status.SUCCESS,
            receipt_number="QWE123RTY",
            completed_at=datetime(2025, 10, 18, 7, 30, tzinfo=dt_timezone.utc),
        )

    @mock.patch("notifications.tasks.send_email_task.delay")
    def test_receipt_is_queued_for_successful_payment(self, mock_delay):
        result = send_payment_receipt(str(self.txn.id))

        self.assertEqual(result, "PAY1700000000000")
        mock_delay.assert_called_once()
        kwargs = mock_delay.call_args.kwargs
        self.assertEqual(kwargs["recipients"], ["payer@example.com"])
        self.assertEqual(kwargs["subject"], "Payment received - PAY1700000000000")
        self.assertEqual(kwargs["template_name"], "email/payment_receipt.html")
        self.assertEqual(kwargs["context"]["amount"], "1,500.00")
        self.assertEqual(kwargs["context"]["receipt_number"], "QWE123RTY")
        self.assertEqual(kwargs["context"]["company_name"], "Acme Traders")
        # Africa/Nairobi is UTC+3
        self.assertEqual(kwargs["context"]["date"], "October 18, 2025 10:30")

    @mock.patch("notifications.tasks.send_email_task.delay")
    def test_no_receipt_for_unsettled_payment(self, mock_delay):
        Transaction.objects.filter(pk=self.txn.pk).update(status=Transaction.Status.PENDING)

        self.assertIsNone(send_payment_receipt(str(self.txn.id)))
        mock_delay.assert_not_called()

    @mock.patch("notifications.tasks.send_email_task.delay")
    def test_unknown_transaction_is_ignored(self, mock_delay):
        self.assertIsNone(send_payment_receipt("2b1b6a9e-7c4e-4f0e-9a51-7d6f3f0a9c11"))
        mock_delay.assert_not_called()


@override_settings(
    EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend",
    DEFAULT_FROM_EMAIL="billing@acme.test",
)
class SendEmailTest(TestCase):
    def test_renders_receipt_template(self):
        send_email(
            subject="Payment received - PAY1",
            recipients=["payer@example.com"],
            template_name="email/payment_receipt.html",
            context={
                "company_name": "Acme Traders",
                "amount": "100.00",
                "currency": "KES",
                "phone": "254712345678",
                "reference": "PAY1",
                "receipt_number": "QWE123RTY",
                "date": "October 18, 2025 10:30",
            },
        )

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["payer@example.com"])
        self.assertEqual(message.from_email, "billing@acme.test")
        self.assertIn("QWE123RTY", message.body)
        self.assertEqual(message.alternatives[0][1], "text/html")

    def test_plain_text_only(self):
        send_email(subject="Hello", recipients=["a@b.co"], text_body="Plain body")

        self.assertEqual(mail.outbox[0].body, "Plain body")
        self.assertEqual(mail.outbox[0].alternatives, [])
