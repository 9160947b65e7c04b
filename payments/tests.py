from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

import requests
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import GatewayError, GatewayUnavailable
from payments.client import CheckoutClient, CheckoutError
from payments.models import Transaction
from payments.poller import (
    CANCELLED,
    FAILED,
    PENDING,
    SUCCESS,
    TIMEOUT_MESSAGE,
    PaymentPoller,
    interpret_status,
)
from payments.serializers import normalize_phone
from payments.utils import PesaFluxService, format_amount

PAYMENT_TEST_SETTINGS = {
    "SECURE_SSL_REDIRECT": False,
    "PESAFLUX_API_KEY": "test-api-key",
    "PESAFLUX_ACCOUNT_EMAIL": "merchant@example.com",
    "PESAFLUX_BASE_URL": "https://pesaflux.test/api/v1",
}


def make_transaction(**kwargs):
    count = Transaction.objects.count() + 1
    defaults = {
        "reference": f"PAY{1000 + count}",
        "transaction_request_id": f"TRQ{1000 + count}",
        "amount": Decimal("100.00"),
        "phone": "254712345678",
        "email": "payer@example.com",
    }
    defaults.update(kwargs)
    return Transaction.objects.create(**defaults)


def gateway_response(status_code=200, body=None, text=None):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if body is None:
        response.json.side_effect = ValueError("not json")
        response.text = text or "<html>Bad Gateway</html>"
    else:
        response.json.return_value = body
        response.text = str(body)
    return response


@override_settings(**PAYMENT_TEST_SETTINGS)
class PesaFluxServiceTest(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.service = PesaFluxService(session=self.session)

    def test_stk_push_returns_request_id(self):
        self.session.post.return_value = gateway_response(
            body={"success": "200", "massage": "Request sent", "transaction_request_id": "TRQ1"}
        )

        result = self.service.stk_push(
            phone="254712345678", amount=Decimal("100.00"), email="a@b.co", reference="PAY1"
        )

        self.assertEqual(result["transaction_request_id"], "TRQ1")
        self.assertEqual(result["message"], "Request sent")
        url = self.session.post.call_args.args[0]
        payload = self.session.post.call_args.kwargs["json"]
        self.assertEqual(url, "https://pesaflux.test/api/v1/payments/stk-push")
        self.assertEqual(payload["amount"], "100")
        self.assertEqual(payload["msisdn"], "254712345678")
        self.assertEqual(payload["api_key"], "test-api-key")

    def test_numeric_success_code_is_accepted(self):
        self.session.post.return_value = gateway_response(
            body={"success": 200, "transaction_request_id": 55}
        )
        result = self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")
        self.assertEqual(result["transaction_request_id"], "55")

    def test_rejected_push_raises_gateway_error(self):
        self.session.post.return_value = gateway_response(
            body={"success": "400", "massage": "Invalid API key"}
        )
        with self.assertRaisesMessage(GatewayError, "Invalid API key"):
            self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")

    def test_ack_without_request_id_raises_gateway_error(self):
        self.session.post.return_value = gateway_response(body={"success": "200"})
        with self.assertRaises(GatewayError):
            self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")

    def test_non_json_body_raises_gateway_error(self):
        self.session.post.return_value = gateway_response(status_code=200, body=None)
        with self.assertRaises(GatewayError):
            self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")

    def test_non_2xx_raises_gateway_error(self):
        self.session.post.return_value = gateway_response(
            status_code=500, body={"message": "Server error"}
        )
        with self.assertRaisesMessage(GatewayError, "Server error"):
            self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")

    def test_timeout_raises_gateway_unavailable(self):
        self.session.post.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(GatewayUnavailable):
            self.service.stk_push("254712345678", 10, "a@b.co", "PAY1")

    def test_connection_error_raises_gateway_unavailable(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(GatewayUnavailable):
            self.service.transaction_status("TRQ1")

    @override_settings(PESAFLUX_API_KEY=None)
    def test_missing_api_key_never_calls_gateway(self):
        service = PesaFluxService(session=self.session)
        with self.assertRaises(GatewayUnavailable):
            service.stk_push("254712345678", 10, "a@b.co", "PAY1")
        self.session.post.assert_not_called()

    def test_transaction_status_uses_account_email(self):
        self.session.post.return_value = gateway_response(body={"ResultCode": "200"})
        self.service.transaction_status("TRQ1")
        payload = self.session.post.call_args.kwargs["json"]
        self.assertEqual(payload["email"], "merchant@example.com")
        self.assertEqual(payload["transaction_request_id"], "TRQ1")

    def test_format_amount(self):
        self.assertEqual(format_amount(Decimal("100.00")), "100")
        self.assertEqual(format_amount(Decimal("10.50")), "10.5")
        self.assertEqual(format_amount(1), "1")


class NormalizePhoneTest(SimpleTestCase):
    def test_local_formats_are_normalized(self):
        for raw in ("0712345678", "254712345678", "+254 712 345 678", "712345678"):
            with self.subTest(raw=raw):
                self.assertEqual(normalize_phone(raw), "254712345678")


@override_settings(**PAYMENT_TEST_SETTINGS)
class InitiatePaymentTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("payments-initiate")
        self.payload = {
            "phone": "254712345678",
            "amount": "150",
            "email": "payer@example.com",
            "reference": "PAY1700000000000",
        }
        patcher = mock.patch("payments.views.PesaFluxService")
        self.service_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.service = self.service_class.return_value
        self.service.stk_push.return_value = {
            "transaction_request_id": "TRQ123",
            "message": "Request sent successfully",
            "raw": {"success": "200", "transaction_request_id": "TRQ123"},
        }

    def test_initiate_creates_pending_transaction(self):
        response = self.client.post(self.url, self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        body = response.json()
        self.assertEqual(body["status"], "success")
        self.assertTrue(body["data"]["success"])
        self.assertEqual(body["data"]["request_id"], "TRQ123")

        txn = Transaction.objects.get(transaction_request_id="TRQ123")
        self.assertEqual(txn.status, Transaction.Status.PENDING)
        self.assertEqual(txn.amount, Decimal("150"))
        self.assertEqual(txn.reference, "PAY1700000000000")

    def test_msisdn_alias_and_local_format(self):
        payload = dict(self.payload)
        payload.pop("phone")
        payload["msisdn"] = "0712345678"

        response = self.client.post(self.url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.service.stk_push.call_args.kwargs["phone"], "254712345678")

    def test_invalid_phone_is_rejected_before_gateway_call(self):
        for phone in ("0712345", "255712345678", "25471234567", "2547123456789", "abc"):
            with self.subTest(phone=phone):
                response = self.client.post(
                    self.url, {**self.payload, "phone": phone}, format="json"
                )
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertIn("Invalid phone number", response.json()["message"])

        self.service.stk_push.assert_not_called()
        self.assertFalse(Transaction.objects.exists())

    def test_amount_below_minimum_is_rejected(self):
        for amount in ("0", "-5", "0.50", "abc"):
            with self.subTest(amount=amount):
                response = self.client.post(
                    self.url, {**self.payload, "amount": amount}, format="json"
                )
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.service.stk_push.assert_not_called()

    def test_all_fields_are_required(self):
        for field in ("phone", "amount", "email", "reference"):
            with self.subTest(field=field):
                payload = {k: v for k, v in self.payload.items() if k != field}
                response = self.client.post(self.url, payload, format="json")
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(response.json()["status"], "error")
        self.service.stk_push.assert_not_called()

    def test_invalid_email_is_rejected(self):
        response = self.client.post(
            self.url, {**self.payload, "email": "not-an-email"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_duplicate_reference_conflicts(self):
        make_transaction(reference=self.payload["reference"])

        response = self.client.post(self.url, self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.service.stk_push.assert_not_called()

    def test_reused_gateway_request_id_conflicts_with_its_own_message(self):
        make_transaction(reference="PAY-OTHER", transaction_request_id="TRQ123")

        response = self.client.post(self.url, self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(
            response.json()["message"],
            "The payment service returned a request id that is already recorded.",
        )
        self.assertFalse(
            Transaction.objects.filter(reference=self.payload["reference"]).exists()
        )

    @override_settings(PAYMENT_MIN_AMOUNT=0)
    def test_amount_must_be_positive_without_a_minimum(self):
        for amount in ("0", "-1"):
            with self.subTest(amount=amount):
                response = self.client.post(
                    self.url, {**self.payload, "amount": amount}, format="json"
                )
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertEqual(
                    response.json()["message"], "Amount: Amount must be greater than zero."
                )
        self.service.stk_push.assert_not_called()

    def test_gateway_error_is_reported_as_bad_gateway(self):
        self.service.stk_push.side_effect = GatewayError("Invalid API key")

        response = self.client.post(self.url, self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(
            response.json(),
            {"status": "error", "status_code": 502, "message": "Invalid API key"},
        )
        self.assertFalse(Transaction.objects.exists())

    def test_unreachable_gateway_is_service_unavailable(self):
        self.service.stk_push.side_effect = GatewayUnavailable()

        response = self.client.post(self.url, self.payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertFalse(Transaction.objects.exists())

    def test_get_is_not_allowed(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

    def test_malformed_json_is_a_client_error(self):
        response = self.client.post(
            self.url, data="{not json", content_type="application/json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["status"], "error")


@override_settings(**PAYMENT_TEST_SETTINGS)
class PaymentStatusTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("payments-status")

    def test_unknown_request_id_is_pending(self):
        response = self.client.post(
            self.url, {"transaction_request_id": "TRQ-missing"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["request_id"], "TRQ-missing")
        self.assertIsNone(data["receipt"])
        self.assertIsNone(data["result_code"])

    def test_returns_stored_transaction(self):
        make_transaction(
            transaction_request_id="TRQ9",
            status=Transaction.Status.SUCCESS,
            result_code="0",
            result_description="The service request is processed successfully.",
            receipt_number="QWE123RTY",
        )

        response = self.client.post(self.url, {"request_id": "TRQ9"}, format="json")

        data = response.json()["data"]
        self.assertEqual(data["status"], "success")
        self.assertEqual(data["receipt"], "QWE123RTY")
        self.assertEqual(data["amount"], "100.00")
        self.assertEqual(data["phone"], "254712345678")

    def test_storage_failure_reads_as_pending(self):
        with mock.patch(
            "payments.reconciliation.Transaction.objects.filter",
            side_effect=DatabaseError("connection lost"),
        ):
            response = self.client.post(
                self.url, {"transaction_request_id": "TRQ1"}, format="json"
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["status"], "pending")

    def test_request_id_is_required(self):
        response = self.client.post(self.url, {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


@override_settings(**PAYMENT_TEST_SETTINGS)
class WebhookTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("payments-webhook")

    def post(self, payload):
        return self.client.post(self.url, payload, format="json")

    def test_success_callback_sets_success_once(self):
        txn = make_transaction(checkout_request_id="ws_CO_1")
        payload = {
            "ResponseCode": 0,
            "ResponseDescription": "Success. Request accepted for processing",
            "CheckoutRequestID": "ws_CO_1",
            "TransactionID": "TX1",
            "TransactionReceipt": "QWE123RTY",
            "TransactionDate": "20251018101500",
        }

        with mock.patch("payments.reconciliation._queue_receipt") as queue_receipt:
            with self.captureOnCommitCallbacks(execute=True):
                response = self.post(payload)
            with self.captureOnCommitCallbacks(execute=True):
                repeat = self.post(payload)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(repeat.status_code, status.HTTP_200_OK)
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)
        self.assertEqual(txn.receipt_number, "QWE123RTY")
        self.assertEqual(txn.transaction_id, "TX1")
        self.assertEqual(txn.result_code, "0")
        self.assertIsNotNone(txn.completed_at)
        queue_receipt.assert_called_once_with(txn.id)

    def test_terminal_transaction_does_not_flip(self):
        txn = make_transaction(merchant_request_id="MR1")
        self.post({"ResponseCode": 0, "MerchantRequestID": "MR1", "ResponseDescription": "OK"})
        completed_at = Transaction.objects.get(pk=txn.pk).completed_at

        self.post({"ResponseCode": 1032, "MerchantRequestID": "MR1", "ResponseDescription": "Cancelled"})

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)
        self.assertEqual(txn.result_description, "OK")
        self.assertEqual(txn.completed_at, completed_at)

    def test_duplicate_callback_refreshes_receipt(self):
        txn = make_transaction(checkout_request_id="ws_CO_2")
        self.post({"ResponseCode": 0, "CheckoutRequestID": "ws_CO_2"})
        self.post({"ResponseCode": 0, "CheckoutRequestID": "ws_CO_2", "TransactionReceipt": "LATE1"})

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)
        self.assertEqual(txn.receipt_number, "LATE1")

    def test_cancel_code_as_string_sets_cancelled(self):
        txn = make_transaction(checkout_request_id="ws_CO_3")

        self.post(
            {
                "ResponseCode": "1032",
                "ResponseDescription": "Request cancelled by user",
                "CheckoutRequestID": "ws_CO_3",
            }
        )

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.CANCELLED)

    def test_unlisted_code_sets_failed_with_description(self):
        txn = make_transaction(reference="PAY-7")

        self.post(
            {
                "response_code": 7,
                "description": "Limit of transactions exceeded",
                "reference": "PAY-7",
            }
        )

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.FAILED)
        self.assertEqual(txn.result_description, "Limit of transactions exceeded")
        self.assertEqual(txn.result_code, "7")

    def test_insufficient_funds_code_is_failure_not_cancellation(self):
        txn = make_transaction(reference="PAY-1")
        self.post({"ResponseCode": 1, "ResponseDescription": "Insufficient funds", "TransactionReference": "PAY-1"})

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.FAILED)

    def test_lookup_prefers_merchant_request_id(self):
        by_merchant = make_transaction(merchant_request_id="MR-A")
        by_checkout = make_transaction(checkout_request_id="CO-B")

        self.post({"ResponseCode": 0, "MerchantRequestID": "MR-A", "CheckoutRequestID": "CO-B"})

        by_merchant.refresh_from_db()
        by_checkout.refresh_from_db()
        self.assertEqual(by_merchant.status, Transaction.Status.SUCCESS)
        self.assertEqual(by_checkout.status, Transaction.Status.PENDING)

    def test_checkout_request_id_beats_reference(self):
        by_checkout = make_transaction(checkout_request_id="CO-C")
        by_reference = make_transaction(reference="REF-C")

        self.post({"ResponseCode": 0, "CheckoutRequestID": "CO-C", "TransactionReference": "REF-C"})

        by_checkout.refresh_from_db()
        by_reference.refresh_from_db()
        self.assertEqual(by_checkout.status, Transaction.Status.SUCCESS)
        self.assertEqual(by_reference.status, Transaction.Status.PENDING)

    def test_reference_beats_latest_pending_for_phone(self):
        by_reference = make_transaction(reference="REF-X", phone="254700000002")
        by_phone = make_transaction(phone="254700000002")
        now = timezone.now()
        Transaction.objects.filter(pk=by_reference.pk).update(created_at=now - timedelta(minutes=10))
        Transaction.objects.filter(pk=by_phone.pk).update(created_at=now)

        self.post({"ResponseCode": 0, "TransactionReference": "REF-X", "Msisdn": "254700000002"})

        by_reference.refresh_from_db()
        by_phone.refresh_from_db()
        self.assertEqual(by_reference.status, Transaction.Status.SUCCESS)
        self.assertEqual(by_phone.status, Transaction.Status.PENDING)

    def test_falls_back_to_latest_pending_for_phone(self):
        older = make_transaction(phone="254700000001")
        newer = make_transaction(phone="254700000001")
        settled = make_transaction(phone="254700000001", status=Transaction.Status.FAILED)
        now = timezone.now()
        Transaction.objects.filter(pk=older.pk).update(created_at=now - timedelta(minutes=10))
        Transaction.objects.filter(pk=newer.pk).update(created_at=now - timedelta(minutes=5))
        Transaction.objects.filter(pk=settled.pk).update(created_at=now)

        response = self.post({"ResponseCode": 0, "Msisdn": 254700000001, "TransactionReceipt": "RCPT"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        older.refresh_from_db()
        newer.refresh_from_db()
        settled.refresh_from_db()
        self.assertEqual(newer.status, Transaction.Status.SUCCESS)
        self.assertEqual(newer.receipt_number, "RCPT")
        self.assertEqual(older.status, Transaction.Status.PENDING)
        self.assertEqual(settled.status, Transaction.Status.FAILED)

    def test_local_phone_format_is_normalized_for_lookup(self):
        txn = make_transaction(phone="254711111111")
        self.post({"ResponseCode": 1031, "Msisdn": "0711111111"})

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.CANCELLED)

    def test_unmatched_callback_is_acknowledged(self):
        txn = make_transaction()

        response = self.post({"ResponseCode": 0, "CheckoutRequestID": "unknown"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["message"], "Webhook received")
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.PENDING)

    def test_invalid_payload_is_acknowledged(self):
        for payload in ({"CheckoutRequestID": "ws_CO_1"}, {"ResponseCode": "abc"}):
            with self.subTest(payload=payload):
                response = self.post(payload)
                self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_internal_error_is_acknowledged(self):
        with mock.patch(
            "payments.views.reconcile_callback", side_effect=RuntimeError("db exploded")
        ):
            response = self.post({"ResponseCode": 0, "CheckoutRequestID": "ws_CO_1"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["message"], "Webhook received but processing failed")

    def test_unparseable_body_is_a_client_error(self):
        response = self.client.post(self.url, data="{oops", content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


@override_settings(**PAYMENT_TEST_SETTINGS)
class RefreshStatusTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("payments-refresh")
        patcher = mock.patch("payments.views.PesaFluxService")
        self.service = patcher.start().return_value
        self.addCleanup(patcher.stop)

    def test_unknown_request_id_is_not_found(self):
        response = self.client.post(self.url, {"transaction_request_id": "nope"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.service.transaction_status.assert_not_called()

    def test_completed_answer_settles_transaction(self):
        txn = make_transaction(transaction_request_id="TRQ-R1")
        self.service.transaction_status.return_value = {
            "ResultCode": "200",
            "ResultDesc": "Completed",
            "TransactionStatus": "Completed",
            "TransactionReceipt": "RCPT-R1",
            "MerchantRequestID": "MR-R1",
            "CheckoutRequestID": "CO-R1",
        }

        response = self.client.post(self.url, {"transaction_request_id": "TRQ-R1"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["data"]["status"], "success")
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.SUCCESS)
        self.assertEqual(txn.receipt_number, "RCPT-R1")
        self.assertEqual(txn.checkout_request_id, "CO-R1")

    def test_pending_answer_records_identifiers_for_the_webhook(self):
        txn = make_transaction(transaction_request_id="TRQ-R2")
        self.service.transaction_status.return_value = {
            "TransactionStatus": "Pending",
            "MerchantRequestID": "MR-R2",
            "CheckoutRequestID": "CO-R2",
        }

        self.client.post(self.url, {"transaction_request_id": "TRQ-R2"}, format="json")

        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.PENDING)
        self.assertEqual(txn.merchant_request_id, "MR-R2")

        self.client.post(
            reverse("payments-webhook"),
            {"ResponseCode": 1032, "CheckoutRequestID": "CO-R2"},
            format="json",
        )
        txn.refresh_from_db()
        self.assertEqual(txn.status, Transaction.Status.CANCELLED)

    def test_gateway_error_is_bad_gateway(self):
        make_transaction(transaction_request_id="TRQ-R3")
        self.service.transaction_status.side_effect = GatewayError()

        response = self.client.post(self.url, {"transaction_request_id": "TRQ-R3"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds
        return False


class InterpretStatusTest(SimpleTestCase):
    def test_success_labels_and_codes(self):
        for payload in (
            {"status": "success"},
            {"TransactionStatus": "Completed"},
            {"ResultCode": "200"},
            {"ResultCode": 0},
        ):
            with self.subTest(payload=payload):
                self.assertEqual(interpret_status(payload)[0], SUCCESS)

    def test_cancellation_codes_in_either_representation(self):
        for payload in (
            {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"},
            {"ResultCode": 1031},
            {"ResultCode": 2001, "ResultDesc": "User cancelled the prompt"},
            {"status": "failed", "result_code": "1032"},
            {"status": "cancelled"},
        ):
            with self.subTest(payload=payload):
                self.assertEqual(interpret_status(payload)[0], CANCELLED)

    def test_other_codes_fail_with_description(self):
        state, message = interpret_status({"ResultCode": 1, "ResultDesc": "Insufficient funds"})
        self.assertEqual(state, FAILED)
        self.assertEqual(message, "Insufficient funds")

    def test_pending_payloads(self):
        for payload in ({"status": "pending"}, {}, {"status": "pending", "result_code": None}):
            with self.subTest(payload=payload):
                self.assertEqual(interpret_status(payload), (PENDING, None))


class PaymentPollerTest(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.fetch = mock.Mock(return_value={"status": "pending"})

    def make_poller(self, **kwargs):
        return PaymentPoller(
            self.fetch,
            "TRQ1",
            interval=5,
            timeout=120,
            clock=self.clock,
            sleep=self.clock.sleep,
            **kwargs,
        )

    def test_times_out_to_failed_and_stops_polling(self):
        poller = self.make_poller()

        state = poller.run()

        self.assertEqual(state, FAILED)
        self.assertEqual(poller.message, TIMEOUT_MESSAGE)
        self.assertEqual(self.fetch.call_count, 23)
        self.assertEqual(poller.remaining, 0)

        calls = self.fetch.call_count
        self.assertEqual(poller.run(), FAILED)
        self.assertEqual(self.fetch.call_count, calls)

    def test_stops_on_success(self):
        self.fetch.side_effect = [
            {"status": "pending"},
            {"status": "pending"},
            {"status": "success", "receipt": "QWE123"},
        ]
        poller = self.make_poller()

        self.assertEqual(poller.run(), SUCCESS)
        self.assertEqual(poller.polls, 3)
        self.assertEqual(poller.receipt, "QWE123")
        self.assertEqual(self.clock.now, 15)

    def test_fetch_errors_do_not_end_polling(self):
        self.fetch.side_effect = [
            CheckoutError("Could not reach the checkout service"),
            {"status": "cancelled", "description": "Request cancelled by user"},
        ]
        poller = self.make_poller()

        self.assertEqual(poller.run(), CANCELLED)
        self.assertEqual(poller.message, "Request cancelled by user")
        self.assertEqual(poller.polls, 2)

    def test_stop_tears_down_the_loop(self):
        poller = self.make_poller()
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            self.clock.now += seconds
            if len(sleeps) == 2:
                poller.stop()
                return True
            return False

        poller._sleep = sleep

        self.assertEqual(poller.run(), PENDING)
        self.assertEqual(self.fetch.call_count, 1)

    def test_countdown_is_reported(self):
        seen = []
        self.fetch.side_effect = [{"status": "pending"}, {"status": "failed", "description": "Declined"}]
        poller = self.make_poller(on_update=lambda p: seen.append((p.state, p.remaining)))

        poller.run()

        self.assertEqual(seen, [(PENDING, 115), (FAILED, 110)])
        self.assertEqual(poller.message, "Declined")


class CheckoutClientTest(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = CheckoutClient("http://api.test/api/v1/payments/", session=self.session)

    def test_unwraps_success_envelope(self):
        self.session.post.return_value = gateway_response(
            body={"status": "success", "status_code": 200, "message": "ok", "data": {"status": "pending"}}
        )

        self.assertEqual(self.client.status("TRQ1"), {"status": "pending"})
        self.assertEqual(
            self.session.post.call_args.args[0], "http://api.test/api/v1/payments/status/"
        )

    def test_error_envelope_raises_with_server_message(self):
        self.session.post.return_value = gateway_response(
            status_code=400,
            body={"status": "error", "status_code": 400, "message": "Phone: Invalid phone number."},
        )

        with self.assertRaisesMessage(CheckoutError, "Phone: Invalid phone number."):
            self.client.initiate("0712", 10, "a@b.co")

    def test_initiate_generates_reference(self):
        self.session.post.return_value = gateway_response(
            body={"status": "success", "data": {"request_id": "TRQ1"}}
        )

        self.client.initiate("0712345678", Decimal("10"), "a@b.co")

        payload = self.session.post.call_args.kwargs["json"]
        self.assertTrue(payload["reference"].startswith("PAY"))
        self.assertEqual(payload["amount"], "10")


class CheckoutCommandTest(SimpleTestCase):
    def test_runs_checkout_until_success(self):
        with mock.patch("payments.management.commands.checkout.CheckoutClient") as client_class:
            client = client_class.return_value
            client.initiate.return_value = {"request_id": "TRQ1", "reference": "PAY1"}
            client.status.return_value = {"status": "success", "receipt": "QWE123"}
            out = StringIO()

            call_command(
                "checkout",
                phone="0712345678",
                amount="10",
                email="a@b.co",
                interval=0,
                timeout=5,
                stdout=out,
            )

        self.assertIn("Payment completed successfully!", out.getvalue())
        self.assertIn("QWE123", out.getvalue())
        client.status.assert_called_with("TRQ1")

    def test_initiate_failure_is_a_command_error(self):
        with mock.patch("payments.management.commands.checkout.CheckoutClient") as client_class:
            client_class.return_value.initiate.side_effect = CheckoutError("Amount must be at least KES 1")

            with self.assertRaisesMessage(CommandError, "Amount must be at least KES 1"):
                call_command(
                    "checkout", phone="0712345678", amount="0", email="a@b.co", stdout=StringIO()
                )
