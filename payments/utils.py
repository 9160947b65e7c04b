import logging
from decimal import Decimal

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from core.exceptions import GatewayError, GatewayUnavailable

logger = logging.getLogger(__name__)

STK_PUSH_PATH = "/payments/stk-push"
TRANSACTION_STATUS_PATH = "/payments/transaction-status"


def gateway_message(data):
    """PesaFlux spells it "massage" on some responses."""
    if not isinstance(data, dict):
        return None
    return data.get("massage") or data.get("message") or data.get("ResultDesc")


def format_amount(amount):
    """Whole shillings go out as "100", not "100.00"."""
    amount = Decimal(str(amount))
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal(1)))
    return format(amount.normalize(), "f")


class PesaFluxService:
    def __init__(self, session=None):
        self.api_key = settings.PESAFLUX_API_KEY
        self.account_email = settings.PESAFLUX_ACCOUNT_EMAIL
        self.base_url = settings.PESAFLUX_BASE_URL.rstrip("/")
        self.timeout = settings.PESAFLUX_TIMEOUT
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "PesaFlux-Checkout/1.0",
        }
        self.session = session or self._build_session()

    def _build_session(self):
        session = requests.Session()

        # A push that reached the gateway may already have prompted the payer,
        # so only connection failures are retried for it.
        push_retry = Retry(
            total=settings.PESAFLUX_MAX_RETRIES,
            connect=settings.PESAFLUX_MAX_RETRIES,
            read=0,
            status=0,
            other=0,
            backoff_factor=settings.PESAFLUX_BACKOFF_FACTOR,
            allowed_methods=frozenset({"POST"}),
        )
        status_retry = Retry(
            total=settings.PESAFLUX_MAX_RETRIES,
            backoff_factor=settings.PESAFLUX_BACKOFF_FACTOR,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
            raise_on_status=False,
        )
        session.mount(f"{self.base_url}{STK_PUSH_PATH}", HTTPAdapter(max_retries=push_retry))
        session.mount(
            f"{self.base_url}{TRANSACTION_STATUS_PATH}",
            HTTPAdapter(max_retries=status_retry),
        )
        return session

    def _post(self, path, payload):
        if not self.api_key:
            logger.error("PESAFLUX_API_KEY is not configured")
            raise GatewayUnavailable("Payment service is not configured.")

        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(
                url, json=payload, headers=self.headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.error(f"PesaFlux timeout on {path}")
            raise GatewayUnavailable("Payment gateway timeout. Please try again.")
        except requests.exceptions.RequestException as e:
            logger.error(f"PesaFlux request to {path} failed: {str(e)}")
            raise GatewayUnavailable()

        logger.debug(f"PesaFlux {path} responded {response.status_code}: {response.text}")

        try:
            data = response.json()
        except ValueError:
            logger.error(
                f"PesaFlux returned a non-JSON body on {path} "
                f"(status={response.status_code}): {response.text[:500]}"
            )
            raise GatewayError()

        if not response.ok:
            logger.error(f"PesaFlux error on {path} (status={response.status_code}): {data}")
            raise GatewayError(
                gateway_message(data) or f"Payment service returned {response.status_code}."
            )

        if not isinstance(data, dict):
            logger.error(f"PesaFlux returned an unexpected body on {path}: {data}")
            raise GatewayError()

        return data

    def stk_push(self, phone, amount, email, reference):
        """
        Sends the PIN prompt to the payer's handset.

        The acknowledgement only means the push was dispatched; the outcome
        arrives later through the webhook or a status query.
        """
        payload = {
            "api_key": self.api_key,
            "email": email,
            "amount": format_amount(amount),
            "msisdn": phone,
            "reference": reference,
        }

        logger.info(f"Sending STK push to {phone} for KES {amount} (ref: {reference})")
        data = self._post(STK_PUSH_PATH, payload)

        if str(data.get("success")) != "200":
            logger.error(f"PesaFlux rejected STK push for {reference}: {data}")
            raise GatewayError(gateway_message(data) or "Payment initiation failed.")

        request_id = data.get("transaction_request_id")
        if not request_id:
            logger.error(f"PesaFlux acknowledged {reference} without a request id: {data}")
            raise GatewayError("Payment service did not return a request id.")

        return {
            "transaction_request_id": str(request_id),
            "message": gateway_message(data) or "Request sent successfully",
            "raw": data,
        }

    def transaction_status(self, transaction_request_id):
        """
        Asks PesaFlux for the current state of a push.
        """
        payload = {
            "api_key": self.api_key,
            "email": self.account_email,
            "transaction_request_id": transaction_request_id,
        }
        logger.info(f"Querying PesaFlux status for {transaction_request_id}")
        return self._post(TRANSACTION_STATUS_PATH, payload)
