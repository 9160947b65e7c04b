import logging
import time

import requests

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def generate_reference():
    return f"PAY{int(time.time() * 1000)}"


class CheckoutClient:
    """
    Talks to this service's payments API the way the checkout widget does.
    """

    def __init__(self, base_url, timeout=15, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path, payload):
        url = f"{self.base_url}/{path}/"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise CheckoutError(f"Could not reach the checkout service: {str(e)}")

        try:
            body = response.json()
        except ValueError:
            raise CheckoutError(
                "Invalid response from the checkout service.", response.status_code
            )

        if not response.ok or not isinstance(body, dict) or body.get("status") == "error":
            message = body.get("message") if isinstance(body, dict) else None
            raise CheckoutError(
                message or f"Checkout service returned {response.status_code}.",
                response.status_code,
            )

        return body.get("data") or {}

    def initiate(self, phone, amount, email, reference=None):
        payload = {
            "phone": phone,
            "amount": str(amount),
            "email": email,
            "reference": reference or generate_reference(),
        }
        logger.info(f"Initiating checkout for {phone} (ref: {payload['reference']})")
        return self._post("initiate", payload)

    def status(self, request_id):
        return self._post("status", {"transaction_request_id": request_id})
