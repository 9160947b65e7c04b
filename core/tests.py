import os
import runpy
from unittest import mock

from django.conf import settings
from django.test import SimpleTestCase, override_settings
from rest_framework import serializers, status
from rest_framework.exceptions import ValidationError

from core.custom_exception_handler import custom_exception_handler
from core.exceptions import GatewayError, NotFoundError


@override_settings(SECURE_SSL_REDIRECT=False)
class HealthCheckTest(SimpleTestCase):
    def test_health_check(self):
        response = self.client.get("/health/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json(), {"status": "healthy"})

    def test_root_lists_payment_endpoints(self):
        response = self.client.get("/")

        self.assertEqual(response.json()["data"]["initiate"], "/api/v1/payments/initiate/")

    @override_settings(CORS_ALLOWED_ORIGINS=["https://shop.example.com"])
    def test_checkout_preflight(self):
        response = self.client.options(
            "/api/v1/payments/initiate/",
            HTTP_ORIGIN="https://shop.example.com",
            HTTP_ACCESS_CONTROL_REQUEST_METHOD="POST",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response["Access-Control-Allow-Origin"], "https://shop.example.com"
        )
        self.assertIn("POST", response["Access-Control-Allow-Methods"])


class CustomExceptionHandlerTest(SimpleTestCase):
    def test_field_error_is_prefixed_with_field_name(self):
        exc = ValidationError({"phone_number": ["Invalid phone number."]})

        response = custom_exception_handler(exc, {})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(
            response.data,
            {"status": "error", "status_code": 400, "message": "Phone Number: Invalid phone number."},
        )

    def test_non_field_error_is_plain(self):
        exc = serializers.ValidationError({"non_field_errors": ["Amount and phone disagree."]})

        response = custom_exception_handler(exc, {})

        self.assertEqual(response.data["message"], "Amount and phone disagree.")

    def test_api_exceptions_keep_their_status(self):
        self.assertEqual(custom_exception_handler(NotFoundError(), {}).status_code, 404)
        response = custom_exception_handler(GatewayError(), {})
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data["message"], "Invalid response from payment service.")

    def test_unhandled_exception_is_a_generic_500(self):
        with self.assertLogs("core.custom_exception_handler", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["message"], "An unexpected internal error occurred.")


class SecretKeySettingTest(SimpleTestCase):
    def load_settings(self, **env):
        """Executes core/settings.py against a controlled environment."""
        with mock.patch.dict(os.environ), mock.patch("dotenv.load_dotenv"):
            os.environ.pop("SECRET_KEY", None)
            os.environ.pop("DEBUG", None)
            os.environ.update(env)
            return runpy.run_path(str(settings.BASE_DIR / "core" / "settings.py"))

    def test_no_built_in_secret_key(self):
        namespace = self.load_settings()

        self.assertIsNone(namespace["SECRET_KEY"])
        self.assertFalse(namespace["DEBUG"])

    def test_secret_key_comes_from_environment(self):
        namespace = self.load_settings(SECRET_KEY="from-deploy-env")

        self.assertEqual(namespace["SECRET_KEY"], "from-deploy-env")
