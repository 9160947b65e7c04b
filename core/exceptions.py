from rest_framework import status
from rest_framework.exceptions import APIException


class NotFoundError(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Transaction not found."


class ConflictError(APIException):
    status_code = status.HTTP_409_CONFLICT


class GatewayError(APIException):
    """The payment gateway answered, but not with something we can use."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Invalid response from payment service."
    default_code = "gateway_error"


class GatewayUnavailable(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Payment service is unreachable. Please try again."
    default_code = "gateway_unavailable"
