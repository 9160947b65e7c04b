import logging

from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework.settings import api_settings

logger = logging.getLogger(__name__)


def custom_exception_handler(exc, context):
    """
    Turns every error into {status: "error", status_code, message}.
    Unhandled exceptions are logged and reported as a generic 500.
    """
    response = exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.error(
            f"Unhandled exception in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            exc_info=exc,
        )

        return Response(
            {
                'status': 'error',
                'status_code': status.HTTP_500_INTERNAL_SERVER_ERROR,
                'message': 'An unexpected internal error occurred.'
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    status_code = response.status_code
    message = 'An error occurred.'

    if isinstance(response.data, dict):
        if 'detail' in response.data:
            message = response.data['detail']
        else:
            try:
                first_key = next(iter(response.data))
                first_error_list = response.data[first_key]
                if isinstance(first_error_list, list):
                    first_error = first_error_list[0]
                else:
                    first_error = first_error_list
                if first_key == api_settings.NON_FIELD_ERRORS_KEY:
                    message = str(first_error)
                else:
                    message = f"{first_key.replace('_', ' ').title()}: {first_error}"
            except (StopIteration, TypeError, IndexError):
                message = 'Invalid input.'
    elif isinstance(response.data, list) and response.data:
        message = response.data[0]

    custom_response_data = {
        'status': 'error',
        'status_code': status_code,
        'message': str(message)
    }

    response.data = custom_response_data
    return response
