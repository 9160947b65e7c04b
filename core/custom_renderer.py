from rest_framework.renderers import JSONRenderer


class CustomJSONRenderer(JSONRenderer):
    """
    Wraps successful payloads as {status, status_code, message, data}.
    Error bodies built by the exception handler are passed through untouched.
    """

    def render(self, data, accepted_media_type=None, renderer_context=None):
        response = (renderer_context or {}).get("response")
        status_code = response.status_code if response is not None else 200

        if status_code == 204:
            return super().render(None, accepted_media_type, renderer_context)

        if isinstance(data, dict) and (
            data.get("status") == "error" or "detail" in data
        ):
            return super().render(data, accepted_media_type, renderer_context)

        # Allow the view to provide a custom message
        message = "Success"
        payload = {}

        if isinstance(data, dict):
            payload = dict(data)
            message = payload.pop("message", "Success")
        elif data is not None:
            payload = data

        response_data = {
            "status": "success",
            "status_code": status_code,
            "message": message,
            "data": payload,
        }

        return super().render(response_data, accepted_media_type, renderer_context)
