from rest_framework.exceptions import ValidationError
from rest_framework.views import exception_handler


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return response

    code = getattr(exc, "default_code", "error")
    if isinstance(response.data, dict):
        detail = response.data.get("detail", "Request failed")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    else:
        detail = "Request failed"
        fields = {}
    if isinstance(exc, ValidationError):
        code = "validation_error"
        if "detail" not in fields and detail == "Request failed":
            detail = "Invalid input."
    fields.update(getattr(exc, "context", None) or {})

    response.data = {
        "code": code,
        "detail": detail,
        "fields": fields,
    }
    return response
