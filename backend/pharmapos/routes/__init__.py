from flask import request

from ..errors import ValidationError


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def json_list(data: dict, key: str, *, required: bool = True) -> list:
    value = data.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} required")
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value
