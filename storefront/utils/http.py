"""Request helpers shared by the JSON blueprints."""
from flask import request

from storefront.exceptions import ValidationError


def json_body() -> dict:
    """JSON object body of the current request; an absent body is {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
