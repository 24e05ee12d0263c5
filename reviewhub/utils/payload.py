from flask import request

from reviewhub.utils.errors import ValidationError


def json_body():
    """The request's JSON object; an empty or missing body reads as {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object')
    return data
