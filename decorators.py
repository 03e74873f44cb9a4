from functools import wraps
from flask import jsonify, request


def json_body_required(fn):
    """Decorator to reject requests whose body is not a JSON object"""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body must be a JSON object'}), 400
        return fn(*args, **kwargs)
    return wrapper
