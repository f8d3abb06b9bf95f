from functools import wraps
from flask import request
from services.errors import BadRequestError


def json_body(required_keys=None):
    """
    Decorator that parses the request's JSON object and passes it to the view as `body`.

    A missing or empty body is treated as `{}`. Anything that is not a JSON
    object, or lacks one of `required_keys`, is answered with BadRequestError (400).
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            body = request.get_json(silent=True)
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise BadRequestError("The request body must be a JSON object.")

            missing = [key for key in (required_keys or ()) if body.get(key) in (None, '')]
            if missing:
                raise BadRequestError(f"Missing required parameter(s): {', '.join(missing)}.")

            kwargs['body'] = body
            return f(*args, **kwargs)
        return decorated_function
    return decorator
