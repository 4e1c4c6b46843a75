"""Route decorators shared by the messaging endpoints.

Stack them outermost first:

    @messages_bp.route('/conversations/<conversation_id>/messages', methods=['POST'])
    @handle_errors
    @require_auth
    @require_json('content')
    def send_message(conversation_id, user_key, body):
        ...
"""
import functools
import logging
from typing import Callable

from flask import request

from lf_server.exception.StoreError import StoreError
from lf_server.exception.UnauthorizedError import UnauthorizedError
from lf_server.security.authentication import get_auth_payload
from lf_server.utils.helpers import respond_error

logger = logging.getLogger(__name__)


def handle_errors(func: Callable) -> Callable:
    """Map exceptions raised by a handler to JSON error responses.

    - UnauthorizedError -> 401
    - ValueError (bad input, not a participant, own listing) -> 400
    - StoreError (MongoDB unreachable or write rejected) -> 503
    - anything else -> 500, logged with traceback
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except UnauthorizedError as e:
            logger.warning(f"{func.__name__}: unauthorized: {e}")
            return respond_error(str(e), status=401)
        except ValueError as e:
            logger.info(f"{func.__name__}: rejected: {e}")
            return respond_error(str(e), status=400)
        except StoreError as e:
            logger.error(f"{func.__name__}: store error on {e.table or '?'}: {e}")
            return respond_error('Messaging store unavailable', status=503)
        except Exception:
            logger.exception(f"Unexpected error in {func.__name__}")
            return respond_error('Server error', status=500)
    return wrapper


def require_auth(func: Callable) -> Callable:
    """Decode the bearer token and pass the caller's ``user_key`` to the handler."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        payload = get_auth_payload(request)
        kwargs['user_key'] = payload['user_key']
        return func(*args, **kwargs)
    return wrapper


def require_json(*required_fields: str) -> Callable:
    """Parse the JSON body and pass it to the handler as ``body``.

    A required field that is missing, null or blank (whitespace only)
    rejects the request with 400 before the handler runs.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                return respond_error('Request body must be a JSON object', status=400)

            missing = [f for f in required_fields if _is_blank(data.get(f))]
            if missing:
                return respond_error(f'Missing required fields: {", ".join(missing)}', status=400)

            kwargs['body'] = data
            return func(*args, **kwargs)
        return wrapper
    return decorator


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
