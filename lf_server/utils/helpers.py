from datetime import datetime
from enum import Enum

from flask import jsonify

from lf_server.utils.time_utils import to_iso


def respond_error(message_or_dict, status=400):
    """Return a standardized error response."""
    if isinstance(message_or_dict, dict):
        body = {'success': False, 'errors': message_or_dict}
    else:
        body = {'success': False, 'error': message_or_dict}
    return jsonify(body), status


def respond_success(payload=None, status=200):
    body = {'success': True}
    if isinstance(payload, dict):
        body.update(payload)
    elif payload is not None:
        body['data'] = payload
    return jsonify(body), status


def normalize_doc(obj):
    """Make a row or snapshot safe to send to clients.

    Datetimes become UTC ISO strings (naive values are taken as UTC, the way
    pymongo returns them), enums become their values, and Mongo's internal
    ``_id`` is dropped. Returns a new object.
    """
    if isinstance(obj, dict):
        return {k: normalize_doc(v) for k, v in obj.items() if k != '_id'}
    if isinstance(obj, (list, tuple)):
        return [normalize_doc(v) for v in obj]
    if isinstance(obj, datetime):
        return to_iso(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj
