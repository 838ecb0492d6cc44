from flask import jsonify


def error_response(result):
    """Turn a failed Result into the JSON error shape used across the API."""
    body = {"error": result.message, "code": result.error.value}
    if result.reason is not None:
        body["reason"] = result.reason.value
    return jsonify(body), result.http_status


def money(value):
    return float(value) if value is not None else None


def iso(value):
    return value.isoformat() if value else None
