# Overview: Standard JSON response envelope.

from __future__ import annotations

from flask import g, jsonify, request

from .errors import ValidationError


def current_request_id() -> str | None:
    return getattr(g, "request_id", None)


def ok(data=None, status: int = 200):
    """{"ok": true, "data": ..., "requestId": ...}"""
    return jsonify({"ok": True, "data": data, "requestId": current_request_id()}), status


def error_body(code: str, message: str, details=None) -> dict:
    return {
        "ok": False,
        "error": {"code": code, "message": message, "details": details},
        "requestId": current_request_id(),
    }


def json_body() -> dict:
    """Request JSON object, or {} when absent. Non-object bodies are rejected."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
