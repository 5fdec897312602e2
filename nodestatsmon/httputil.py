"""JSON and error responses for http.server request handlers."""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from datetime import datetime, timedelta
from enum import Enum
from http import HTTPStatus
from typing import Any


def _default(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in fields(obj)}
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return (obj // timedelta(microseconds=1)) * 1000
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


def return_http_json(handler: Any, obj: Any) -> None:
    """Send obj as a JSON 200 response, or a 500 response if it cannot be encoded."""
    try:
        data = json.dumps(obj, default=_default).encode("utf-8")
    except (TypeError, ValueError) as exc:
        return_http_error(handler, exc)
        return
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-type", "application/json")
    handler.end_headers()
    handler.wfile.write(data)


def return_http_error(handler: Any, error: BaseException) -> None:
    """Send the error's text as a 500 response."""
    handler.send_response(HTTPStatus.INTERNAL_SERVER_ERROR)
    handler.end_headers()
    handler.wfile.write(str(error).encode("utf-8"))