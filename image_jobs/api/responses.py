from __future__ import annotations

from typing import Any, Dict, Optional


def envelope(status: str, data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": status}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def success(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    return envelope("success", data=data, message=message)


def error(message: str, **extra: Any) -> Dict[str, Any]:
    body = envelope("error", message=message)
    body.update(extra)
    return body
