# src/fraudwatch_client/errors.py

from typing import Any, Dict, List, Optional

DEFAULT_ERROR_MESSAGE = "An error occurred"


class ApiError(Exception):
    """Base class for every failure surfaced to callers of the API client."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        self.message = message
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class NetworkError(ApiError):
    """No response reached us: connection failure or timeout."""


class AuthExpired(ApiError):
    """A 401 that could not be recovered (no refresh token, or the refresh failed)."""


class ServerError(ApiError):
    """Any 4xx/5xx response other than 401 and field validation errors."""


class ValidationError(ApiError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
        field_errors: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__(message, status_code=status_code, payload=payload)
        self.field_errors = field_errors or {}


def _format_field_error(item: Dict[str, Any]) -> str:
    # FastAPI style: {"loc": ["body", "username"], "msg": "Field required", "type": "missing"}
    msg = item.get("msg") or item.get("message") or ""
    loc = item.get("loc") or item.get("field")
    if isinstance(loc, (list, tuple)):
        loc = ".".join(str(part) for part in loc if part not in ("body", "query", "path"))
    return f"{loc}: {msg}" if loc and msg else str(msg or loc or "")


def _flatten(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, dict) and ("msg" in item or "loc" in item):
                formatted = _format_field_error(item)
                if formatted:
                    parts.append(formatted)
            else:
                parts.extend(_flatten(item))
        return parts
    if isinstance(value, dict):
        for key in ("error", "message", "detail", "error_description"):
            if key in value:
                parts = _flatten(value[key])
                if parts:
                    return parts
        errors = value.get("errors")
        if isinstance(errors, dict):
            parts = []
            for field_name, messages in errors.items():
                for message in _flatten(messages):
                    parts.append(f"{field_name}: {message}")
            return parts
        if errors is not None:
            return _flatten(errors)
        return []
    return [str(value)]


def extract_error_message(payload: Any, default: str = DEFAULT_ERROR_MESSAGE) -> str:
    """
    Flattens the error shapes the backend is known to return into one
    human-readable string: nested {"error": {"message"}}, {"message"},
    {"detail": str | [field errors]}, {"errors": {field: [messages]}} and
    plain lists/strings.
    """
    parts = _flatten(payload)
    return "; ".join(parts) if parts else default


def extract_field_errors(payload: Any) -> Dict[str, List[str]]:
    field_errors: Dict[str, List[str]] = {}
    if not isinstance(payload, dict):
        return field_errors

    detail = payload.get("detail")
    if isinstance(detail, list):
        for item in detail:
            if not isinstance(item, dict):
                continue
            loc = item.get("loc") or ()
            if isinstance(loc, (list, tuple)):
                names = [str(part) for part in loc if part not in ("body", "query", "path")]
                field_name = ".".join(names) or "__root__"
            else:
                field_name = str(loc)
            field_errors.setdefault(field_name, []).append(str(item.get("msg", "")))

    errors = payload.get("errors")
    if isinstance(errors, dict):
        for field_name, messages in errors.items():
            field_errors.setdefault(str(field_name), []).extend(_flatten(messages))
    return field_errors
