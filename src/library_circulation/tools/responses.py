"""MCP tool response helpers."""

from typing import Any


def text_response(text: str, data: dict[str, Any]) -> dict[str, Any]:
    """Successful result: a human-readable line plus structured data."""
    return {
        "content": [{"type": "text", "text": text}],
        "data": data,
    }


def error_response(text: str, error: Exception | None = None) -> dict[str, Any]:
    """Failed result; ``data.error`` names the error class when there is one."""
    response: dict[str, Any] = {
        "isError": True,
        "content": [{"type": "text", "text": text}],
    }
    if error is not None:
        response["data"] = {"error": type(error).__name__}
    return response
