"""Helpers for turning non-2xx provider responses into readable errors."""

import httpx


def extract_error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an OpenAI/PostgREST style error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return str(body)[:500]
