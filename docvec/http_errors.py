"""Helpers for reading error responses from remote services."""

import httpx


def service_message(response: httpx.Response) -> str:
    """Extract the remote service's own error message from a response.

    Understands the common JSON error envelopes (``{"error": "..."}``,
    ``{"error": {"message": "..."}}``, ``{"message": "..."}``) and falls back
    to the raw body.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:500]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error:
            return str(error)
        if data.get("message"):
            return str(data["message"])

    return response.text.strip()[:500]
