"""Redaction helpers for logging request payloads."""

import re
from typing import Any

SENSITIVE_KEYS = {"password", "secret", "token", "key", "credential", "auth"}
REDACTED = "***REDACTED***"


def redact_data_url(value: str) -> str | None:
    """Summarize an image data URL instead of logging its payload.

    Returns:
        A short description, or None if the value is not an image data URL
    """
    if not value.startswith("data:image/"):
        return None
    if ";base64," not in value:
        return "<redacted image data url>"
    header, payload = value.split(",", 1)
    mime_match = re.match(r"^data:(image/[^;]+);base64$", header, flags=re.IGNORECASE)
    mime = mime_match.group(1) if mime_match else "image/unknown"
    return f"<image data url mime={mime} base64_chars={len(payload)}>"


def redact_params(params: Any, enabled: bool = True) -> Any:
    """Redact sensitive values from a payload before logging it.

    Keys containing any of SENSITIVE_KEYS are masked; nested dicts and lists
    are walked; image data URLs are summarized.

    Args:
        params: Payload to redact
        enabled: When False the payload is returned untouched

    Returns:
        Redacted copy safe for logging
    """
    if not enabled:
        return params

    if isinstance(params, dict):
        redacted = {}
        for key, value in params.items():
            key_lower = str(key).lower()
            if key_lower == "credentials" and isinstance(value, dict):
                redacted[key] = {k: REDACTED for k in value}
            elif any(sk in key_lower for sk in SENSITIVE_KEYS):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_params(value, enabled)
        return redacted
    if isinstance(params, list):
        return [redact_params(item, enabled) for item in params]
    if isinstance(params, str):
        summary = redact_data_url(params)
        return summary if summary is not None else params
    return params
