"""Serverless-style JSON request handlers.

Handlers take a Lambda/Netlify event dict and return a HandlerResponse.
They never raise: every outcome, including internal errors, is rendered as
JSON with an appropriate status code.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sm_automation.core.config import Config
from sm_automation.core.exceptions import (
    CredentialsMissingError,
    ResourceUnavailableError,
    ValidationError,
)
from sm_automation.models.results import isoformat_utc
from sm_automation.models.tenants import TENANTS, get_tenant, resolve_target
from sm_automation.utils.redaction import redact_params
from sm_automation.workflows.controller import SessionController

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Cache-Control": "no-store",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@dataclass
class HandlerResponse:
    """Transport-neutral HTTP response.

    Attributes:
        status_code: HTTP status
        body: JSON-serializable payload (None for an empty body)
        headers: Extra headers on top of the JSON defaults
    """

    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def to_lambda(self) -> dict[str, Any]:
        """Render in the Lambda/Netlify proxy response format."""
        return {
            "statusCode": self.status_code,
            "headers": {**JSON_HEADERS, **self.headers},
            "body": "" if self.body is None else json.dumps(self.body),
        }


def event_method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method")
    return (method or "").upper()


def event_body(event: dict[str, Any]) -> Any:
    """Decode the JSON body of an event.

    Raises:
        ValueError: If the body is not valid JSON
    """
    raw = event.get("body") or "{}"
    if isinstance(raw, dict):
        return raw
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError("Invalid base64 body") from e
    return json.loads(raw)


def _error(status_code: int, message: str) -> HandlerResponse:
    return HandlerResponse(status_code, {"success": False, "error": message})


class AutomationHandler:
    """POST endpoint: sign a store in and optionally screenshot a report.

    Request body::

        {"action": "login", "store": "allerton", "reportType": "complete-tasks",
         "credentials": {"email": ..., "password": ...}, "takeScreenshot": true}

    ``reportType`` must be a catalogue target key; URLs are rejected.
    """

    def __init__(self, controller: SessionController, config: Config | None = None) -> None:
        self.controller = controller
        self.config = config or controller.config

    async def handle(self, event: dict[str, Any]) -> HandlerResponse:
        method = event_method(event)
        if method == "OPTIONS":
            return HandlerResponse(200, None, dict(CORS_HEADERS))
        if method != "POST":
            return _error(405, "Method not allowed")

        try:
            payload = event_body(event)
        except ValueError:
            return _error(400, "Invalid JSON payload")
        if not isinstance(payload, dict):
            return _error(400, "Invalid JSON payload")

        logger.info(f"Automation request: {redact_params(payload, self.config.redact_sensitive)}")

        if payload.get("action", "login") != "login":
            return _error(400, "Invalid action")

        try:
            tenant = get_tenant(str(payload.get("store") or ""))
        except ValidationError:
            return _error(400, f"Invalid store. Use {', '.join(TENANTS)}.")

        try:
            target = resolve_target(str(payload.get("reportType") or tenant.default_target))
        except ValidationError as e:
            return _error(400, e.message)

        try:
            result = await self.controller.run(
                tenant.key,
                target,
                take_snapshot=bool(payload.get("takeScreenshot", False)),
                credentials=payload.get("credentials"),
            )
        except CredentialsMissingError:
            return _error(
                400,
                f"Missing credentials for {tenant.label}. Save them in Sushi Metrics "
                f"or set TRAIL_{tenant.key.upper()}_* environment variables.",
            )
        except ValidationError as e:
            return _error(400, e.message)
        except ResourceUnavailableError as e:
            logger.error(f"Automation context unavailable for {tenant.key}: {e}")
            return _error(500, e.message)
        except Exception:
            logger.exception("Unhandled error in automation handler")
            return _error(500, "Internal server error")

        return HandlerResponse(200 if result.success else 500, result.to_dict())


class SnapshotHandler:
    """GET endpoint: ``?account=<store>`` returns a PNG snapshot of its default page."""

    def __init__(self, controller: SessionController) -> None:
        self.controller = controller

    async def handle(self, event: dict[str, Any]) -> HandlerResponse:
        params = event.get("queryStringParameters") or {}
        account = str(params.get("account") or "").strip().lower()

        try:
            tenant = get_tenant(account)
        except ValidationError:
            return HandlerResponse(400, {"error": f"Invalid account. Use {'|'.join(TENANTS)}"})

        try:
            result = await self.controller.snapshot_account(tenant.key)
        except CredentialsMissingError:
            return HandlerResponse(
                400,
                {"error": f"Missing credentials for {tenant.key}. Add them in Sushi Metrics "
                          f"or set TRAIL_* environment variables."},
            )
        except ResourceUnavailableError as e:
            logger.error(f"Snapshot context unavailable for {tenant.key}: {e}")
            return HandlerResponse(500, {"error": e.message})
        except Exception:
            logger.exception("Unhandled error in snapshot handler")
            return HandlerResponse(500, {"error": "Internal error"})

        if not result.success or result.snapshot is None:
            return HandlerResponse(500, {"error": result.error or "No image captured"})

        return HandlerResponse(
            200,
            {
                "image": result.snapshot.to_data_url(),
                "ts": isoformat_utc(result.snapshot.captured_at),
            },
        )


def make_lambda_handler(
    handler: AutomationHandler | SnapshotHandler,
) -> Callable[[dict[str, Any], Any], dict[str, Any]]:
    """Wrap an async handler as a synchronous ``(event, context)`` function.

    A dedicated event loop is kept for the lifetime of the function so that
    pooled browser sessions survive between warm invocations.
    """
    loop = asyncio.new_event_loop()

    def lambda_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
        response = loop.run_until_complete(handler.handle(event))
        return response.to_lambda()

    return lambda_handler
