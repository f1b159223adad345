"""Best-effort full-page snapshot capture."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sm_automation.core.exceptions import CaptureFailedError
from sm_automation.models.results import SnapshotResult, utcnow

logger = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY = 80
SNAPSHOT_FORMATS = ("jpeg", "png")


class SnapshotCapture:
    """Captures an encoded image of the current page state.

    Success snapshots wait for network idle plus a short settle delay and are
    encoded as JPEG. Diagnostic snapshots (taken after a failure) skip the
    settle delay and use PNG. Any failure is logged and reported as None.
    """

    def __init__(
        self,
        idle_timeout: float = 10.0,
        settle_delay: float = 2.0,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        self.idle_timeout = idle_timeout
        self.settle_delay = settle_delay
        self.jpeg_quality = jpeg_quality

    async def _wait_for_idle(self, page: Any) -> None:
        try:
            await page.wait_for_load_state("networkidle", timeout=self.idle_timeout * 1000)
        except Exception as e:
            # Long-polling dashboards never go idle; capture anyway.
            logger.debug(f"Network idle wait ended early: {type(e).__name__}")

    async def _screenshot(self, page: Any, image_format: str) -> bytes:
        options: dict[str, Any] = {"type": image_format, "full_page": True}
        if image_format == "jpeg":
            options["quality"] = self.jpeg_quality
        try:
            data = await page.screenshot(**options)
        except Exception as e:
            raise CaptureFailedError(
                f"Screenshot failed: {type(e).__name__}",
                details={"format": image_format},
            ) from e
        if not data:
            raise CaptureFailedError("Screenshot returned no data")
        return data

    async def capture(
        self,
        page: Any,
        image_format: str = "jpeg",
        settle: bool = True,
    ) -> SnapshotResult | None:
        """Capture the page.

        Args:
            page: Playwright page (or compatible)
            image_format: "jpeg" or "png"
            settle: Wait for network idle and the settle delay first

        Returns:
            SnapshotResult, or None if capture failed
        """
        if image_format not in SNAPSHOT_FORMATS:
            logger.warning(f"Snapshot skipped: unsupported image format {image_format}")
            return None
        try:
            if settle:
                await self._wait_for_idle(page)
                if self.settle_delay > 0:
                    await asyncio.sleep(self.settle_delay)
            data = await self._screenshot(page, image_format)
        except CaptureFailedError as e:
            logger.warning(f"Snapshot capture failed: {e.message}")
            return None
        return SnapshotResult(encoded_image=data, captured_at=utcnow(), image_format=image_format)

    async def capture_diagnostic(self, page: Any) -> SnapshotResult | None:
        """PNG capture of the page as it is right now (used after failures)."""
        return await self.capture(page, image_format="png", settle=False)
