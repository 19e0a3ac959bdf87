"""Client-side watcher for the OCR refresh status endpoint.

``OcrStatusPoller`` polls ``/api/invoices/ocr-status`` while the invoices a
caller is showing still lack extracted amounts, and turns every new terminal
result or error into exactly one :class:`Notification`.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from kpis.core.invoices import is_zero_value
from kpis.core.schema import BatchResultModel, OcrStatusResponse
from kpis.core.settings import Settings, load_settings
from kpis.domain import ErrorKind, Notification, NotificationLevel

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PATH = "/api/invoices/ocr-status"

ERROR_MESSAGES: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.NETWORK: (
        "Network Connection Error",
        "Unable to connect to the OCR service. Please check your internet connection and try again.",
    ),
    ErrorKind.AUTHENTICATION: (
        "Authentication Error",
        "Your session has expired. Please refresh the page and try again.",
    ),
    ErrorKind.PERMISSION: (
        "Permission Denied",
        "You do not have permission to perform OCR refresh operations.",
    ),
    ErrorKind.NOT_FOUND: (
        "Service Unavailable",
        "The OCR service is not available. Please contact support.",
    ),
    ErrorKind.SERVER: (
        "Server Error",
        "The OCR service encountered an internal error. Please try again later.",
    ),
    ErrorKind.UNAVAILABLE: (
        "Service Temporarily Unavailable",
        "The OCR service is temporarily down. Please try again in a few minutes.",
    ),
    ErrorKind.TIMEOUT: (
        "Request Timeout",
        "The OCR refresh operation took too long. Please try again.",
    ),
    ErrorKind.ODOO: (
        "Odoo Service Error",
        "Unable to communicate with the Odoo system. Please try again later.",
    ),
}

# Only used for snapshots that carry no error kind.
_MESSAGE_PATTERNS: list[tuple[tuple[str, ...], ErrorKind]] = [
    (("Network error", "fetch"), ErrorKind.NETWORK),
    (("Authentication error", "401"), ErrorKind.AUTHENTICATION),
    (("Permission denied", "403"), ErrorKind.PERMISSION),
    (("Service not found", "404"), ErrorKind.NOT_FOUND),
    (("Server error", "500"), ErrorKind.SERVER),
    (("Service unavailable", "502", "503", "504"), ErrorKind.UNAVAILABLE),
    (("timeout",), ErrorKind.TIMEOUT),
    (("Odoo API",), ErrorKind.ODOO),
]


def infer_error_kind(message: str) -> ErrorKind:
    for needles, kind in _MESSAGE_PATTERNS:
        if any(needle in message for needle in needles):
            return kind
    return ErrorKind.UNKNOWN


def needs_ocr_processing(invoices: Any, enabled: bool = True) -> bool:
    """Whether any of ``invoices`` (one record or many) still has no amount."""

    if not enabled or not invoices:
        return False
    if isinstance(invoices, Mapping) or not isinstance(invoices, Iterable):
        invoices = [invoices]
    return any(is_zero_value(invoice) for invoice in invoices)


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def notification_for_result(result: BatchResultModel) -> Notification:
    successful = result.successful
    total = result.total_invoices
    if successful == total:
        return Notification(
            level=NotificationLevel.SUCCESS,
            title="OCR Refresh Complete",
            description=(
                f"Successfully refreshed {successful} invoice{_plural(successful)} "
                f"in {int(result.duration / 1000 + 0.5)}s"
            ),
            duration_ms=5000,
        )
    if successful > 0:
        return Notification(
            level=NotificationLevel.WARNING,
            title="OCR Refresh Partially Complete",
            description=(
                f"Refreshed {successful}/{total} invoices successfully. {result.failed} failed."
            ),
            duration_ms=7000,
        )
    return Notification(
        level=NotificationLevel.ERROR,
        title="OCR Refresh Failed",
        description=f"Failed to refresh {total} invoice{_plural(total)}. Please try again.",
        duration_ms=7000,
    )


def notification_for_error(message: str, kind: ErrorKind | None = None) -> Notification:
    if kind is None or kind is ErrorKind.UNKNOWN:
        kind = infer_error_kind(message)
    title, description = ERROR_MESSAGES.get(kind, ("OCR Refresh Error", message))
    return Notification(level=NotificationLevel.ERROR, title=title, description=description, duration_ms=7000)


class OcrStatusPoller:
    def __init__(
        self,
        client: httpx.AsyncClient,
        notify: Callable[[Notification], None],
        *,
        interval: float = 2.0,
        status_path: str = DEFAULT_STATUS_PATH,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._client = client
        self._notify = notify
        self._interval = interval
        self._status_path = status_path
        self._last_surfaced: str | None = None
        self._task: asyncio.Task[None] | None = None
        self.status = OcrStatusResponse()

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        notify: Callable[[Notification], None],
        settings: Settings | None = None,
    ) -> "OcrStatusPoller":
        settings = settings or load_settings()
        return cls(client, notify, interval=settings.poll_interval)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def observe(self, status: OcrStatusResponse) -> list[Notification]:
        """Return the notifications a new snapshot calls for."""

        notifications: list[Notification] = []
        result = status.last_result
        if result is not None and result.completed_at is not None:
            marker = result.completed_at.isoformat()
            if marker != self._last_surfaced:
                notifications.append(notification_for_result(result))
                self._last_surfaced = marker

        if status.last_error and status.last_error != self._last_surfaced:
            notifications.append(notification_for_error(status.last_error, status.last_error_kind))
            self._last_surfaced = status.last_error
        return notifications

    async def poll_once(self) -> list[Notification]:
        try:
            response = await self._client.get(self._status_path)
        except httpx.HTTPError as exc:
            logger.warning("Error polling OCR status: %s", exc)
            return []
        if not response.is_success:
            return []
        try:
            status = OcrStatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("Unreadable OCR status payload: %s", exc)
            return []

        self.status = status
        notifications = self.observe(status)
        for notification in notifications:
            try:
                self._notify(notification)
            except Exception:
                logger.exception("OCR status notification handler failed")
        return notifications

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)

    async def update(self, invoices: Any, *, enabled: bool = True, interval: float | None = None) -> None:
        """Start or stop polling to match the invoices currently displayed."""

        if interval is not None and interval != self._interval:
            if interval <= 0:
                raise ValueError("interval must be positive")
            self._interval = interval
            await self.stop()

        if not needs_ocr_processing(invoices, enabled):
            await self.stop()
            return
        if not self.polling:
            self._task = asyncio.get_running_loop().create_task(self._run(), name="ocr-status-poller")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "OcrStatusPoller":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
