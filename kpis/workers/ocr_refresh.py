from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar

from kpis.core.invoices import (
    ATTACHMENT_MODEL,
    EXTRACT_RESET_VALUES,
    EXTRACTION_METHOD,
    INVOICE_MODEL,
    many2one_id,
)
from kpis.core.notifications import OcrNotificationService, get_ocr_notification_service
from kpis.domain import (
    AttachmentLinkage,
    BatchResult,
    ErrorKind,
    InvoiceOutcome,
    OutcomeStatus,
)
from kpis.infrastructure import OdooError, RecordStore, classify_exception, get_record_store

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OcrRefreshWorker:
    """Re-runs Odoo's AI extraction for invoices that came back empty.

    Invoices are processed one after another. A failure on one invoice is
    recorded in the batch result and never stops the remaining ones.
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        notifications: OcrNotificationService | None = None,
        *,
        call_timeout: float | None = 30.0,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._call_timeout = call_timeout
        self._tasks: set[asyncio.Task[BatchResult | None]] = set()

    @property
    def store(self) -> RecordStore:
        return self._store or get_record_store()

    @property
    def notifications(self) -> OcrNotificationService:
        return self._notifications or get_ocr_notification_service()

    async def _remote(self, call: Awaitable[T]) -> T:
        if self._call_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._call_timeout)
        except asyncio.TimeoutError as exc:
            raise OdooError(
                f"Odoo API timeout after {self._call_timeout:g}s", ErrorKind.TIMEOUT
            ) from exc

    # ------------------------------------------------------------------
    # per-invoice steps
    # ------------------------------------------------------------------
    async def reset_extract_error_state(self, invoice_id: int) -> None:
        """Clear stale extraction errors, as the "Retry" button in Odoo does."""

        await self._remote(self.store.write(INVOICE_MODEL, [invoice_id], dict(EXTRACT_RESET_VALUES)))
        logger.debug("Extract error state cleared for invoice %s", invoice_id)

    async def ensure_attachment_linkage(self, invoice_id: int) -> AttachmentLinkage:
        rows = await self._remote(
            self.store.search_read(
                INVOICE_MODEL,
                [["id", "=", invoice_id]],
                fields=["id", "message_main_attachment_id"],
            )
        )
        if not rows:
            raise OdooError(f"Invoice {invoice_id} not found", ErrorKind.NOT_FOUND)

        attachment_id = many2one_id(rows[0].get("message_main_attachment_id"))
        if attachment_id is None:
            attachments = await self._remote(
                self.store.search_read(
                    ATTACHMENT_MODEL,
                    [["res_model", "=", INVOICE_MODEL], ["res_id", "=", invoice_id]],
                    fields=["id", "name", "mimetype"],
                    limit=1,
                )
            )
            if not attachments:
                logger.info("Invoice %s has no attachments to link", invoice_id)
                return AttachmentLinkage.NO_ATTACHMENT

            attachment_id = int(attachments[0]["id"])
            await self._remote(
                self.store.write(INVOICE_MODEL, [invoice_id], {"message_main_attachment_id": attachment_id})
            )
            logger.info("Linked attachment %s to invoice %s", attachment_id, invoice_id)

        await self.reset_extract_error_state(invoice_id)
        return AttachmentLinkage.LINKED

    async def trigger_extraction(self, invoice_id: int) -> Any:
        return await self._remote(self.store.execute_kw(INVOICE_MODEL, EXTRACTION_METHOD, [[invoice_id]]))

    async def process_invoice(self, invoice_id: int) -> InvoiceOutcome:
        linkage = AttachmentLinkage.UNKNOWN
        try:
            linkage = await self.ensure_attachment_linkage(invoice_id)
            if linkage is AttachmentLinkage.NO_ATTACHMENT:
                return InvoiceOutcome(
                    invoice_id=invoice_id,
                    status=OutcomeStatus.SKIPPED,
                    linkage=linkage,
                    error="No attachment found to process",
                )
            await self.trigger_extraction(invoice_id)
        except Exception as exc:
            logger.warning("Failed to refresh OCR data for invoice %s: %s", invoice_id, exc)
            return InvoiceOutcome(
                invoice_id=invoice_id,
                status=OutcomeStatus.FAILED,
                linkage=linkage,
                error=str(exc) or exc.__class__.__name__,
                error_kind=classify_exception(exc),
            )
        logger.info("OCR extraction triggered for invoice %s", invoice_id)
        return InvoiceOutcome(invoice_id=invoice_id, status=OutcomeStatus.SUCCESS, linkage=linkage)

    # ------------------------------------------------------------------
    # batches
    # ------------------------------------------------------------------
    async def refresh(self, invoice_ids: Iterable[int], *, batch_id: str | None = None) -> BatchResult:
        ids = list(invoice_ids)
        total = len(ids)
        notifications = self.notifications
        logger.info("Starting OCR refresh for %d invoices", total)

        started = time.monotonic()
        outcomes: list[InvoiceOutcome] = []
        for index, invoice_id in enumerate(ids):
            outcomes.append(await self.process_invoice(invoice_id))
            notifications.update_progress(index + 1, total, batch_id=batch_id)
        duration = int((time.monotonic() - started) * 1000)

        successful = sum(1 for item in outcomes if item.status is OutcomeStatus.SUCCESS)
        failed = sum(1 for item in outcomes if item.status is OutcomeStatus.FAILED)
        skipped = sum(1 for item in outcomes if item.status is OutcomeStatus.SKIPPED)

        logger.info(
            "OCR refresh completed in %dms: %d/%d successful, %d failed, %d without attachments",
            duration,
            successful,
            total,
            failed,
            skipped,
        )
        if failed:
            logger.warning(
                "Failed invoices: %s",
                [
                    {"id": item.invoice_id, "error": item.error, "attachment": item.linkage.value}
                    for item in outcomes
                    if item.status is OutcomeStatus.FAILED
                ],
            )

        return BatchResult(
            total_invoices=total,
            successful=successful,
            failed=failed,
            skipped=skipped,
            duration=duration,
            completed_at=datetime.now(timezone.utc),
            results=tuple(outcomes),
        )

    async def _run_batch(self, invoice_ids: list[int], batch_id: str) -> BatchResult | None:
        notifications = self.notifications
        try:
            result = await self.refresh(invoice_ids, batch_id=batch_id)
        except asyncio.CancelledError:
            notifications.fail_refresh("OCR refresh was cancelled", kind=ErrorKind.UNKNOWN, batch_id=batch_id)
            raise
        except Exception as exc:
            logger.exception("Background OCR refresh failed")
            notifications.fail_refresh(
                str(exc) or "Unknown error",
                kind=classify_exception(exc),
                batch_id=batch_id,
            )
            return None
        notifications.complete_refresh(result, batch_id=batch_id)
        return result

    def spawn(self, invoice_ids: Iterable[int]) -> asyncio.Task[BatchResult | None]:
        """Start a detached refresh batch on the running event loop."""

        loop = asyncio.get_running_loop()
        ids = list(invoice_ids)
        notifications = self.notifications
        batch_id = notifications.start_refresh(ids)
        batch = self._run_batch(ids, batch_id)
        try:
            task = loop.create_task(batch, name=f"ocr-refresh-{batch_id}")
        except Exception as exc:
            batch.close()
            notifications.fail_refresh(
                f"Could not start OCR refresh: {exc}", kind=ErrorKind.UNKNOWN, batch_id=batch_id
            )
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned batch to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_worker: OcrRefreshWorker | None = None


def configure_ocr_refresh_worker(worker: OcrRefreshWorker | None) -> None:
    global _worker
    _worker = worker


def get_ocr_refresh_worker() -> OcrRefreshWorker:
    global _worker
    if _worker is None:
        _worker = OcrRefreshWorker()
    return _worker
