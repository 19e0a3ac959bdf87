"""In-process state of the background OCR refresh.

The service tracks a single batch at a time. Every mutation publishes a new
frozen :class:`RefreshSnapshot`, so readers always see a consistent state
without taking a lock.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from collections.abc import Collection
from datetime import datetime, timezone

from kpis.domain import BatchResult, ErrorKind, RefreshProgress, RefreshSnapshot

logger = logging.getLogger(__name__)


class OcrNotificationService:
    """Single-writer, many-reader store for OCR refresh progress."""

    def __init__(self) -> None:
        self._snapshot = RefreshSnapshot()
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _accepts(self, action: str, batch_id: str | None) -> bool:
        current = self._snapshot
        if not current.is_running:
            logger.warning("Ignoring OCR refresh %s: no batch is running", action)
            return False
        if batch_id is not None and batch_id != current.batch_id:
            logger.warning(
                "Ignoring OCR refresh %s from superseded batch %s (current %s)",
                action,
                batch_id,
                current.batch_id,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def start_refresh(self, invoice_ids: Collection[int]) -> str:
        """Begin tracking a new batch and return its id.

        A batch that is still running is replaced. The previous terminal
        result or error stays visible until this batch finishes.
        """

        batch_id = uuid.uuid4().hex
        with self._write_lock:
            previous = self._snapshot
            if previous.is_running:
                logger.warning("OCR refresh batch %s replaced by %s while running", previous.batch_id, batch_id)
            self._snapshot = RefreshSnapshot(
                is_running=True,
                batch_id=batch_id,
                start_time=datetime.now(timezone.utc),
                progress=RefreshProgress(completed=0, total=len(invoice_ids)),
                last_result=previous.last_result,
                last_error=previous.last_error,
                last_error_kind=previous.last_error_kind,
            )
        logger.info("OCR refresh batch %s started for %d invoices", batch_id, len(invoice_ids))
        return batch_id

    def update_progress(self, completed: int, total: int, *, batch_id: str | None = None) -> None:
        with self._write_lock:
            if not self._accepts("progress update", batch_id):
                return
            current = self._snapshot
            if current.progress is not None and completed < current.progress.completed:
                logger.warning(
                    "Ignoring OCR refresh progress regression %d -> %d",
                    current.progress.completed,
                    completed,
                )
                return
            self._snapshot = dataclasses.replace(
                current, progress=RefreshProgress(completed=completed, total=total)
            )

    def complete_refresh(self, result: BatchResult, *, batch_id: str | None = None) -> None:
        with self._write_lock:
            if not self._accepts("completion", batch_id):
                return
            if result.completed_at is None:
                result = dataclasses.replace(result, completed_at=datetime.now(timezone.utc))
            self._snapshot = RefreshSnapshot(
                is_running=False,
                batch_id=self._snapshot.batch_id,
                last_result=result,
            )

    def fail_refresh(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        batch_id: str | None = None,
    ) -> None:
        with self._write_lock:
            if not self._accepts("failure", batch_id):
                return
            self._snapshot = RefreshSnapshot(
                is_running=False,
                batch_id=self._snapshot.batch_id,
                last_error=message,
                last_error_kind=kind,
            )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_snapshot(self) -> RefreshSnapshot:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._snapshot.is_running

    def reset(self) -> None:
        with self._write_lock:
            self._snapshot = RefreshSnapshot()


_service = OcrNotificationService()


def get_ocr_notification_service() -> OcrNotificationService:
    """Return the process-wide notification service."""

    return _service


def reset_ocr_notifications() -> None:
    """Forget any tracked batch (used in tests)."""

    _service.reset()
