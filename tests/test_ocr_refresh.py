from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kpis.core.invoices import EXTRACT_RESET_VALUES
from kpis.core.notifications import OcrNotificationService
from kpis.domain import AttachmentLinkage, ErrorKind, OutcomeStatus
from kpis.infrastructure import InMemoryRecordStore, OdooError
from kpis.workers.ocr_refresh import OcrRefreshWorker


class RecordingNotifications(OcrNotificationService):
    def __init__(self) -> None:
        super().__init__()
        self.progress_calls: list[tuple[int, int]] = []

    def update_progress(self, completed, total, *, batch_id=None):
        self.progress_calls.append((completed, total))
        super().update_progress(completed, total, batch_id=batch_id)


class ExplodingNotifications(OcrNotificationService):
    def update_progress(self, completed, total, *, batch_id=None):
        raise RuntimeError("progress sink exploded")


@pytest.fixture()
def store() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.add_record("account.move", {"id": 1, "amount_untaxed": 0, "message_main_attachment_id": False})
    store.add_record("account.move", {"id": 2, "amount_untaxed": 0, "message_main_attachment_id": False})
    store.add_record("account.move", {"id": 3, "amount_untaxed": None, "message_main_attachment_id": [30, "bill.pdf"]})
    store.add_record("ir.attachment", {"id": 20, "name": "scan.pdf", "res_model": "account.move", "res_id": 2})
    store.add_record("ir.attachment", {"id": 21, "name": "scan-2.pdf", "res_model": "account.move", "res_id": 2})
    store.add_record("ir.attachment", {"id": 30, "name": "bill.pdf", "res_model": "account.move", "res_id": 3})

    def extract(ids):
        if ids == [3]:
            raise OdooError("rate limited")
        return True

    store.register_method("account.move", "action_reload_ai_data", extract)
    return store


def test_refresh_aggregates_success_failure_and_skip(store):
    notifications = RecordingNotifications()
    worker = OcrRefreshWorker(store, notifications)
    batch_id = notifications.start_refresh([1, 2, 3])

    result = asyncio.run(worker.refresh([1, 2, 3], batch_id=batch_id))

    assert result.total_invoices == 3
    assert result.successful == 1
    assert result.failed == 1
    assert result.skipped == 1
    assert [item.invoice_id for item in result.results] == [1, 2, 3]
    assert [item.status for item in result.results] == [
        OutcomeStatus.SKIPPED,
        OutcomeStatus.SUCCESS,
        OutcomeStatus.FAILED,
    ]
    assert result.results[0].linkage is AttachmentLinkage.NO_ATTACHMENT
    assert result.results[2].error == "rate limited"
    assert result.results[2].error_kind is ErrorKind.ODOO
    assert notifications.progress_calls == [(1, 3), (2, 3), (3, 3)]


def test_refresh_links_first_attachment_and_resets_errors(store):
    worker = OcrRefreshWorker(store, OcrNotificationService())
    asyncio.run(worker.refresh([2]))

    assert store.writes("account.move") == [
        ([2], {"message_main_attachment_id": 20}),
        ([2], EXTRACT_RESET_VALUES),
    ]
    assert store.get_record("account.move", 2)["extract_state"] == "no_extract_requested"
    assert ("execute_kw", "account.move.action_reload_ai_data", ([2],)) in store.calls


def test_skipped_invoice_is_never_extracted(store):
    worker = OcrRefreshWorker(store, OcrNotificationService())
    asyncio.run(worker.refresh([1]))

    assert store.writes() == []
    assert not [call for call in store.calls if call[0] == "execute_kw"]


def test_existing_linkage_still_resets_error_state():
    store = InMemoryRecordStore()
    store.add_record("account.move", {"id": 9, "amount_untaxed": 0, "message_main_attachment_id": [90, "a.pdf"]})
    store.register_method("account.move", "action_reload_ai_data", lambda ids: True)
    worker = OcrRefreshWorker(store, OcrNotificationService())

    result = asyncio.run(worker.refresh([9]))

    assert result.successful == 1
    assert store.writes("account.move") == [([9], EXTRACT_RESET_VALUES)]


def test_missing_invoice_is_a_soft_failure(store):
    worker = OcrRefreshWorker(store, OcrNotificationService())
    result = asyncio.run(worker.refresh([404, 2]))

    assert result.failed == 1
    assert result.successful == 1
    assert result.results[0].error_kind is ErrorKind.NOT_FOUND


def test_hung_remote_call_times_out_per_invoice():
    store = InMemoryRecordStore()
    store.add_record("account.move", {"id": 5, "amount_untaxed": 0, "message_main_attachment_id": 50})
    store.add_record("account.move", {"id": 6, "amount_untaxed": 0, "message_main_attachment_id": 60})

    async def slow_extract(ids):
        if ids == [5]:
            await asyncio.sleep(5)
        return True

    store.register_method("account.move", "action_reload_ai_data", slow_extract)
    worker = OcrRefreshWorker(store, OcrNotificationService(), call_timeout=0.05)

    result = asyncio.run(worker.refresh([5, 6]))

    assert result.results[0].status is OutcomeStatus.FAILED
    assert result.results[0].error_kind is ErrorKind.TIMEOUT
    assert result.results[1].status is OutcomeStatus.SUCCESS


def test_spawn_runs_detached_and_completes(store):
    notifications = OcrNotificationService()
    worker = OcrRefreshWorker(store, notifications)

    async def scenario():
        task = worker.spawn([1, 2, 3])
        running = notifications.get_snapshot()
        await task
        return running

    running = asyncio.run(scenario())

    assert running.is_running is True
    assert running.progress.total == 3
    snapshot = notifications.get_snapshot()
    assert snapshot.is_running is False
    assert snapshot.last_result.successful == 1
    assert snapshot.last_result.failed == 1
    assert snapshot.last_result.skipped == 1
    assert worker.pending == 0


def test_unexpected_failure_is_reported_as_batch_error(store):
    notifications = ExplodingNotifications()
    worker = OcrRefreshWorker(store, notifications)

    async def scenario():
        return await worker.spawn([2])

    assert asyncio.run(scenario()) is None

    snapshot = notifications.get_snapshot()
    assert snapshot.is_running is False
    assert snapshot.last_error == "progress sink exploded"
    assert snapshot.last_error_kind is ErrorKind.UNKNOWN
    assert snapshot.last_result is None


def test_spawn_outside_event_loop_leaves_store_idle(store):
    notifications = OcrNotificationService()
    worker = OcrRefreshWorker(store, notifications)

    with pytest.raises(RuntimeError):
        worker.spawn([1])

    assert notifications.get_snapshot().is_running is False
    assert worker.pending == 0


def test_spawn_reports_task_creation_failure(store, monkeypatch):
    notifications = OcrNotificationService()
    worker = OcrRefreshWorker(store, notifications)

    async def scenario():
        loop = asyncio.get_running_loop()

        def refuse(coro, **kwargs):
            raise RuntimeError("loop is shutting down")

        with monkeypatch.context() as patch:
            patch.setattr(loop, "create_task", refuse)
            with pytest.raises(RuntimeError):
                worker.spawn([1, 2])

    asyncio.run(scenario())

    snapshot = notifications.get_snapshot()
    assert snapshot.is_running is False
    assert snapshot.last_error == "Could not start OCR refresh: loop is shutting down"
    assert worker.pending == 0
