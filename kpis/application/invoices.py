"""Invoice use cases backed by the Odoo record store."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from kpis.core.invoices import (
    ATTACHMENT_MODEL,
    EXTRACTION_METHOD,
    INVOICE_MODEL,
    LINE_ITEM_MODEL,
    is_zero_value,
    many2one_id,
    refresh_candidates,
)
from kpis.domain import InvoiceOutcome
from kpis.infrastructure import OdooError, RecordStore, get_record_store
from kpis.workers.ocr_refresh import OcrRefreshWorker, get_ocr_refresh_worker

logger = logging.getLogger(__name__)

LIST_FIELDS = [
    "id",
    "partner_id",
    "invoice_date",
    "invoice_date_due",
    "amount_untaxed",
    "currency_id",
    "x_studio_project_manager_review_status",
    "x_studio_project_manager_1",
    "state",
    "name",
    "x_studio_is_over_budget",
    "x_studio_amount_over_budget",
    "x_studio_cfo_sign_off",
    "x_studio_ceo_sign_off",
]

DETAIL_FIELDS = [
    "id",
    "partner_id",
    "invoice_date",
    "invoice_date_due",
    "amount_untaxed",
    "currency_id",
    "x_studio_project_manager_review_status",
    "x_studio_project_manager_1",
    "state",
    "name",
    "message_main_attachment_id",
    "invoice_line_ids",
]

EXTRACT_STATUS_FIELDS = [
    "id",
    "extract_state",
    "extract_status",
    "extract_error_message",
    "message_main_attachment_id",
    "state",
    "amount_untaxed",
]

DIAGNOSE_FIELDS = [
    "id",
    "name",
    "state",
    "amount_untaxed",
    "message_main_attachment_id",
    "partner_id",
    "invoice_date",
]


@dataclass(slots=True)
class InvoiceListing:
    invoices: list[dict[str, Any]]
    ocr_refresh_performed: bool = False
    zero_value_invoice_ids: list[int] = field(default_factory=list)

    @property
    def zero_value_invoices_refreshed(self) -> int:
        return len(self.zero_value_invoice_ids)


class InvoiceService:
    """Reads vendor bills and schedules OCR refreshes for empty ones."""

    def __init__(self, store: RecordStore | None = None, worker: OcrRefreshWorker | None = None) -> None:
        self._store = store
        self._worker = worker

    @property
    def store(self) -> RecordStore:
        return self._store or get_record_store()

    @property
    def worker(self) -> OcrRefreshWorker:
        return self._worker or get_ocr_refresh_worker()

    @staticmethod
    def _domain(alias: str | None) -> list[list[Any]]:
        domain: list[list[Any]] = [["move_type", "=", "in_invoice"], ["state", "!=", "cancel"]]
        if alias:
            domain.append(["x_studio_project_manager_1", "=", alias.lower()])
        return domain

    async def _attach(self, invoices: list[dict[str, Any]], *, include_data: bool = False) -> None:
        if not invoices:
            return
        attachment_fields = ["id", "name", "mimetype", "res_id"]
        if include_data:
            attachment_fields.append("datas")
        rows = await self.store.search_read(
            ATTACHMENT_MODEL,
            [["res_model", "=", INVOICE_MODEL], ["res_id", "in", [invoice["id"] for invoice in invoices]]],
            fields=attachment_fields,
        )
        grouped: dict[int, list[dict[str, Any]]] = {}
        for row in rows:
            res_id = row.get("res_id")
            if not res_id:
                continue
            entry = {"id": row["id"], "name": row.get("name"), "mimetype": row.get("mimetype")}
            if include_data:
                entry["datas"] = row.get("datas")
            grouped.setdefault(int(res_id), []).append(entry)
        for invoice in invoices:
            invoice["attachments"] = grouped.get(invoice["id"], [])

    # ------------------------------------------------------------------
    # listing
    # ------------------------------------------------------------------
    async def count_invoices(self, alias: str | None = None) -> int:
        return await self.store.search_count(INVOICE_MODEL, self._domain(alias))

    async def list_invoices(
        self,
        alias: str | None = None,
        *,
        skip_ocr_refresh: bool = False,
        limit: int | None = None,
        offset: int | None = None,
        include_attachment_data: bool = False,
    ) -> InvoiceListing:
        invoices = await self.store.search_read(
            INVOICE_MODEL,
            self._domain(alias),
            fields=LIST_FIELDS,
            limit=limit,
            offset=offset,
        )
        await self._attach(invoices, include_data=include_attachment_data)

        if skip_ocr_refresh:
            return InvoiceListing(invoices=invoices)

        zero_value = sum(1 for invoice in invoices if is_zero_value(invoice))
        candidates = refresh_candidates(invoices)
        if not candidates:
            if zero_value:
                logger.info("Found %d zero-value invoices, but none have attachments to process", zero_value)
            return InvoiceListing(invoices=invoices)

        logger.info(
            "Found %d zero-value invoices, %d have attachments to process", zero_value, len(candidates)
        )
        self.worker.spawn(candidates)
        return InvoiceListing(invoices=invoices, ocr_refresh_performed=True, zero_value_invoice_ids=candidates)

    # ------------------------------------------------------------------
    # single invoice
    # ------------------------------------------------------------------
    async def get_invoice(self, invoice_id: int, *, auto_fix: bool = True) -> dict[str, Any] | None:
        rows = await self.store.search_read(
            INVOICE_MODEL,
            [["id", "=", invoice_id], ["move_type", "=", "in_invoice"], ["state", "!=", "cancel"]],
            fields=DETAIL_FIELDS,
        )
        if not rows:
            return None
        invoice = rows[0]

        line_ids = invoice.get("invoice_line_ids") or []
        if line_ids:
            invoice["line_items"] = await self.store.search_read(
                LINE_ITEM_MODEL,
                [["id", "in", list(line_ids)], ["display_type", "=", False]],
                fields=["id", "account_id", "analytic_distribution", "price_subtotal", "name"],
            )
        await self._attach([invoice], include_data=True)

        if auto_fix and is_zero_value(invoice) and invoice["attachments"]:
            logger.info("Invoice %s has zero value with attachments, running auto-fix", invoice_id)
            outcome = await self.worker.process_invoice(invoice_id)
            if not outcome.success:
                logger.warning("Auto-fix failed for invoice %s: %s", invoice_id, outcome.error)
        return invoice

    async def get_extract_status(self, invoice_id: int) -> dict[str, Any] | None:
        rows = await self.store.search_read(
            INVOICE_MODEL, [["id", "=", invoice_id]], fields=EXTRACT_STATUS_FIELDS
        )
        if not rows:
            return None
        invoice = rows[0]
        return {
            "invoice": invoice,
            "interpretation": {
                "extract_state": invoice.get("extract_state") or "not set",
                "has_attachment": many2one_id(invoice.get("message_main_attachment_id")) is not None,
                "is_zero_value": is_zero_value(invoice),
            },
        }

    async def diagnose(self, invoice_id: int) -> dict[str, Any] | None:
        """Explain why an invoice's document or amount might be missing."""

        rows = await self.store.search_read(
            INVOICE_MODEL, [["id", "=", invoice_id]], fields=DIAGNOSE_FIELDS
        )
        if not rows:
            return None
        invoice = rows[0]
        attachments = await self.store.search_read(
            ATTACHMENT_MODEL,
            [["res_model", "=", INVOICE_MODEL], ["res_id", "=", invoice_id]],
            fields=["id", "name", "mimetype", "create_date"],
        )

        has_attachments = bool(attachments)
        has_main_attachment = many2one_id(invoice.get("message_main_attachment_id")) is not None
        has_zero_value = is_zero_value(invoice)
        is_cancelled = invoice.get("state") == "cancel"
        refresh_path = f"/api/invoices/{invoice_id}/refresh-ocr"

        issue: str | None = None
        if is_cancelled:
            issue = "Invoice is cancelled"
            recommendation = "Cancelled invoices are excluded from processing"
        elif not has_attachments:
            issue = "No attachments found"
            recommendation = "This invoice has no attachments to process. Upload an attachment in Odoo first."
        elif not has_main_attachment:
            issue = "Attachment exists but message_main_attachment_id is not set"
            recommendation = f"Call POST {refresh_path} to link the attachment and trigger OCR"
        elif has_zero_value:
            issue = "Attachment is linked but OCR has not populated values"
            recommendation = f"Call POST {refresh_path} to trigger OCR processing"
        else:
            recommendation = "Invoice appears to be properly configured"

        return {
            "invoice": {
                "id": invoice["id"],
                "name": invoice.get("name"),
                "state": invoice.get("state"),
                "amount_untaxed": invoice.get("amount_untaxed"),
                "message_main_attachment_id": invoice.get("message_main_attachment_id"),
            },
            "attachments": [
                {
                    "id": row["id"],
                    "name": row.get("name"),
                    "mimetype": row.get("mimetype"),
                    "created": row.get("create_date"),
                }
                for row in attachments
            ],
            "diagnosis": {
                "hasAttachments": has_attachments,
                "hasMainAttachmentId": has_main_attachment,
                "hasZeroValue": has_zero_value,
                "isCancelled": is_cancelled,
                "issue": issue,
                "recommendation": recommendation,
            },
            "actions": {"fixAttachmentLinkage": refresh_path},
        }

    async def refresh_invoice(self, invoice_id: int) -> InvoiceOutcome:
        """Run the refresh steps for one invoice and wait for the outcome."""

        return await self.worker.process_invoice(invoice_id)

    async def force_relink(self, invoice_id: int) -> dict[str, Any] | None:
        """Clear and re-set the main attachment, then trigger extraction.

        Returns ``None`` when the invoice does not exist and raises
        ``ValueError`` when it has no main attachment to relink.
        """

        rows = await self.store.search_read(
            INVOICE_MODEL, [["id", "=", invoice_id]], fields=["id", "message_main_attachment_id"]
        )
        if not rows:
            return None
        attachment_id = many2one_id(rows[0].get("message_main_attachment_id"))
        if attachment_id is None:
            raise ValueError("No attachment to relink")

        logger.info("Force re-linking attachment %s to invoice %s", attachment_id, invoice_id)
        await self.store.write(INVOICE_MODEL, [invoice_id], {"message_main_attachment_id": False})
        await self.store.write(INVOICE_MODEL, [invoice_id], {"message_main_attachment_id": attachment_id})

        try:
            await self.store.execute_kw(INVOICE_MODEL, EXTRACTION_METHOD, [[invoice_id]])
        except OdooError as exc:
            return {
                "success": False,
                "message": "Attachment re-linked but OCR failed",
                "attachment_id": attachment_id,
                "ocr_error": str(exc),
                "ocr_error_kind": exc.kind.value,
            }
        return {
            "success": True,
            "message": "Attachment re-linked and OCR triggered",
            "attachment_id": attachment_id,
        }


_service = InvoiceService()


def get_invoice_service() -> InvoiceService:
    """Return the singleton invoice service for the process."""

    return _service
