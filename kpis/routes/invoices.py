from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query

from kpis.application import InvoiceService, get_invoice_service
from kpis.core.invoices import is_zero_value
from kpis.core.notifications import OcrNotificationService, get_ocr_notification_service
from kpis.core.schema import InvoiceOutcomeModel, OcrStatusResponse

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("")
async def list_invoices(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    alias: str | None = Query(default=None),
    skip_ocr_refresh: bool = Query(default=False),
    service: InvoiceService = Depends(get_invoice_service),
) -> dict:
    """List vendor bills and schedule an OCR refresh for the empty ones."""

    offset = (page - 1) * limit
    total_count = await service.count_invoices(alias)
    listing = await service.list_invoices(
        alias,
        skip_ocr_refresh=skip_ocr_refresh,
        limit=limit,
        offset=offset,
    )
    invoices = listing.invoices
    total_pages = math.ceil(total_count / limit) if total_count else 0

    return {
        "invoices": invoices,
        "metadata": {
            "totalInvoices": len(invoices),
            "zeroValueInvoicesAfterRefresh": sum(1 for invoice in invoices if is_zero_value(invoice)),
            "zeroValueInvoicesRefreshed": listing.zero_value_invoices_refreshed,
            "ocrRefreshPerformed": listing.ocr_refresh_performed,
            "zeroValueInvoiceIds": listing.zero_value_invoice_ids,
        },
        "pagination": {
            "page": page,
            "limit": limit,
            "totalCount": total_count,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }


@router.get("/ocr-status")
async def get_ocr_status(
    notifications: OcrNotificationService = Depends(get_ocr_notification_service),
) -> dict:
    snapshot = notifications.get_snapshot()
    return OcrStatusResponse.from_snapshot(snapshot).to_wire()


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)) -> dict:
    invoice = await service.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    return invoice


@router.get("/{invoice_id}/extract-status")
async def get_extract_status(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)) -> dict:
    status = await service.get_extract_status(invoice_id)
    if status is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    return status


@router.get("/{invoice_id}/diagnose")
async def diagnose_invoice(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)) -> dict:
    """Report attachment linkage and OCR state for troubleshooting."""

    diagnosis = await service.diagnose(invoice_id)
    if diagnosis is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    return diagnosis


@router.post("/{invoice_id}/refresh-ocr")
async def refresh_invoice_ocr(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)) -> dict:
    """Manually re-run the link, reset and extract steps for one invoice."""

    outcome = await service.refresh_invoice(invoice_id)
    return InvoiceOutcomeModel.from_domain(outcome).to_wire()


@router.post("/{invoice_id}/force-relink")
async def force_relink(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)) -> dict:
    try:
        result = await service.force_relink(invoice_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=404, detail="invoice not found")
    return result
