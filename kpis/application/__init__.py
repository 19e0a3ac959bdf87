"""Application services."""

from .invoices import InvoiceListing, InvoiceService, get_invoice_service

__all__ = [
    "InvoiceListing",
    "InvoiceService",
    "get_invoice_service",
]
