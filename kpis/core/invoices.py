"""Pure helpers over raw Odoo invoice records."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

INVOICE_MODEL = "account.move"
ATTACHMENT_MODEL = "ir.attachment"
LINE_ITEM_MODEL = "account.move.line"

EXTRACTION_METHOD = "action_reload_ai_data"

# Values written by Odoo's "Retry" button on the extraction banner.
EXTRACT_RESET_VALUES: dict[str, Any] = {
    "extract_state": "no_extract_requested",
    "extract_status": False,
    "extract_error_message": False,
}


def _field(invoice: Any, name: str) -> Any:
    if isinstance(invoice, Mapping):
        return invoice.get(name)
    return getattr(invoice, name, None)


def is_zero_value(invoice: Any) -> bool:
    """Return ``True`` when the extracted untaxed amount is missing or zero.

    Odoo encodes an empty field as ``False``; that counts as missing too.
    """

    amount = _field(invoice, "amount_untaxed")
    if amount is None or amount is False:
        return True
    try:
        return float(amount) == 0
    except (TypeError, ValueError):
        return False


def has_attachments(invoice: Any) -> bool:
    attachments = _field(invoice, "attachments")
    return bool(attachments)


def many2one_id(value: Any) -> int | None:
    """Normalise an Odoo many2one value (``False``, ``id`` or ``[id, name]``)."""

    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None or value is False or isinstance(value, bool):
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        return None
    return result or None


def refresh_candidates(invoices: Iterable[Any]) -> list[int]:
    """Ids of zero-value invoices that have something to extract from."""

    return [
        int(_field(invoice, "id"))
        for invoice in invoices
        if is_zero_value(invoice) and has_attachments(invoice)
    ]
