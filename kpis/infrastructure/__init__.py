"""Infrastructure layer exports."""

from .odoo import (
    InMemoryRecordStore,
    OdooClient,
    OdooError,
    RecordStore,
    classify_exception,
    configure_record_store,
    get_record_store,
)

__all__ = [
    "InMemoryRecordStore",
    "OdooClient",
    "OdooError",
    "RecordStore",
    "classify_exception",
    "configure_record_store",
    "get_record_store",
]
