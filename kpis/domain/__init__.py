"""Domain layer definitions."""

from .ocr import (
    AttachmentLinkage,
    BatchResult,
    ErrorKind,
    InvoiceOutcome,
    Notification,
    NotificationLevel,
    OutcomeStatus,
    RefreshProgress,
    RefreshSnapshot,
)

__all__ = [
    "AttachmentLinkage",
    "BatchResult",
    "ErrorKind",
    "InvoiceOutcome",
    "Notification",
    "NotificationLevel",
    "OutcomeStatus",
    "RefreshProgress",
    "RefreshSnapshot",
]
