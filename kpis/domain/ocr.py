"""Domain entities for the OCR refresh subsystem."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failure raised at the record store boundary."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    SERVER = "server"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    ODOO = "odoo"
    UNKNOWN = "unknown"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class AttachmentLinkage(str, Enum):
    LINKED = "linked"
    NO_ATTACHMENT = "no_attachment"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class InvoiceOutcome:
    """Result of processing one invoice inside a batch."""

    invoice_id: int
    status: OutcomeStatus
    linkage: AttachmentLinkage = AttachmentLinkage.UNKNOWN
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def success(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Aggregate returned by one orchestrator run."""

    total_invoices: int
    successful: int
    failed: int
    skipped: int = 0
    duration: int = 0
    completed_at: datetime | None = None
    results: tuple[InvoiceOutcome, ...] = ()


@dataclass(frozen=True, slots=True)
class RefreshProgress:
    completed: int
    total: int


@dataclass(frozen=True, slots=True)
class RefreshSnapshot:
    """Immutable point-in-time view of the notification store."""

    is_running: bool = False
    batch_id: str | None = None
    start_time: datetime | None = None
    progress: RefreshProgress | None = None
    last_result: BatchResult | None = None
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notification:
    """User-facing message raised by the status poller."""

    level: NotificationLevel
    title: str
    description: str
    duration_ms: int = 5000
