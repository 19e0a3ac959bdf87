from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kpis.domain import (
    AttachmentLinkage,
    BatchResult,
    ErrorKind,
    InvoiceOutcome,
    OutcomeStatus,
    RefreshSnapshot,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProgressModel(CamelModel):
    completed: int
    total: int


class BatchResultModel(CamelModel):
    total_invoices: int
    successful: int
    failed: int
    skipped: int = 0
    duration: int = Field(default=0, description="Elapsed time in milliseconds")
    completed_at: datetime | None = None

    @classmethod
    def from_domain(cls, result: BatchResult) -> "BatchResultModel":
        return cls(
            total_invoices=result.total_invoices,
            successful=result.successful,
            failed=result.failed,
            skipped=result.skipped,
            duration=result.duration,
            completed_at=result.completed_at,
        )


class OcrStatusResponse(CamelModel):
    is_running: bool = False
    start_time: datetime | None = None
    progress: ProgressModel | None = None
    last_result: BatchResultModel | None = None
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None

    @classmethod
    def from_snapshot(cls, snapshot: RefreshSnapshot) -> "OcrStatusResponse":
        progress = None
        if snapshot.progress is not None:
            progress = ProgressModel(completed=snapshot.progress.completed, total=snapshot.progress.total)
        last_result = None
        if snapshot.last_result is not None:
            last_result = BatchResultModel.from_domain(snapshot.last_result)
        return cls(
            is_running=snapshot.is_running,
            start_time=snapshot.start_time,
            progress=progress,
            last_result=last_result,
            last_error=snapshot.last_error,
            last_error_kind=snapshot.last_error_kind,
        )


class InvoiceOutcomeModel(CamelModel):
    invoice_id: int
    status: OutcomeStatus
    attachment_linkage: AttachmentLinkage
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def from_domain(cls, outcome: InvoiceOutcome) -> "InvoiceOutcomeModel":
        return cls(
            invoice_id=outcome.invoice_id,
            status=outcome.status,
            attachment_linkage=outcome.linkage,
            error=outcome.error,
            error_kind=outcome.error_kind,
        )
