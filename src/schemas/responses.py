"""Shared response envelopes: structured errors and bulk-operation results."""

import uuid
from enum import Enum

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """A single field-level or contextual error detail."""

    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    """Structured error body returned inside every error response."""

    code: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str = Field(alias="requestId")
    retryable: bool | None = None

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Top-level error envelope."""

    error: ErrorBody


class BulkItemStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class BulkItemResult(BaseModel):
    """Outcome of one item inside a bulk request."""

    item_id: uuid.UUID = Field(alias="itemId")
    status: BulkItemStatus
    message: str
    error_code: str | None = Field(default=None, alias="errorCode")

    model_config = {"populate_by_name": True}


class BulkOperationResponse(BaseModel):
    """Aggregate outcome of a bulk request; items fail independently."""

    total_requested: int = Field(alias="totalRequested")
    success_count: int = Field(alias="successCount")
    failed_count: int = Field(alias="failedCount")
    results: list[BulkItemResult]

    model_config = {"populate_by_name": True}

    @classmethod
    def from_results(cls, results: list[BulkItemResult]) -> "BulkOperationResponse":
        succeeded = sum(1 for r in results if r.status == BulkItemStatus.SUCCESS)
        return cls(
            total_requested=len(results),
            success_count=succeeded,
            failed_count=len(results) - succeeded,
            results=results,
        )
