"""Document production request/response schemas."""

from typing import Any

from pydantic import BaseModel, Field, model_validator


class PdfRequest(BaseModel):
    template_id: str | None = None
    quotation_id: str | None = None
    data: dict[str, Any] | None = None  # raw quotation record, used when quotation_id is absent
    options: dict[str, Any] = {}  # PdfOptions; unknown keys ignored
    watermark: dict[str, Any] | bool | None = None
    header_footer: dict[str, Any] | bool | None = None
    filename: str | None = None

    @model_validator(mode="after")
    def _needs_a_source(self) -> "PdfRequest":
        if not self.quotation_id and self.data is None:
            raise ValueError("quotation_id or data is required")
        return self


class BatchRequest(BaseModel):
    # Items stay loosely typed so one malformed entry fails alone instead of rejecting the batch
    items: list[Any] = Field(..., min_length=1)
    options: dict[str, Any] = {}
    include_content: bool = True


class BatchItemResult(BaseModel):
    index: int
    success: bool
    filename: str | None = None
    size: int = 0
    content_base64: str | None = None
    error: str | None = None


class BatchResult(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[BatchItemResult]
