"""Batch job models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


BatchStatus = Literal["queued", "processing", "completed", "error"]
BatchType = Literal["fgts", "clt"]
Provider = Literal["v8", "facta", "c6"]
V8SubProvider = Literal["qi", "cartos", "bms"]
EnvelopeStatus = Literal["success", "error"]


class CpfRecord(BaseModel):
    """
    One row of a batch. Accepts the spreadsheet's Portuguese column names
    (nome, data_nascimento, telefone_ddd, telefone_numero) as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    cpf: str
    name: Optional[str] = Field(default=None, alias="nome")
    birth_date: Optional[str] = Field(default=None, alias="data_nascimento")
    phone_ddd: Optional[str] = Field(default=None, alias="telefone_ddd")
    phone_number: Optional[str] = Field(default=None, alias="telefone_numero")

    @field_validator("cpf", "name", "birth_date", "phone_ddd", "phone_number", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value)


class BatchCreateRequest(BaseModel):
    cpfs: List[CpfRecord] = Field(..., min_length=1)
    provider: Provider
    v8_provider: Optional[V8SubProvider] = None
    file_name: str = Field(default="lote.xlsx", max_length=255)

    @field_validator("cpfs", mode="before")
    @classmethod
    def _plain_strings(cls, value: Any) -> Any:
        # Plain CPF strings are shorthand for {"cpf": "..."}.
        if isinstance(value, list):
            return [{"cpf": v} if isinstance(v, (str, int)) else v for v in value]
        return value


class BatchSummary(BaseModel):
    """Completion is "all accounted for"; all_succeeded tells the two apart."""

    all_accounted_for: bool
    all_succeeded: bool
    pending: int
    success_count: int
    error_count: int


class BatchJobResponse(BaseModel):
    batch_id: str
    type: BatchType
    provider: Provider
    v8_provider: Optional[V8SubProvider] = None
    file_name: str
    status: BatchStatus
    message: Optional[str] = None
    cpfs: List[str] = Field(default_factory=list)
    total_cpfs: int
    processed_cpfs: int = 0
    success_count: int = 0
    error_count: int = 0
    user_id: str
    user_email: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    replaced_by: Optional[str] = None
    summary: BatchSummary


class BatchEnvelope(BaseModel):
    status: EnvelopeStatus = "success"
    message: Optional[str] = None
    batch: Optional[BatchJobResponse] = None


class BatchListResponse(BaseModel):
    status: EnvelopeStatus = "success"
    batches: List[BatchJobResponse] = Field(default_factory=list)
    count: int = 0


class StatusMessage(BaseModel):
    status: EnvelopeStatus = "success"
    message: str


class WebhookResponseItem(BaseModel):
    response_id: str
    batch_id: Optional[str] = None
    provider: Optional[str] = None
    cpf: Optional[str] = None
    status: Literal["received", "success", "error"]
    message: Optional[str] = None
    response_body: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BatchItemsResponse(BaseModel):
    status: EnvelopeStatus = "success"
    batch_id: str
    items: List[WebhookResponseItem] = Field(default_factory=list)
