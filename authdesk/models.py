"""Order and prior-authorization records.

Attributes are snake_case in Python and camelCase in stored documents.
CPT/ICD code lists are always written to the store as JSON-encoded text
and decoded back into lists on read. Documents written by older clients
hold raw arrays; those are accepted as-is.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AuthStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SUBMITTED = "SUBMITTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


def encode_codes(codes: list[str]) -> str:
    return json.dumps(list(codes))


def decode_codes(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(code) for code in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Code list is not valid JSON: {value!r}") from exc
        if isinstance(parsed, str):
            return [parsed]
        if not isinstance(parsed, list):
            raise ValueError(f"Code list must decode to an array: {value!r}")
        return [str(code) for code in parsed]
    raise ValueError(f"Unsupported code list value: {value!r}")


def _parse_status(enum_cls: type[Enum], value: Any) -> Any:
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError as exc:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ValueError(f"Unknown status {value!r}; expected one of {allowed}") from exc
    return value


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def to_document(self) -> dict[str, Any]:
        """Fields as stored, without the id and timestamps the store manages."""
        return self.model_dump(by_alias=True, mode="json", exclude={"id", "created_at", "updated_at"})

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]):
        return cls.model_validate({**data, "id": doc_id})


class Order(Record):
    customer_name: str = Field(alias="customerName")
    customer_email: str = Field(alias="customerEmail")
    customer_id: str = Field(alias="customerId")
    total_amount: float | None = Field(default=None, alias="totalAmount")
    sku: str
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: dict[str, Any] = Field(default_factory=dict, alias="shippingAddress")
    payment_details: dict[str, Any] | None = Field(default=None, alias="paymentDetails")

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> Any:
        return _parse_status(OrderStatus, value)

    @field_validator("shipping_address", "payment_details", mode="before")
    @classmethod
    def _json_field(cls, value: Any) -> Any:
        # Stored as AWSJSON text by earlier clients.
        if isinstance(value, str):
            return json.loads(value) if value else {}
        return value


class PriorAuthorization(Record):
    employee_id: str | None = Field(default=None, alias="employeeId")
    patient_name: str = Field(alias="patientName")
    patient_date_of_birth: str = Field(alias="patientDateOfBirth")
    status: AuthStatus = AuthStatus.PENDING
    cpt_codes: list[str] = Field(default_factory=list, alias="cptCodes")
    icd_codes: list[str] = Field(default_factory=list, alias="icdCodes")
    cpt_codes_explanation: str = Field(default="", alias="cptCodesExplanation")
    is_override: bool = Field(default=False, alias="isOverride")
    override_explanation: str = Field(default="", alias="overrideExplanation")
    medical_plan: str = Field(default="", alias="medicalPlan")
    medical_plan_name: str = Field(default="", alias="medicalPlanName")

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> Any:
        return _parse_status(AuthStatus, value)

    @field_validator("cpt_codes", "icd_codes", mode="before")
    @classmethod
    def _codes(cls, value: Any) -> list[str]:
        return decode_codes(value)

    @field_validator("cpt_codes_explanation", "override_explanation", "medical_plan", "medical_plan_name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else value

    def to_document(self) -> dict[str, Any]:
        doc = super().to_document()
        doc["cptCodes"] = encode_codes(self.cpt_codes)
        doc["icdCodes"] = encode_codes(self.icd_codes)
        return doc


def document_fields(model_cls: type[Record], changes: dict[str, Any]) -> dict[str, Any]:
    """Translate a partial update into stored field names and encodings."""
    out: dict[str, Any] = {}
    fields = model_cls.model_fields
    for key, value in changes.items():
        name = key
        if key not in fields:
            name = next((n for n, f in fields.items() if f.alias == key), None)
            if name is None:
                raise ValueError(f"Unknown field {key!r} for {model_cls.__name__}")
        if name in {"id", "created_at", "updated_at"}:
            continue
        alias = fields[name].alias or name
        if name in {"cpt_codes", "icd_codes"}:
            value = encode_codes(decode_codes(value))
        elif name == "status":
            enum_cls = OrderStatus if model_cls is Order else AuthStatus
            value = _parse_status(enum_cls, value).value
        out[alias] = value
    return out


def filter_by_status(records: list[Any], status: str | None) -> list[Any]:
    """'all' (or no status) keeps everything; otherwise a case-insensitive match."""
    if not status or status.lower() == "all":
        return list(records)
    wanted = status.lower()
    return [record for record in records if _status_text(record).lower() == wanted]


def _status_text(record: Any) -> str:
    status = record.get("status") if isinstance(record, dict) else getattr(record, "status", None)
    if isinstance(status, Enum):
        return str(status.value)
    return str(status or "")
