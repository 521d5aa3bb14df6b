from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LeadMailboxPayload(BaseModel):
    """Inbound lead. Unknown keys are kept so the stored payload stays complete."""

    model_config = ConfigDict(extra="allow")

    lead_id: str | None = None
    user_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    property_address: str | None = None
    property_city: str | None = None
    property_state: str | None = None
    property_zip: str | None = None
    loan_program: str | None = None
    loan_amount: Any = None
    notes: list[str] | str | None = None
    ssn: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _stringify_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("lead_id", "user_id"):
                value = data.get(key)
                if value is not None and not isinstance(value, str):
                    data = {**data, key: str(value)}
        return data


class WebhookResult(BaseModel):
    status: str
    loan_id: UUID | None = Field(default=None, serialization_alias="loanId")


class MappingOut(BaseModel):
    id: UUID
    provider: str
    external_id: str
    user_id: UUID
    user_email: str | None = None
    user_name: str | None = None
    created_at: datetime | None = None


class MappingUpsert(BaseModel):
    external_id: str
    user_id: UUID | None = None
    user_email: str | None = None


class MappingBulkUpsert(BaseModel):
    mappings: list[MappingUpsert]


class MappingBulkResult(BaseModel):
    created: int
    updated: int
    skipped: int
