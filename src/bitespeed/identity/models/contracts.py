from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..types import ConsolidatedContact, Contact, Observation


class IdentifyRequest(BaseModel):
    """Body accepted by ``POST /identify``."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")

    email: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    def to_observation(self) -> Observation:
        return Observation.create(self.email, self.phone_number)


class ConsolidatedContactModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # the misspelled key is part of the published wire format
    primary_contact_id: int = Field(alias="primaryContatctId")
    emails: List[str] = Field(default_factory=list)
    phone_numbers: List[str] = Field(default_factory=list, alias="phoneNumbers")
    secondary_contact_ids: List[int] = Field(default_factory=list, alias="secondaryContactIds")

    @classmethod
    def from_result(cls, result: ConsolidatedContact) -> "ConsolidatedContactModel":
        return cls(
            primary_contact_id=result.primary_contact_id,
            emails=list(result.emails),
            phone_numbers=list(result.phone_numbers),
            secondary_contact_ids=list(result.secondary_contact_ids),
        )


class IdentifyResponse(BaseModel):
    contact: ConsolidatedContactModel


class ContactRecord(BaseModel):
    """A stored contact row as exposed by ``GET /contacts``."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    email: Optional[str] = None
    linked_id: Optional[int] = Field(default=None, alias="linkedId")
    link_precedence: Literal["primary", "secondary"] = Field(alias="linkPrecedence")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    deleted_at: Optional[datetime] = Field(default=None, alias="deletedAt")

    @classmethod
    def from_contact(cls, contact: Contact) -> "ContactRecord":
        return cls(
            id=contact.id,
            phone_number=contact.phone_number,
            email=contact.email,
            linked_id=contact.linked_id,
            link_precedence=contact.link_precedence.value,
            created_at=contact.created_at,
            updated_at=contact.updated_at,
            deleted_at=contact.deleted_at,
        )


class HealthResponse(BaseModel):
    status: str = "OK"
    timestamp: datetime


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None


__all__ = [
    "ConsolidatedContactModel",
    "ContactRecord",
    "ErrorResponse",
    "HealthResponse",
    "IdentifyRequest",
    "IdentifyResponse",
]
