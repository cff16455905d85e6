from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Union

from .errors import ObservationValidationError


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class RelinkReason(str, Enum):
    DEMOTE = "demote"
    REPAIR = "repair"


@dataclass(slots=True)
class Contact:
    id: int
    email: str | None
    phone_number: str | None
    linked_id: int | None
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence is LinkPrecedence.PRIMARY

    def sort_key(self) -> tuple[datetime, int]:
        # oldest wins; equal timestamps fall back to insertion order
        return (self.created_at, self.id)


@dataclass(slots=True, frozen=True)
class Observation:
    """A validated (email, phone) pair as delivered by the transport."""

    email: str | None = None
    phone_number: str | None = None

    def __post_init__(self) -> None:
        if self.email is None and self.phone_number is None:
            raise ObservationValidationError("at least one identifier required")

    @classmethod
    def create(cls, email: str | None, phone_number: str | None) -> "Observation":
        return cls(email=_blank_to_none(email), phone_number=_blank_to_none(phone_number))


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


@dataclass(slots=True, frozen=True)
class NewContact:
    email: str | None
    phone_number: str | None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: int | None = None


@dataclass(slots=True, frozen=True)
class RelinkContact:
    """Point ``contact_id`` at ``linked_id`` as a secondary."""

    contact_id: int
    linked_id: int
    reason: RelinkReason = RelinkReason.DEMOTE


@dataclass(slots=True, frozen=True)
class InsertContact:
    contact: NewContact


Mutation = Union[RelinkContact, InsertContact]


@dataclass(slots=True)
class ClusterSnapshot:
    """Everything the planner may look at for one observation."""

    matches: List[Contact]
    primaries: List[Contact]
    members: Dict[int, List[Contact]] = field(default_factory=dict)

    def contacts(self) -> Iterator[Contact]:
        yield from self.matches
        yield from self.primaries
        for linked in self.members.values():
            yield from linked


@dataclass(slots=True)
class ResolutionPlan:
    primary_id: int
    mutations: List[Mutation] = field(default_factory=list)

    @property
    def demoted_ids(self) -> list[int]:
        return [
            m.contact_id
            for m in self.mutations
            if isinstance(m, RelinkContact) and m.reason is RelinkReason.DEMOTE
        ]


@dataclass(slots=True)
class ConsolidatedContact:
    primary_contact_id: int
    emails: List[str]
    phone_numbers: List[str]
    secondary_contact_ids: List[int]


__all__ = [
    "ClusterSnapshot",
    "ConsolidatedContact",
    "Contact",
    "InsertContact",
    "LinkPrecedence",
    "Mutation",
    "NewContact",
    "Observation",
    "RelinkContact",
    "RelinkReason",
    "ResolutionPlan",
]
