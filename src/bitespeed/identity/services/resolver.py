from __future__ import annotations

from typing import Iterable, List, Sequence

from shared.logging import get_logger

from ..errors import InternalInconsistencyError, TransientStorageError
from ..repository.ports import ContactStore
from ..types import (
    ClusterSnapshot,
    ConsolidatedContact,
    Contact,
    InsertContact,
    LinkPrecedence,
    NewContact,
    Observation,
    RelinkContact,
    RelinkReason,
    ResolutionPlan,
)

logger = get_logger("identity.resolver")


def plan_resolution(observation: Observation, snapshot: ClusterSnapshot) -> ResolutionPlan:
    """Decide which link updates and inserts an observation requires.

    The oldest primary in the snapshot wins. Every other primary is demoted to
    a secondary of the winner and the contacts that pointed at it are moved
    over too, so no secondary ever references another secondary. A secondary
    carrying the observation is added only when it contributes an email or a
    phone number that the merged clusters do not already hold.
    """

    if not snapshot.primaries:
        raise InternalInconsistencyError(
            "primary contact not found",
            contact_ids=[contact.id for contact in snapshot.matches],
        )

    ordered = sorted(snapshot.primaries, key=Contact.sort_key)
    winner, demoted = ordered[0], ordered[1:]
    plan = ResolutionPlan(primary_id=winner.id)

    for primary in demoted:
        plan.mutations.append(RelinkContact(primary.id, winner.id, RelinkReason.DEMOTE))
        for member in snapshot.members.get(primary.id, []):
            plan.mutations.append(RelinkContact(member.id, winner.id, RelinkReason.REPAIR))

    known_emails = set()
    known_phones = set()
    for contact in snapshot.contacts():
        if contact.email is not None:
            known_emails.add(contact.email)
        if contact.phone_number is not None:
            known_phones.add(contact.phone_number)

    has_new_email = observation.email is not None and observation.email not in known_emails
    has_new_phone = observation.phone_number is not None and observation.phone_number not in known_phones
    if has_new_email or has_new_phone:
        plan.mutations.append(
            InsertContact(
                NewContact(
                    email=observation.email,
                    phone_number=observation.phone_number,
                    link_precedence=LinkPrecedence.SECONDARY,
                    linked_id=winner.id,
                )
            )
        )
    return plan


def _distinct(first: str | None, values: Iterable[str | None]) -> List[str]:
    ordered: List[str] = []
    if first is not None:
        ordered.append(first)
    for value in values:
        if value is not None and value not in ordered:
            ordered.append(value)
    return ordered


def consolidate(primary: Contact, members: Sequence[Contact]) -> ConsolidatedContact:
    """Collapse a primary and its secondaries into the response view."""

    secondaries = [member for member in members if member.id != primary.id]
    return ConsolidatedContact(
        primary_contact_id=primary.id,
        emails=_distinct(primary.email, (member.email for member in secondaries)),
        phone_numbers=_distinct(primary.phone_number, (member.phone_number for member in secondaries)),
        secondary_contact_ids=[member.id for member in secondaries],
    )


MAX_ATTEMPTS = 3


class IdentityResolver:
    """Resolves observations against the contact store.

    Each call runs inside one store transaction: identifier locks are taken
    first, then matches are read, the plan is applied and the final cluster is
    read back before commit. A transaction the database aborts as a deadlock
    or serialization victim is rolled back and run again, up to
    ``max_attempts`` times.
    """

    def __init__(self, store: ContactStore, *, max_attempts: int = MAX_ATTEMPTS) -> None:
        self.store = store
        self.max_attempts = max(1, max_attempts)

    def identify(self, observation: Observation) -> ConsolidatedContact:
        attempt = 1
        while True:
            try:
                return self._identify_once(observation)
            except TransientStorageError as exc:
                if attempt >= self.max_attempts:
                    logger.error("identify_retries_exhausted", attempts=attempt, error=str(exc))
                    raise
                logger.warning("identify_retry", attempt=attempt, error=str(exc))
                attempt += 1

    def _identify_once(self, observation: Observation) -> ConsolidatedContact:
        with self.store.transaction():
            self.store.lock_identifiers(observation.email, observation.phone_number)
            matches = self.store.find_by_email_or_phone(observation.email, observation.phone_number)
            if not matches:
                return self._create_primary(observation)

            snapshot = self._snapshot(matches)
            plan = plan_resolution(observation, snapshot)
            self._apply(plan)

            primary = self._load_primary(plan.primary_id)
            members = self.store.find_by_linked_id(primary.id)

        result = consolidate(primary, members)
        logger.info(
            "identify_completed",
            primary_contact_id=result.primary_contact_id,
            matched=len(matches),
            secondary_count=len(result.secondary_contact_ids),
            demoted=plan.demoted_ids,
        )
        return result

    def _create_primary(self, observation: Observation) -> ConsolidatedContact:
        contact_id = self.store.insert(
            NewContact(email=observation.email, phone_number=observation.phone_number)
        )
        logger.info("contact_created", contact_id=contact_id, link_precedence="primary")
        return ConsolidatedContact(
            primary_contact_id=contact_id,
            emails=[observation.email] if observation.email is not None else [],
            phone_numbers=[observation.phone_number] if observation.phone_number is not None else [],
            secondary_contact_ids=[],
        )

    def _snapshot(self, matches: List[Contact]) -> ClusterSnapshot:
        primaries = [contact for contact in matches if contact.is_primary]
        primary_ids = {contact.id for contact in primaries}
        linked_ids = {
            contact.linked_id
            for contact in matches
            if not contact.is_primary and contact.linked_id is not None and contact.linked_id not in primary_ids
        }
        linked_contacts = self.store.find_by_ids(linked_ids) if linked_ids else []
        for linked in linked_contacts:
            if linked.is_primary:
                primaries.append(linked)
            else:
                logger.warning("secondary_chain_detected", contact_id=linked.id, linked_id=linked.linked_id)

        if not primaries:
            logger.error(
                "primary_contact_not_found",
                matched_ids=[contact.id for contact in matches],
                linked_ids=sorted(linked_ids),
            )
        members = {primary.id: self.store.find_by_linked_id(primary.id) for primary in primaries}
        return ClusterSnapshot(matches=matches, primaries=primaries, members=members)

    def _apply(self, plan: ResolutionPlan) -> None:
        for mutation in plan.mutations:
            if isinstance(mutation, RelinkContact):
                self.store.update_link(mutation.contact_id, mutation.linked_id, LinkPrecedence.SECONDARY)
            else:
                contact_id = self.store.insert(mutation.contact)
                logger.info("secondary_created", contact_id=contact_id, linked_id=plan.primary_id)
        if plan.demoted_ids:
            logger.info("clusters_merged", primary_contact_id=plan.primary_id, demoted=plan.demoted_ids)

    def _load_primary(self, primary_id: int) -> Contact:
        found = self.store.find_by_ids([primary_id])
        if not found or not found[0].is_primary:
            logger.error("primary_contact_not_found", primary_contact_id=primary_id)
            raise InternalInconsistencyError("primary contact not found", contact_ids=[primary_id])
        return found[0]


__all__ = ["IdentityResolver", "consolidate", "plan_resolution"]
