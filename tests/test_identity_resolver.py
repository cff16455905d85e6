"""
Tests for IdentityResolver against the in-memory contact store.

Tests cover:
- New primary creation when nothing matches
- Secondary creation when an observation adds an email or phone
- Repeated observations (no duplicate records)
- Merging two clusters (oldest primary wins, demoted cluster re-pointed)
- Secondary-only matches resolving through linked primaries
- Inconsistent linkage and rollback on storage failure
- Rerunning a call the database aborted as a deadlock victim
"""

import contextlib
from datetime import timedelta

import pytest

from bitespeed.identity.errors import (
    InternalInconsistencyError,
    ObservationValidationError,
    StorageError,
    TransientStorageError,
)
from bitespeed.identity.repository import InMemoryContactStore
from bitespeed.identity.services import IdentityResolver
from bitespeed.identity.types import LinkPrecedence, Observation

from conftest import StepClock, make_contact


def _by_id(store):
    return {contact.id: contact for contact in store.list_all()}


class TestNewClusters:
    def test_no_match_creates_primary(self, resolver, store):
        result = resolver.identify(Observation(email="a@x.com", phone_number="111"))

        assert result.primary_contact_id == 1
        assert result.emails == ["a@x.com"]
        assert result.phone_numbers == ["111"]
        assert result.secondary_contact_ids == []

        contacts = store.list_all()
        assert len(contacts) == 1
        assert contacts[0].link_precedence is LinkPrecedence.PRIMARY
        assert contacts[0].linked_id is None

    def test_email_only_observation(self, resolver):
        result = resolver.identify(Observation(email="solo@x.com"))

        assert result.emails == ["solo@x.com"]
        assert result.phone_numbers == []
        assert result.secondary_contact_ids == []

    def test_unrelated_observations_create_separate_primaries(self, resolver, store):
        first = resolver.identify(Observation(email="a@x.com", phone_number="111"))
        second = resolver.identify(Observation(email="b@x.com", phone_number="222"))

        assert first.primary_contact_id != second.primary_contact_id
        assert all(contact.is_primary for contact in store.list_all())


class TestExtendingClusters:
    def test_new_phone_creates_secondary(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111"))

        result = resolver.identify(Observation(email="a@x.com", phone_number="222"))

        assert result.primary_contact_id == 1
        assert result.emails == ["a@x.com"]
        assert result.phone_numbers == ["111", "222"]
        assert result.secondary_contact_ids == [2]

        created = _by_id(store)[2]
        assert created.link_precedence is LinkPrecedence.SECONDARY
        assert created.linked_id == 1
        assert created.email == "a@x.com"
        assert created.phone_number == "222"

    def test_repeated_observation_is_idempotent(self, resolver, store):
        first = resolver.identify(Observation(email="a@x.com", phone_number="111"))
        second = resolver.identify(Observation(email="a@x.com", phone_number="111"))

        assert second.primary_contact_id == first.primary_contact_id
        assert len(store.list_all()) == 1

    def test_exact_match_leaves_cluster_unchanged(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111"))
        store.seed(make_contact(2, "a@x.com", "222", linked_id=1, minutes=5))

        result = resolver.identify(Observation(email="a@x.com", phone_number="222"))

        assert len(store.list_all()) == 2
        assert result.primary_contact_id == 1
        assert result.phone_numbers == ["111", "222"]
        assert result.secondary_contact_ids == [2]

    def test_partial_observation_with_known_value_adds_nothing(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111"))

        result = resolver.identify(Observation(phone_number="111"))

        assert len(store.list_all()) == 1
        assert result.emails == ["a@x.com"]
        assert result.phone_numbers == ["111"]

    def test_primary_without_email_lists_secondary_emails_in_order(self, resolver, store):
        store.seed(make_contact(1, None, "111"))
        store.seed(make_contact(2, "b@x.com", "111", linked_id=1, minutes=1))

        result = resolver.identify(Observation(email="c@x.com", phone_number="111"))

        assert result.emails == ["b@x.com", "c@x.com"]
        assert result.phone_numbers == ["111"]
        assert result.secondary_contact_ids == [2, 3]


class TestMergingClusters:
    def test_bridging_observation_demotes_newer_primary(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111", minutes=0))
        store.seed(make_contact(2, "b@x.com", "222", minutes=10))

        result = resolver.identify(Observation(email="a@x.com", phone_number="222"))

        assert result.primary_contact_id == 1
        assert result.secondary_contact_ids == [2]
        assert result.emails == ["a@x.com", "b@x.com"]
        assert result.phone_numbers == ["111", "222"]

        demoted = _by_id(store)[2]
        assert demoted.link_precedence is LinkPrecedence.SECONDARY
        assert demoted.linked_id == 1
        # both identifiers were already known, so no new record
        assert len(store.list_all()) == 2

    def test_secondaries_of_demoted_primary_are_repointed(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111", minutes=0))
        store.seed(make_contact(2, "b@x.com", "222", minutes=10))
        store.seed(make_contact(3, "c@x.com", "333", linked_id=2, minutes=20))

        result = resolver.identify(Observation(email="a@x.com", phone_number="222"))

        contacts = _by_id(store)
        assert contacts[3].linked_id == 1
        assert contacts[3].link_precedence is LinkPrecedence.SECONDARY
        assert result.secondary_contact_ids == [2, 3]
        assert result.emails == ["a@x.com", "b@x.com", "c@x.com"]
        assert all(
            contact.linked_id == 1 for contact in contacts.values() if not contact.is_primary
        )

    def test_oldest_primary_wins_regardless_of_id(self, resolver, store):
        store.seed(make_contact(1, "late@x.com", "111", minutes=30))
        store.seed(make_contact(2, "early@x.com", "222", minutes=0))

        result = resolver.identify(Observation(email="late@x.com", phone_number="222"))

        assert result.primary_contact_id == 2
        assert result.emails == ["early@x.com", "late@x.com"]
        assert _by_id(store)[1].linked_id == 2

    def test_equal_timestamps_fall_back_to_lower_id(self, resolver, store):
        store.seed(make_contact(5, "a@x.com", "111", minutes=0))
        store.seed(make_contact(4, "b@x.com", "222", minutes=0))

        result = resolver.identify(Observation(email="a@x.com", phone_number="222"))

        assert result.primary_contact_id == 4
        assert _by_id(store)[5].linked_id == 4

    def test_secondary_only_match_resolves_linked_primary(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111"))
        store.seed(make_contact(2, "b@x.com", "111", linked_id=1, minutes=1))

        result = resolver.identify(Observation(email="b@x.com"))

        assert result.primary_contact_id == 1
        assert result.emails == ["a@x.com", "b@x.com"]
        assert result.phone_numbers == ["111"]
        assert result.secondary_contact_ids == [2]
        assert len(store.list_all()) == 2

    def test_secondary_only_match_across_two_clusters_merges_them(self, resolver, store):
        store.seed(make_contact(1, "a@x.com", "111", minutes=0))
        store.seed(make_contact(2, "b@x.com", "111", linked_id=1, minutes=1))
        store.seed(make_contact(3, "c@x.com", "333", minutes=2))
        store.seed(make_contact(4, "d@x.com", "444", linked_id=3, minutes=3))

        result = resolver.identify(Observation(email="b@x.com", phone_number="444"))

        contacts = _by_id(store)
        assert result.primary_contact_id == 1
        assert contacts[3].linked_id == 1
        assert contacts[4].linked_id == 1
        assert result.secondary_contact_ids == [2, 3, 4]
        assert result.phone_numbers == ["111", "333", "444"]


class TestFailures:
    def test_observation_requires_an_identifier(self):
        with pytest.raises(ObservationValidationError):
            Observation()

        with pytest.raises(ObservationValidationError):
            Observation.create("", "   ")

    def test_dangling_link_raises_inconsistency(self, resolver, store):
        store.seed(make_contact(7, "ghost@x.com", "999", linked_id=42))

        with pytest.raises(InternalInconsistencyError) as excinfo:
            resolver.identify(Observation(email="ghost@x.com"))

        assert excinfo.value.contact_ids == [7]
        assert len(store.list_all()) == 1

    def test_storage_failure_rolls_back_the_whole_call(self):
        class FailingStore(InMemoryContactStore):
            def update_link(self, contact_id, linked_id, link_precedence):
                if contact_id == 3:
                    raise StorageError("update rejected")
                super().update_link(contact_id, linked_id, link_precedence)

        store = FailingStore(clock=StepClock())
        store.seed(make_contact(1, "a@x.com", "111", minutes=0))
        store.seed(make_contact(2, "b@x.com", "222", minutes=10))
        store.seed(make_contact(3, "c@x.com", "333", linked_id=2, minutes=20))
        before = {c.id: (c.linked_id, c.link_precedence) for c in store.list_all()}

        with pytest.raises(StorageError):
            IdentityResolver(store).identify(Observation(email="a@x.com", phone_number="222"))

        after = {c.id: (c.linked_id, c.link_precedence) for c in store.list_all()}
        assert after == before

    def test_secondary_timestamps_follow_insertion(self, resolver, store):
        resolver.identify(Observation(email="a@x.com", phone_number="111"))
        resolver.identify(Observation(email="a@x.com", phone_number="222"))

        primary, secondary = store.list_all()
        assert secondary.created_at - primary.created_at >= timedelta(seconds=1)


class ContendedStore(InMemoryContactStore):
    """Aborts the next ``aborts`` reads of linked members like a deadlock victim.

    ``after_abort`` runs once the aborted transaction has rolled back, standing
    in for the competing call that won the lock.
    """

    def __init__(self, aborts=1, after_abort=None):
        super().__init__(clock=StepClock())
        self.aborts = aborts
        self.after_abort = after_abort
        self.attempts = 0

    @contextlib.contextmanager
    def transaction(self):
        self.attempts += 1
        try:
            with super().transaction():
                yield
        except TransientStorageError:
            if self.after_abort is not None:
                competing, self.after_abort = self.after_abort, None
                competing()
            raise

    def find_by_linked_id(self, primary_id):
        if self.aborts:
            self.aborts -= 1
            raise TransientStorageError("find_by_linked_id aborted: deadlock detected")
        return super().find_by_linked_id(primary_id)


class TestTransientAborts:
    def _seed_two_clusters(self, store):
        store.seed(make_contact(1, "a@x.com", "111", minutes=0))
        store.seed(make_contact(2, "b@x.com", "222", minutes=10))
        store.seed(make_contact(3, "c@x.com", "333", linked_id=2, minutes=20))

    def test_aborted_merge_is_rerun_without_duplicates(self):
        store = ContendedStore(aborts=1)
        self._seed_two_clusters(store)

        result = IdentityResolver(store).identify(Observation(email="a@x.com", phone_number="999"))

        assert store.attempts == 2
        assert result.primary_contact_id == 1
        assert result.secondary_contact_ids == [4]
        assert len(store.list_all()) == 4

    def test_secondary_match_rerun_sees_competing_merge(self):
        store = ContendedStore(aborts=1)
        self._seed_two_clusters(store)
        merging = IdentityResolver(store)
        store.after_abort = lambda: merging.identify(Observation(email="a@x.com", phone_number="222"))

        result = IdentityResolver(store).identify(Observation(email="d@x.com", phone_number="333"))

        assert store.attempts == 3
        assert result.primary_contact_id == 1
        assert result.emails == ["a@x.com", "b@x.com", "c@x.com", "d@x.com"]
        assert result.phone_numbers == ["111", "222", "333"]
        assert result.secondary_contact_ids == [2, 3, 4]

        contacts = _by_id(store)
        assert [c.id for c in contacts.values() if c.is_primary] == [1]
        assert all(contacts[cid].linked_id == 1 for cid in (2, 3, 4))

    def test_gives_up_after_max_attempts(self):
        store = ContendedStore(aborts=5)
        self._seed_two_clusters(store)
        before = {c.id: (c.linked_id, c.link_precedence) for c in store.list_all()}

        with pytest.raises(TransientStorageError):
            IdentityResolver(store, max_attempts=3).identify(Observation(email="a@x.com", phone_number="222"))

        assert store.attempts == 3
        assert {c.id: (c.linked_id, c.link_precedence) for c in store.list_all()} == before

    def test_non_transient_storage_errors_are_not_retried(self):
        class BrokenStore(ContendedStore):
            def find_by_linked_id(self, primary_id):
                raise StorageError("relation contacts does not exist")

        store = BrokenStore(aborts=0)
        self._seed_two_clusters(store)

        with pytest.raises(StorageError):
            IdentityResolver(store).identify(Observation(email="a@x.com"))

        assert store.attempts == 1
