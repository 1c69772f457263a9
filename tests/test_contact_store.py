"""
Tests for ContactStore.
"""
from datetime import datetime, timezone

import pytest

from api.services.contact_store import Contact, ContactStore, LinkPrecedence
from api.services.errors import InvariantViolation, StoreError

pytestmark = pytest.mark.unit


class TestContact:
    """Tests for the Contact dataclass."""

    def test_election_key_orders_by_created_then_id(self):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        older_id = Contact(1, "a@x.com", None, LinkPrecedence.PRIMARY, None, created)
        newer_id = Contact(2, "b@x.com", None, LinkPrecedence.PRIMARY, None, created)

        assert older_id.election_key < newer_id.election_key

    def test_to_dict(self):
        contact = Contact(
            id=7,
            email="a@x.com",
            phone_number="5551234567",
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=3,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        data = contact.to_dict()
        assert data["phoneNumber"] == "5551234567"
        assert data["linkPrecedence"] == "secondary"
        assert data["linkedId"] == 3
        assert data["deletedAt"] is None


class TestContactStore:
    """Tests for SQLite-backed contact storage."""

    def test_create_assigns_id_and_timestamps(self, contact_store):
        contact = contact_store.create("a@x.com", "5551234567", LinkPrecedence.PRIMARY)

        assert contact.id > 0
        assert contact.is_primary
        assert contact.linked_id is None
        assert contact.created_at == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert contact.created_at.tzinfo is not None

    def test_ids_increase_with_insertion(self, contact_store):
        first = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        second = contact_store.create("b@x.com", None, LinkPrecedence.PRIMARY)
        assert second.id > first.id

    def test_create_requires_identifier(self, contact_store):
        with pytest.raises(InvariantViolation):
            contact_store.create(None, None, LinkPrecedence.PRIMARY)

    def test_secondary_requires_link(self, contact_store):
        with pytest.raises(InvariantViolation):
            contact_store.create("a@x.com", None, LinkPrecedence.SECONDARY)

    def test_primary_cannot_have_link(self, contact_store):
        primary = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        with pytest.raises(InvariantViolation):
            contact_store.create("b@x.com", None, LinkPrecedence.PRIMARY, linked_id=primary.id)

    def test_update_rejects_self_link(self, contact_store):
        contact = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        with pytest.raises(InvariantViolation):
            contact_store.update(contact.id, LinkPrecedence.SECONDARY, contact.id)

    def test_find_by_email_or_phone(self, contact_store):
        by_email = contact_store.create("a@x.com", "1111111", LinkPrecedence.PRIMARY)
        by_phone = contact_store.create("b@x.com", "2222222", LinkPrecedence.PRIMARY)
        contact_store.create("c@x.com", "3333333", LinkPrecedence.PRIMARY)

        found = contact_store.find_by_email_or_phone({"a@x.com"}, {"2222222"})

        assert [c.id for c in found] == [by_email.id, by_phone.id]

    def test_find_by_email_or_phone_empty_sets(self, contact_store):
        contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        assert contact_store.find_by_email_or_phone(set(), set()) == []

    def test_find_by_email_or_phone_large_sets(self, contact_store):
        """Value lists longer than one query chunk are still matched."""
        target = contact_store.create("needle@x.com", None, LinkPrecedence.PRIMARY)
        emails = {f"user{i}@x.com" for i in range(1200)} | {"needle@x.com"}

        found = contact_store.find_by_email_or_phone(emails, set())
        assert [c.id for c in found] == [target.id]

    def test_results_ordered_by_created_at(self, contact_store, clock):
        later = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        clock.now = datetime(2020, 1, 1, tzinfo=timezone.utc)
        earlier = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)

        found = contact_store.find_by_email_or_phone({"a@x.com"}, set())
        assert [c.id for c in found] == [earlier.id, later.id]

    def test_find_secondaries_of(self, contact_store):
        primary = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        s1 = contact_store.create("b@x.com", None, LinkPrecedence.SECONDARY, linked_id=primary.id)
        s2 = contact_store.create(None, "5551234567", LinkPrecedence.SECONDARY, linked_id=primary.id)
        contact_store.create("other@x.com", None, LinkPrecedence.PRIMARY)

        children = contact_store.find_secondaries_of(primary.id)
        assert [c.id for c in children] == [s1.id, s2.id]

    def test_find_by_ids(self, contact_store):
        a = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        b = contact_store.create("b@x.com", None, LinkPrecedence.PRIMARY)

        assert [c.id for c in contact_store.find_by_ids({b.id, a.id, 999})] == [a.id, b.id]
        assert contact_store.find_by_ids([]) == []

    def test_update_changes_link(self, contact_store):
        primary = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
        other = contact_store.create("b@x.com", None, LinkPrecedence.PRIMARY)

        contact_store.update(other.id, LinkPrecedence.SECONDARY, primary.id)

        updated = contact_store.find_by_id(other.id)
        assert updated.link_precedence == LinkPrecedence.SECONDARY
        assert updated.linked_id == primary.id
        assert updated.created_at == other.created_at
        assert updated.updated_at > other.updated_at

    def test_soft_deleted_contacts_are_invisible(self, contact_store):
        primary = contact_store.create("a@x.com", "5551234567", LinkPrecedence.PRIMARY)
        child = contact_store.create("b@x.com", None, LinkPrecedence.SECONDARY, linked_id=primary.id)

        assert contact_store.soft_delete(child.id) is True
        assert contact_store.soft_delete(child.id) is False

        assert contact_store.find_by_id(child.id) is None
        assert contact_store.find_by_email_or_phone({"b@x.com"}, set()) == []
        assert contact_store.find_secondaries_of(primary.id) == []
        assert [c.id for c in contact_store.get_all()] == [primary.id]

    def test_persists_across_instances(self, tmp_path):
        db_path = str(tmp_path / "contacts.db")
        created = ContactStore(db_path).create("a@x.com", None, LinkPrecedence.PRIMARY)

        reopened = ContactStore(db_path)
        assert reopened.find_by_id(created.id).email == "a@x.com"


class TestTransactions:
    """Tests for the serialized write transaction."""

    def test_commit(self, contact_store):
        with contact_store.transaction():
            contact = contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
            # Reads inside the transaction see its own writes
            assert contact_store.find_by_id(contact.id) is not None

        assert contact_store.find_by_id(contact.id) is not None

    def test_rollback_on_error(self, contact_store):
        with pytest.raises(RuntimeError):
            with contact_store.transaction():
                contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
                raise RuntimeError("boom")

        assert contact_store.get_all() == []

    def test_nested_transaction_joins_outer(self, contact_store):
        with pytest.raises(RuntimeError):
            with contact_store.transaction():
                with contact_store.transaction():
                    contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)
                raise RuntimeError("outer failure")

        assert contact_store.get_all() == []


class TestStoreErrors:
    """Tests for wrapping SQLite failures."""

    def test_unreachable_database_raises_store_error(self, contact_store, tmp_path):
        contact_store.db_path = str(tmp_path / "missing-dir" / "contacts.db")

        with pytest.raises(StoreError) as exc_info:
            contact_store.find_by_email_or_phone({"a@x.com"}, set())

        assert exc_info.value.message == "Failed to find matching contacts"
        assert exc_info.value.status_code == 500
        assert exc_info.value.is_operational is False
        assert exc_info.value.__cause__ is not None

    def test_failure_is_logged(self, contact_store, tmp_path, caplog):
        contact_store.db_path = str(tmp_path / "missing-dir" / "contacts.db")

        with pytest.raises(StoreError):
            contact_store.create("a@x.com", None, LinkPrecedence.PRIMARY)

        assert "Contact store failed to create primary contact" in caplog.text
