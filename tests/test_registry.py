"""Tests for get-or-create resolution of users, tables and fields."""
import pytest
from rowaudit.models.audit import AuditUser, AuditedTable, Field
from rowaudit.services.errors import PersistenceError
from rowaudit.services.registry import MetadataRegistry


class TestIdempotentResolution:
    """Resolving the same name twice yields the same id and one row."""

    def test_table_resolved_once(self, db_session):
        registry = MetadataRegistry(db_session)

        first = registry.resolve_table("person")
        second = registry.resolve_table("person")

        assert first == second
        assert db_session.query(AuditedTable).count() == 1

    def test_distinct_tables(self, db_session):
        registry = MetadataRegistry(db_session)

        assert registry.resolve_table("person") != registry.resolve_table("account")

    def test_schema_qualified_table_name_is_distinct(self, db_session):
        registry = MetadataRegistry(db_session)

        assert registry.resolve_table("person") != registry.resolve_table("hr.person")

    def test_field_unique_per_table(self, db_session):
        registry = MetadataRegistry(db_session)
        person = registry.resolve_table("person")
        account = registry.resolve_table("account")

        person_name = registry.resolve_field(person, "name")

        assert registry.resolve_field(person, "name") == person_name
        assert registry.resolve_field(account, "name") != person_name
        assert db_session.query(Field).count() == 2

    def test_field_belongs_to_its_table(self, db_session):
        registry = MetadataRegistry(db_session)
        table_id = registry.resolve_table("person")

        field = db_session.get(Field, registry.resolve_field(table_id, "phone"))

        assert field.audited_table_id == table_id
        assert field.name == "phone"

    def test_user_resolved_once(self, db_session):
        registry = MetadataRegistry(db_session)

        assert registry.resolve_user("alice") == registry.resolve_user("alice")
        assert db_session.query(AuditUser).count() == 1

    def test_numeric_user_identifier_stored_as_text(self, db_session):
        registry = MetadataRegistry(db_session)

        user_id = registry.resolve_user(42)

        assert registry.resolve_user("42") == user_id
        assert db_session.get(AuditUser, user_id).name == "42"

    def test_survives_commit(self, db_session):
        registry = MetadataRegistry(db_session)
        table_id = registry.resolve_table("person")
        db_session.commit()

        assert MetadataRegistry(db_session).resolve_table("person") == table_id


class TestConcurrentCreation:
    """A lost insert race returns the winner's id instead of failing."""

    def test_lost_race_returns_existing_id(self, db_session, monkeypatch):
        registry = MetadataRegistry(db_session)
        winner = registry.resolve_table("person")

        # Simulate a writer whose lookup ran before the winner's insert was visible
        original_lookup = registry._lookup
        calls = []

        def stale_lookup(model, **key):
            calls.append(key)
            if len(calls) == 1:
                return None
            return original_lookup(model, **key)

        monkeypatch.setattr(registry, "_lookup", stale_lookup)

        assert registry.resolve_table("person") == winner
        assert len(calls) == 2
        assert db_session.query(AuditedTable).count() == 1

    def test_lost_race_keeps_outer_transaction(self, db_session, monkeypatch):
        """Only the savepoint is rolled back; earlier work in the transaction stays."""
        registry = MetadataRegistry(db_session)
        table_id = registry.resolve_table("person")
        field_id = registry.resolve_field(table_id, "name")

        original_lookup = registry._lookup
        stale = {"done": False}

        def stale_lookup(model, **key):
            if not stale["done"]:
                stale["done"] = True
                return None
            return original_lookup(model, **key)

        monkeypatch.setattr(registry, "_lookup", stale_lookup)

        assert registry.resolve_field(table_id, "name") == field_id
        db_session.commit()

        assert db_session.query(AuditedTable).count() == 1
        assert db_session.query(Field).count() == 1

    def test_conflict_without_winner_is_persistence_error(self, db_session, monkeypatch):
        registry = MetadataRegistry(db_session)
        registry.resolve_user("alice")

        monkeypatch.setattr(registry, "_lookup", lambda model, **key: None)

        with pytest.raises(PersistenceError):
            registry.resolve_user("alice")

    def test_rejected_insert_is_persistence_error(self, db_session):
        """A NOT NULL violation cannot be a race, so it is not recovered."""
        registry = MetadataRegistry(db_session)

        with pytest.raises(PersistenceError) as exc_info:
            registry.resolve_table(None)

        assert exc_info.value.__cause__ is not None
