"""
Dictionary rows of the audit log: users, tables and fields.

Each is get-or-create keyed on a unique constraint. Two transactions may
race to create the same row; the loser's insert fails on the constraint
inside its own SAVEPOINT and the winner's id is fetched instead. No locks
are taken, so unrelated transactions never wait on each other.
"""
import logging
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rowaudit.models.audit import AuditUser, AuditedTable, Field
from rowaudit.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class MetadataRegistry:
    """Resolves user, table and field names to their surrogate ids."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_table(self, name: str) -> int:
        return self._get_or_create(AuditedTable, name=name)

    def resolve_field(self, table_id: int, name: str) -> int:
        return self._get_or_create(Field, audited_table_id=table_id, name=name)

    def resolve_user(self, name) -> int:
        # Actor identifiers are free text: usernames, numeric ids, ...
        return self._get_or_create(AuditUser, name=str(name))

    def _lookup(self, model, **key) -> Optional[int]:
        return self.db.execute(select(model.id).filter_by(**key)).scalar_one_or_none()

    def _get_or_create(self, model, **key) -> int:
        existing = self._lookup(model, **key)
        if existing is not None:
            return existing

        connection = self.db.connection()
        try:
            with connection.begin_nested():
                result = connection.execute(insert(model.__table__).values(**key))
                new_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            # Lost the race: another transaction created the row first
            winner = self._lookup(model, **key)
            if winner is None:
                raise PersistenceError(
                    f"Could not create {model.__tablename__} row for {key}"
                ) from exc
            logger.info("Reused concurrently created %s row %s for %s", model.__tablename__, winner, key)
            return winner
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not create {model.__tablename__} row for {key}"
            ) from exc

        logger.debug("Created %s row %s for %s", model.__tablename__, new_id, key)
        return new_id
