"""Persists one action and its field changes."""
import logging
from collections.abc import Iterable
from typing import Any, List, Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rowaudit.models.audit import Action, Change, Field
from rowaudit.models.enums import ActionType
from rowaudit.services.diff import FieldChange, to_text
from rowaudit.services.errors import InvariantViolation, PersistenceError
from rowaudit.services.registry import MetadataRegistry

logger = logging.getLogger(__name__)

PK_SEPARATOR = "-"


def serialize_primary_key(pk_values: Any) -> str:
    """
    Serialize primary key values, in declared key column order, as text.

    Composite keys are joined with "-": (3, 10) -> "3-10".
    """
    if isinstance(pk_values, (str, bytes)) or not isinstance(pk_values, Iterable):
        pk_values = [pk_values]
    parts = [to_text(value) for value in pk_values]
    if not parts or any(part is None for part in parts):
        raise InvariantViolation(f"Primary key values must be present and non-null: {pk_values!r}")
    return PK_SEPARATOR.join(parts)


class AuditWriter:
    """Writes Action and Change rows in the caller's transaction."""

    def __init__(self, db: Session, registry: Optional[MetadataRegistry] = None):
        self.db = db
        self.registry = registry or MetadataRegistry(db)

    def record(
        self,
        action_type: ActionType,
        table_name: str,
        pk_values: Any,
        field_changes: List[FieldChange],
        changeset_id: int
    ) -> int:
        action_type = ActionType(action_type)
        audited_row = serialize_primary_key(pk_values)

        table_id = self.registry.resolve_table(table_name)
        field_ids = [self.registry.resolve_field(table_id, change.name) for change in field_changes]
        self._check_fields(table_id, field_ids)

        connection = self.db.connection()
        try:
            result = connection.execute(
                insert(Action.__table__).values(
                    changeset_id=changeset_id,
                    audited_table_id=table_id,
                    audited_row=audited_row,
                    action_type=action_type
                )
            )
            action_id = result.inserted_primary_key[0]

            if field_changes:
                connection.execute(
                    insert(Change.__table__),
                    [
                        {
                            "action_id": action_id,
                            "field_id": field_id,
                            "old_value": change.old_value,
                            "new_value": change.new_value,
                        }
                        for field_id, change in zip(field_ids, field_changes)
                    ]
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not record {action_type.value} of {table_name} row {audited_row}"
            ) from exc

        logger.debug(
            "Recorded %s of %s row %s: action %s with %d change(s) in changeset %s",
            action_type.value, table_name, audited_row, action_id, len(field_changes), changeset_id
        )
        return action_id

    def _check_fields(self, table_id: int, field_ids: List[int]) -> None:
        if not field_ids:
            return
        owners = dict(self.db.execute(
            select(Field.id, Field.audited_table_id).where(Field.id.in_(set(field_ids)))
        ).all())
        for field_id in field_ids:
            if owners.get(field_id) != table_id:
                raise InvariantViolation(
                    f"Field {field_id} does not belong to audited table {table_id}"
                )
