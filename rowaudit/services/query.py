"""Read-only queries over the stored audit log."""
import operator
from typing import List, Optional

from sqlalchemy.orm import Session

from rowaudit.api.schemas import (
    ActionResponse,
    ChangeFilter,
    ChangeRecord,
    ChangeResponse,
    ChangesetResponse,
)
from rowaudit.models.audit import Action, AuditUser, AuditedTable, Change, Changeset, Field
from rowaudit.models.enums import ComparisonOperator, SortOrder

_OPERATORS = {
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LE: operator.le,
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GE: operator.ge,
}


def query_changes(db: Session, change_filter: ChangeFilter) -> List[ChangeRecord]:
    """Changes recorded for one row of one table, in natural change order."""
    query = db.query(
        Change.id.label("change_id"),
        Action.id.label("action_id"),
        Changeset.id.label("changeset_id"),
        Action.action_type.label("action_type"),
        AuditedTable.name.label("table_name"),
        Action.audited_row.label("audited_row"),
        Field.name.label("field_name"),
        Change.old_value.label("old_value"),
        Change.new_value.label("new_value"),
        Changeset.created_on.label("created_on"),
        AuditUser.name.label("user_name"),
        Changeset.description.label("description"),
    ).join(
        Action, Change.action_id == Action.id
    ).join(
        Changeset, Action.changeset_id == Changeset.id
    ).join(
        AuditedTable, Action.audited_table_id == AuditedTable.id
    ).join(
        Field, Change.field_id == Field.id
    ).outerjoin(
        AuditUser, Changeset.user_id == AuditUser.id
    ).filter(
        AuditedTable.name == change_filter.table_name,
        Action.audited_row == change_filter.row_id
    )

    if change_filter.action_types:
        query = query.filter(Action.action_type.in_(change_filter.action_types))
    if change_filter.field_name is not None:
        query = query.filter(Field.name == change_filter.field_name)
    if change_filter.created_on is not None:
        compare = _OPERATORS[change_filter.created_on_op]
        query = query.filter(compare(Changeset.created_on, change_filter.created_on))

    if change_filter.order == SortOrder.DESC:
        query = query.order_by(Change.id.desc())
    else:
        query = query.order_by(Change.id.asc())

    return [ChangeRecord.model_validate(row, from_attributes=True) for row in query.all()]


def get_changeset(db: Session, changeset_id: int) -> Optional[ChangesetResponse]:
    """A changeset with its actions and their changes, or None."""
    changeset = db.query(Changeset).filter(Changeset.id == changeset_id).first()
    if not changeset:
        return None

    return ChangesetResponse(
        id=changeset.id,
        description=changeset.description,
        created_on=changeset.created_on,
        user_name=changeset.user.name if changeset.user else None,
        actions=[
            ActionResponse(
                id=action.id,
                table_name=action.audited_table.name,
                audited_row=action.audited_row,
                action_type=action.action_type,
                changes=[
                    ChangeResponse(
                        id=change.id,
                        field_name=change.field.name,
                        old_value=change.old_value,
                        new_value=change.new_value
                    )
                    for change in action.changes
                ]
            )
            for action in changeset.actions
        ]
    )
