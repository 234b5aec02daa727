"""
Row diff engine.

Turns a row's prior and new state into the ordered list of field changes
that should be recorded for one action.
"""
from datetime import date, datetime, time
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from rowaudit.models.enums import ActionType
from rowaudit.services.policy import ColumnPolicy, DEFAULT_POLICY

_MISSING = object()


class FieldChange(NamedTuple):
    name: str
    old_value: Optional[str]
    new_value: Optional[str]


def to_text(value: Any) -> Optional[str]:
    """Serialize a column value for storage in the audit log."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _column_order(policies: Mapping[str, ColumnPolicy], *rows: Optional[Mapping[str, Any]]) -> List[str]:
    # Declared columns first, then anything else the host handed us
    names = list(policies)
    seen = set(names)
    for row in rows:
        for name in row or ():
            if name not in seen:
                seen.add(name)
                names.append(name)
    return names


def _selected(action_type: ActionType, policy: ColumnPolicy, old: Any, new: Any) -> bool:
    if policy.forced:
        return True
    if not policy.auditable:
        return False
    if action_type == ActionType.INSERT:
        return new is not None
    if action_type == ActionType.DELETE:
        return old is not None
    return old != new


def diff(
    action_type: ActionType,
    old_row: Optional[Mapping[str, Any]],
    new_row: Optional[Mapping[str, Any]],
    policies: Dict[str, ColumnPolicy],
    row_context: Any = None
) -> List[FieldChange]:
    """
    Compute the field changes to record for one mutation.

    - insert: forced columns, and auditable columns with a non-null new value
    - delete: forced columns, and auditable columns with a non-null old value
    - update: forced columns, and auditable columns whose value changed

    Whether a column is recorded is decided on raw values. Transforms are
    applied afterwards to the old and new value independently, so a
    transform can never hide a real change.
    """
    action_type = ActionType(action_type)
    old_row = {} if action_type == ActionType.INSERT else (old_row or {})
    new_row = {} if action_type == ActionType.DELETE else (new_row or {})
    if row_context is None:
        row_context = new_row or old_row

    changes = []
    for name in _column_order(policies, old_row, new_row):
        policy = policies.get(name, DEFAULT_POLICY)
        old = old_row.get(name)
        new = new_row.get(name, _MISSING)
        if new is _MISSING:
            # Columns an update did not touch keep their old value
            new = old if action_type == ActionType.UPDATE else None

        if not _selected(action_type, policy, old, new):
            continue

        if policy.transform is not None:
            if old is not None:
                old = policy.transform(row_context, old)
            if new is not None:
                new = policy.transform(row_context, new)

        changes.append(FieldChange(
            name=name,
            old_value=None if action_type == ActionType.INSERT else to_text(old),
            new_value=None if action_type == ActionType.DELETE else to_text(new)
        ))

    return changes
