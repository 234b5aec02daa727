"""
SQLAlchemy integration.

Detects inserts, updates and deletes of audited mapped classes during a
session flush and records them through AuditLog in the same transaction:

    class Person(Audited, Base):
        __tablename__ = "person"
        id = Column(Integer, primary_key=True)
        password = Column(String, info={"audit": False})

    AuditHooks().attach(SessionLocal)

Mutations are captured in after_flush, while attribute history and the
new/dirty/deleted collections still describe the flush, and written in
after_flush_postexec once the flush has been finalized.
"""
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import NO_VALUE

from rowaudit.models.enums import ActionType
from rowaudit.services.audit_log import AuditLog
from rowaudit.services.changeset import current_context
from rowaudit.services.policy import ColumnPolicy, DEFAULT_POLICY, PolicyResolver

logger = logging.getLogger(__name__)

PENDING_KEY = "rowaudit.pending"
ORIGINALS_KEY = "rowaudit.originals"


class Audited:
    """Marker mixin: rows of mapped classes deriving from it are audited."""
    __audited__ = True


class PendingMutation(NamedTuple):
    action_type: ActionType
    table_name: str
    pk_values: Tuple[Any, ...]
    old_row: Optional[Dict[str, Any]]
    new_row: Optional[Dict[str, Any]]
    policies: Dict[str, ColumnPolicy]
    row_context: Any


def _is_audited(obj) -> bool:
    return isinstance(obj, Audited)


def _own_columns(mapper):
    """(attribute key, column) pairs of the columns stored in the class's own table."""
    table = mapper.local_table
    for prop in mapper.column_attrs:
        column = prop.columns[0]
        if column.table is table:
            yield prop.key, column


class AuditHooks:
    """Session event listeners feeding flushed mutations to the audit log."""

    def __init__(self, resolver: Optional[PolicyResolver] = None):
        self.resolver = resolver or PolicyResolver()

    def attach(self, target):
        """Listen on a Session, a sessionmaker or the Session class."""
        event.listen(target, "before_flush", self._before_flush)
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_flush_postexec", self._after_flush_postexec)
        event.listen(target, "after_transaction_end", self._after_transaction_end)
        return target

    def detach(self, target):
        event.remove(target, "before_flush", self._before_flush)
        event.remove(target, "after_flush", self._after_flush)
        event.remove(target, "after_flush_postexec", self._after_flush_postexec)
        event.remove(target, "after_transaction_end", self._after_transaction_end)
        return target

    def _before_flush(self, session: Session, flush_context, instances):
        originals = session.info[ORIGINALS_KEY] = {}

        # Deleted rows are recorded with their old values, which may have
        # been expired (e.g. by a previous commit); load them while the row exists.
        for obj in session.deleted:
            if not _is_audited(obj):
                continue
            state = inspect(obj)
            for key, column in _own_columns(state.mapper):
                if key in state.unloaded:
                    getattr(obj, key)

        for obj in session.dirty:
            if not _is_audited(obj):
                continue
            state = inspect(obj)
            # An attribute assigned while expired has no old value in its history
            values = self._load_unknown_originals(session, state)
            if values:
                originals[state] = values
            # Forced columns are recorded even when untouched
            policies = self.resolver.policies_for_table(state.mapper.local_table)
            for key, column in _own_columns(state.mapper):
                if key in state.unloaded and policies.get(column.name, DEFAULT_POLICY).forced:
                    getattr(obj, key)

    def _after_flush(self, session: Session, flush_context):
        originals = session.info.get(ORIGINALS_KEY, {})
        pending: List[PendingMutation] = []

        new_objects = [obj for obj in session.new if _is_audited(obj)]
        new_objects.sort(key=lambda obj: inspect(obj).insert_order)
        for obj in new_objects:
            pending.append(self._capture(obj, ActionType.INSERT))

        for obj in session.dirty:
            if _is_audited(obj) and session.is_modified(obj, include_collections=False):
                pending.append(self._capture(obj, ActionType.UPDATE, originals.get(inspect(obj))))

        for obj in session.deleted:
            if _is_audited(obj):
                pending.append(self._capture(obj, ActionType.DELETE))

        session.info[PENDING_KEY] = pending

    def _after_flush_postexec(self, session: Session, flush_context):
        session.info.pop(ORIGINALS_KEY, None)
        pending = session.info.pop(PENDING_KEY, None)
        if not pending:
            return

        audit_log = AuditLog(session)
        context = current_context(session)
        logger.debug("Recording %d flushed mutation(s)", len(pending))
        for mutation in pending:
            audit_log.record_mutation(
                context,
                mutation.action_type,
                mutation.table_name,
                mutation.pk_values,
                old_row=mutation.old_row,
                new_row=mutation.new_row,
                column_policies=mutation.policies,
                row_context=mutation.row_context
            )

    def _after_transaction_end(self, session: Session, transaction):
        # A flush that failed after capture leaves its queue behind
        if transaction.parent is None:
            session.info.pop(PENDING_KEY, None)
            session.info.pop(ORIGINALS_KEY, None)

    def _load_unknown_originals(self, session: Session, state) -> Dict[str, Any]:
        mapper = state.mapper
        unknown = [
            (key, column) for key, column in _own_columns(mapper)
            if key in state.committed_state and state.committed_state[key] is NO_VALUE
        ]
        if not unknown or state.identity is None:
            return {}

        criteria = [column == value for column, value in zip(mapper.primary_key, state.identity)]
        row = session.execute(
            select(*[column for key, column in unknown]).where(*criteria)
        ).first()
        if row is None:
            return {}
        return {key: value for (key, column), value in zip(unknown, row)}

    def _capture(self, obj, action_type: ActionType, originals: Optional[Dict[str, Any]] = None) -> PendingMutation:
        state = inspect(obj)
        mapper = state.mapper
        table = mapper.local_table
        originals = originals or {}

        old_row: Dict[str, Any] = {}
        new_row: Dict[str, Any] = {}
        for key, column in _own_columns(mapper):
            if action_type == ActionType.UPDATE:
                history = state.attrs[key].history
                if history.added:
                    new_row[column.name] = history.added[0]
                    old_row[column.name] = history.deleted[0] if history.deleted else originals.get(key)
                elif history.unchanged:
                    old_row[column.name] = new_row[column.name] = history.unchanged[0]
            elif key in state.dict:
                values = new_row if action_type == ActionType.INSERT else old_row
                values[column.name] = state.dict[key]

        if state.identity is not None:
            pk_values = tuple(state.identity)
        else:
            pk_values = tuple(mapper.primary_key_from_instance(obj))

        return PendingMutation(
            action_type=action_type,
            table_name=table.fullname,
            pk_values=pk_values,
            old_row=old_row if action_type != ActionType.INSERT else None,
            new_row=new_row if action_type != ActionType.DELETE else None,
            policies=self.resolver.policies_for_table(table),
            row_context=obj
        )
