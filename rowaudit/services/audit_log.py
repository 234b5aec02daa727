"""
Entry point of the audit engine.

All recording MUST go through AuditLog.record_mutation, which drives the
changeset coordinator, the row diff, the metadata registry and the writer
inside the caller's transaction.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, Optional

from sqlalchemy.orm import Session

from rowaudit.api.schemas import ChangeFilter, ChangeRecord
from rowaudit.models.enums import ActionType
from rowaudit.services.changeset import CONTEXT_KEY, ChangesetCoordinator, TransactionContext, begin_context
from rowaudit.services.diff import diff
from rowaudit.services.policy import PolicyInput, coerce_policies
from rowaudit.services.query import query_changes
from rowaudit.services.registry import MetadataRegistry
from rowaudit.services.writer import AuditWriter

logger = logging.getLogger(__name__)


class AuditLog:
    """Records row mutations of one session's transactions."""

    def __init__(self, db: Session, coordinator: Optional[ChangesetCoordinator] = None):
        self.db = db
        self.coordinator = coordinator or ChangesetCoordinator.for_session(db)

    @contextmanager
    def transaction(self, user: Any = None, description: Optional[str] = None) -> Iterator[TransactionContext]:
        """
        Run a business transaction whose mutations share one changeset.

        Commits on success, rolls back on error. Either way the cached
        changeset is discarded, so the context is never reused.

        Inside a transaction that is already in progress the block joins
        it: the outer context is yielded and the outer block decides
        whether to commit.
        """
        outer = self.db.info.get(CONTEXT_KEY)
        context = begin_context(self.db, user, description)
        if context is outer:
            yield context
            return

        context.managed = True
        try:
            yield context
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            context.managed = False
            self.coordinator.discard(context)

    def record_mutation(
        self,
        context: TransactionContext,
        action_type: ActionType,
        table_name: str,
        pk_values: Any,
        old_row: Optional[Mapping[str, Any]] = None,
        new_row: Optional[Mapping[str, Any]] = None,
        column_policies: PolicyInput = None,
        row_context: Any = None
    ) -> int:
        """
        Record one insert/update/delete and return the new action id.

        The action is written even when no audited column changed.
        """
        action_type = ActionType(action_type)
        policies = coerce_policies(column_policies)

        # Diff first: a broken transform must fail before anything is written
        field_changes = diff(action_type, old_row, new_row, policies, row_context=row_context)

        changeset_id = self.coordinator.current_changeset(self.db, context)
        writer = AuditWriter(self.db, MetadataRegistry(self.db))
        return writer.record(action_type, table_name, pk_values, field_changes, changeset_id)

    def query_changes(self, change_filter: ChangeFilter) -> List[ChangeRecord]:
        return query_changes(self.db, change_filter)
