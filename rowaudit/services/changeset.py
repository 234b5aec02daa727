"""
Changeset coordination.

A changeset is the audit record of one business transaction. It is created
lazily on the first audited mutation and its id is reused for every later
mutation of the same transaction:

    NoChangeset --(first audited mutation)--> Created --(transaction ends)--> discarded
"""
import logging
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy import event, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, SessionTransaction

from rowaudit.models.audit import Changeset
from rowaudit.services.errors import PersistenceError
from rowaudit.services.registry import MetadataRegistry

logger = logging.getLogger(__name__)

CONTEXT_KEY = "rowaudit.context"
COORDINATOR_KEY = "rowaudit.coordinator"


class TransactionContext:
    """
    Handle for one business transaction.

    The actor and description are supplied once, when the transaction
    begins. Contexts compare by identity: two transactions never share one.
    """

    def __init__(self, user: Any = None, description: Optional[str] = None):
        self.user = user
        self.description = description
        # Set while an AuditLog.transaction block owns the context
        self.managed = False

    def __repr__(self):
        return f"TransactionContext(user={self.user!r}, description={self.description!r})"


def begin_context(db: Session, user: Any = None, description: Optional[str] = None) -> TransactionContext:
    """
    Start a new transaction context on the session.

    A context that is still in use, because its changeset is open or an
    AuditLog.transaction block owns it, is returned instead; user and
    description that disagree with it are ignored and logged.
    """
    context = db.info.get(CONTEXT_KEY)
    if context is not None and _in_use(db, context):
        if (user is not None and user != context.user) or (
            description is not None and description != context.description
        ):
            logger.warning(
                "Transaction context is already in use; ignoring user=%r description=%r",
                user, description
            )
        return context

    context = TransactionContext(user, description)
    db.info[CONTEXT_KEY] = context
    return context


def current_context(db: Session) -> TransactionContext:
    """The session's transaction context, created without user or description if absent."""
    context = db.info.get(CONTEXT_KEY)
    if context is None:
        context = begin_context(db)
    return context


def _in_use(db: Session, context: TransactionContext) -> bool:
    if context.managed:
        return True
    coordinator = db.info.get(COORDINATOR_KEY)
    return coordinator is not None and coordinator.has_changeset(context)


class _OpenChangeset(NamedTuple):
    id: int
    user: Any
    description: Optional[str]
    transaction: Optional[SessionTransaction]


def _within(transaction: Optional[SessionTransaction], ancestor: SessionTransaction) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


class ChangesetCoordinator:
    """
    Owns the mapping from transaction context to its changeset id.

    A coordinator obtained with for_session() follows the session's
    transactions: entries are dropped when the root transaction ends, and
    when a savepoint that created a changeset is rolled back.
    """

    def __init__(self):
        self._changesets: Dict[TransactionContext, _OpenChangeset] = {}

    @classmethod
    def for_session(cls, db: Session) -> "ChangesetCoordinator":
        coordinator = db.info.get(COORDINATOR_KEY)
        if coordinator is None:
            coordinator = cls()
            coordinator.bind(db)
            db.info[COORDINATOR_KEY] = coordinator
        return coordinator

    def bind(self, db: Session) -> None:
        event.listen(db, "after_soft_rollback", self._on_rollback)
        event.listen(db, "after_transaction_end", self._on_transaction_end)

    def current_changeset(
        self,
        db: Session,
        context: TransactionContext,
        user: Any = None,
        description: Optional[str] = None
    ) -> int:
        """
        Return the changeset id of the transaction, creating it on first use.

        user/description only take effect when the changeset is created.
        Later values that disagree with it are ignored and logged.
        """
        opened = self._changesets.get(context)
        if opened is not None:
            if (user is not None and user != opened.user) or (
                description is not None and description != opened.description
            ):
                logger.warning(
                    "Changeset %s is already open for this transaction; "
                    "ignoring user=%r description=%r",
                    opened.id, user, description
                )
            return opened.id

        if user is None:
            user = context.user
        if description is None:
            description = context.description

        user_id = None
        if user is not None:
            user_id = MetadataRegistry(db).resolve_user(user)

        try:
            result = db.connection().execute(
                insert(Changeset.__table__).values(user_id=user_id, description=description)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError("Could not create changeset") from exc

        changeset_id = result.inserted_primary_key[0]
        transaction = db.get_nested_transaction() or db.get_transaction()
        self._changesets[context] = _OpenChangeset(changeset_id, user, description, transaction)
        logger.debug("Opened changeset %s (user=%r)", changeset_id, user)
        return changeset_id

    def has_changeset(self, context: TransactionContext) -> bool:
        return context in self._changesets

    def discard(self, context: TransactionContext) -> None:
        """Forget the transaction's changeset. Called when the transaction ends."""
        self._changesets.pop(context, None)

    def _on_rollback(self, session, previous_transaction):
        for context, opened in list(self._changesets.items()):
            if _within(opened.transaction, previous_transaction):
                logger.debug("Changeset %s rolled back", opened.id)
                del self._changesets[context]

    def _on_transaction_end(self, session, transaction):
        if transaction.parent is None:
            self._changesets.clear()
            session.info.pop(CONTEXT_KEY, None)
