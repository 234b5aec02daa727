"""
Audit log schema - the six append-only tables that hold the change history.

These tables never reference the application's own schema: audited_row is
an opaque, denormalized copy of the mutated row's primary key.
"""
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from rowaudit.database import Base
from rowaudit.models.enums import ActionType


class AuditUser(Base):
    """
    The actor a changeset is attributed to.

    Invariants:
    - name is unique (free-text identifier supplied by the application)
    - Created on first use, never updated or deleted
    """
    __tablename__ = "audit_log_user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)

    changesets = relationship("Changeset", back_populates="user")


class Changeset(Base):
    """
    One business transaction.

    Invariants:
    - Created at most once per transaction, lazily, on the first audited mutation
    - user_id and description are optional and fixed at creation
    """
    __tablename__ = "audit_log_changeset"

    id = Column(Integer, primary_key=True, autoincrement=True)
    description = Column(Text, nullable=True)
    created_on = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    user_id = Column(Integer, ForeignKey("audit_log_user.id"), nullable=True, index=True)

    user = relationship("AuditUser", back_populates="changesets")
    actions = relationship("Action", back_populates="changeset", order_by="Action.id")


class AuditedTable(Base):
    """A table name seen by the audit log (may carry a schema prefix)."""
    __tablename__ = "audit_log_table"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)

    fields = relationship("Field", back_populates="audited_table", order_by="Field.id")


class Field(Base):
    """A column of an audited table, unique per (table, name)."""
    __tablename__ = "audit_log_field"
    __table_args__ = (
        UniqueConstraint("audited_table_id", "name", name="uq_audit_log_field_table_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    audited_table_id = Column(Integer, ForeignKey("audit_log_table.id"), nullable=False)
    name = Column(String, nullable=False)

    audited_table = relationship("AuditedTable", back_populates="fields")


class Action(Base):
    """
    One insert/update/delete of one row.

    Invariants:
    - Belongs to exactly one changeset and one audited table
    - audited_row is the primary key serialized as text ("3-10" for composite keys)
    - May have zero changes (the mutation happened but no audited column changed)
    """
    __tablename__ = "audit_log_action"

    id = Column(Integer, primary_key=True, autoincrement=True)
    changeset_id = Column(Integer, ForeignKey("audit_log_changeset.id"), nullable=False, index=True)
    audited_table_id = Column(Integer, ForeignKey("audit_log_table.id"), nullable=False)
    audited_row = Column(String, nullable=False)
    action_type = Column(
        SQLEnum(ActionType, values_callable=lambda enum: [member.value for member in enum]),
        nullable=False
    )

    changeset = relationship("Changeset", back_populates="actions")
    audited_table = relationship("AuditedTable")
    changes = relationship("Change", back_populates="action", order_by="Change.id")

    __table_args__ = (
        # Lookups always go by (table, row)
        Index("ix_audit_log_action_table_row", "audited_table_id", "audited_row"),
    )


class Change(Base):
    """
    One field-level old/new pair.

    Invariants:
    - old_value is NULL for inserts, new_value is NULL for deletes
    - The field's table equals the action's table
    """
    __tablename__ = "audit_log_change"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_id = Column(Integer, ForeignKey("audit_log_action.id"), nullable=False, index=True)
    field_id = Column(Integer, ForeignKey("audit_log_field.id"), nullable=False, index=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    action = relationship("Action", back_populates="changes")
    field = relationship("Field")
