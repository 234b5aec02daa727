"""
Errors raised by the audit engine.

Only a uniqueness conflict while resolving a dictionary row (user, table,
field) is recovered inside the engine. Everything defined here propagates
so the enclosing business transaction rolls back with its audit rows.
"""


class AuditLogError(Exception):
    """Base class for audit engine failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(AuditLogError):
    """A column's transform reference cannot be resolved to a callable."""

    def __init__(self, message: str, column: str = None):
        self.column = column
        super().__init__(message)


class PersistenceError(AuditLogError):
    """The database rejected an audit write."""


class InvariantViolation(AuditLogError):
    """The audit graph would become inconsistent. This is a programming error."""
