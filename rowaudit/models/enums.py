"""Enums for the audit log - these define the valid values for actions and query options."""
from enum import Enum


class ActionType(str, Enum):
    """The three kinds of row mutation that can be recorded. No other types are allowed."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class SortOrder(str, Enum):
    """Ordering of change records by their natural (insertion) order."""
    ASC = "asc"
    DESC = "desc"


class ComparisonOperator(str, Enum):
    """Operators accepted when filtering changes by changeset creation time."""
    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
