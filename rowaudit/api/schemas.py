"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from rowaudit.models.enums import ActionType, ComparisonOperator, SortOrder
from rowaudit.services.errors import InvariantViolation
from rowaudit.services.writer import serialize_primary_key


# Query schemas
class ChangeFilter(BaseModel):
    """
    Which changes to fetch.

    row_id may be given as a single key value or as the list of primary key
    values in declared order; lists are joined the same way audited_row is.
    """
    table_name: str = Field(..., min_length=1)
    row_id: str = Field(..., min_length=1)
    action_types: Optional[List[ActionType]] = None
    field_name: Optional[str] = None
    created_on: Optional[datetime] = None
    created_on_op: ComparisonOperator = ComparisonOperator.EQ
    order: SortOrder = SortOrder.ASC

    @field_validator("row_id", mode="before")
    @classmethod
    def serialize_row_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        # Same text form as the stored audited_row
        try:
            return serialize_primary_key(value)
        except InvariantViolation as exc:
            raise ValueError(exc.message) from exc


class ChangeRecord(BaseModel):
    """One recorded field change with the action and changeset it belongs to."""
    model_config = ConfigDict(from_attributes=True)

    change_id: int
    action_id: int
    changeset_id: int
    action_type: ActionType
    table_name: str
    audited_row: str
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]
    created_on: datetime
    user_name: Optional[str]
    description: Optional[str]


# Changeset schemas
class ChangeResponse(BaseModel):
    id: int
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]


class ActionResponse(BaseModel):
    id: int
    table_name: str
    audited_row: str
    action_type: ActionType
    changes: List[ChangeResponse] = []


class ChangesetResponse(BaseModel):
    id: int
    description: Optional[str]
    created_on: datetime
    user_name: Optional[str]
    actions: List[ActionResponse] = []
