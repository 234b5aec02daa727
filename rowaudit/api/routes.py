"""Read-only API routes over the audit log."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from rowaudit.database import get_db
from rowaudit.models.enums import ActionType, ComparisonOperator, SortOrder
from rowaudit.services.query import query_changes, get_changeset
from rowaudit.api.schemas import ChangeFilter, ChangeRecord, ChangesetResponse

router = APIRouter()


@router.get("/changes", response_model=List[ChangeRecord])
def list_changes(
    table: str = Query(..., min_length=1),
    row: str = Query(..., min_length=1),
    action_type: Optional[List[ActionType]] = Query(None),
    field: Optional[str] = None,
    created_on: Optional[datetime] = None,
    created_on_op: ComparisonOperator = ComparisonOperator.EQ,
    order: SortOrder = SortOrder.ASC,
    db: Session = Depends(get_db)
):
    """
    List the changes recorded for one row.

    Composite keys are addressed by their serialized form, e.g. row=3-10.
    """
    try:
        change_filter = ChangeFilter(
            table_name=table,
            row_id=row,
            action_types=action_type,
            field_name=field,
            created_on=created_on,
            created_on_op=created_on_op,
            order=order
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return query_changes(db, change_filter)


@router.get("/changesets/{changeset_id}", response_model=ChangesetResponse)
def read_changeset(changeset_id: int, db: Session = Depends(get_db)):
    """Get a changeset with all of its actions and changes."""
    changeset = get_changeset(db, changeset_id)
    if not changeset:
        raise HTTPException(status_code=404, detail="Changeset not found")
    return changeset
