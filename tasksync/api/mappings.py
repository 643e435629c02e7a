"""Ticket mapping management endpoints"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tasksync.api.deps import CurrentUser, get_current_user
from tasksync.errors import InvalidState, NotFound, StorageError
from tasksync.models.base import get_db
from tasksync.services.mappings import MappingService

router = APIRouter(prefix="/api/mappings", tags=["mappings"])


class TicketMappingCreate(BaseModel):
    a_ticket_id: str
    b_ticket_id: str


class TicketMappingResponse(BaseModel):
    id: int
    user_id: int
    a_ticket_id: str
    b_ticket_id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.get("/", response_model=List[TicketMappingResponse])
def list_mappings(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """List the caller's ticket mappings"""
    return MappingService(db).list_for_user(user.user_id)


@router.post("/", response_model=TicketMappingResponse)
def create_mapping(
    mapping: TicketMappingCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a new ticket mapping"""
    try:
        return MappingService(db).create_mapping(user.user_id, mapping.a_ticket_id, mapping.b_ticket_id)
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{mapping_id}")
def delete_mapping(mapping_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Delete a ticket mapping"""
    try:
        MappingService(db).delete_mapping(user.user_id, mapping_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Ticket mapping deleted successfully"}
