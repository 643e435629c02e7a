"""Audit log query and export endpoints"""
from datetime import date, datetime, time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tasksync.api.deps import CurrentUser, get_current_user
from tasksync.config import settings
from tasksync.models.base import get_db, utcnow
from tasksync.services.audit import AuditLog

router = APIRouter(prefix="/api/audit", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: int
    operation_id: int
    ticket_id: str
    platform: str
    action_type: str
    user_email: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


def _date_range(start_date: Optional[str], end_date: Optional[str]):
    """Parse YYYY-MM-DD bounds; the end bound covers the whole day"""
    try:
        start = datetime.combine(date.fromisoformat(start_date), time.min) if start_date else None
        end = datetime.combine(date.fromisoformat(end_date), time.max) if end_date else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Dates must be formatted as YYYY-MM-DD")
    return start, end


@router.get("/logs", response_model=List[AuditLogResponse])
def list_audit_logs(
    user_email: Optional[str] = None,
    ticket_id: Optional[str] = None,
    platform: Optional[str] = None,
    action_type: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: Optional[int] = None,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Filtered audit entries, newest first; defaults to the caller's own entries"""
    start, end = _date_range(start_date, end_date)
    return AuditLog(db).filtered(
        user_email=user_email or user.email,
        ticket_id=ticket_id,
        platform=platform,
        action_type=action_type,
        start_date=start,
        end_date=end,
        limit=limit if limit is not None else settings.audit_default_limit,
    )


@router.get("/tickets/{ticket_id}", response_model=List[AuditLogResponse])
def ticket_history(ticket_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return AuditLog(db).by_ticket(ticket_id)


@router.get("/operations/{operation_id}", response_model=List[AuditLogResponse])
def operation_logs(operation_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return AuditLog(db).by_operation(operation_id)


@router.get("/export")
def export_audit_logs(
    user_email: Optional[str] = None,
    ticket_id: Optional[str] = None,
    platform: Optional[str] = None,
    action_type: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Download the filtered entries as CSV"""
    start, end = _date_range(start_date, end_date)
    content = AuditLog(db).export_csv(
        user_email=user_email or user.email,
        ticket_id=ticket_id,
        platform=platform,
        action_type=action_type,
        start_date=start,
        end_date=end,
    )
    filename = f"audit_logs_{utcnow().strftime('%Y%m%d_%H%M%S')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
