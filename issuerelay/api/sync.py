"""Sync inspection endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from issuerelay.models import LinkedIssue, SyncLog
from issuerelay.models.base import get_db
from issuerelay.models.sync_log import SyncStatus

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncLogResponse(BaseModel):
    id: int
    issue_id: str
    integration_account_id: Optional[int] = None
    action: str
    status: str
    message: Optional[str] = None
    external_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LinkedIssueResponse(BaseModel):
    id: int
    issue_id: str
    url: str
    title: Optional[str] = None
    source_id: Optional[str] = None
    source: Optional[Dict[str, Any]] = None
    source_data: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    limit: int = 100,
    issue_id: Optional[str] = None,
    status: Optional[SyncStatus] = None,
    db: Session = Depends(get_db),
):
    """List sync logs"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc())
    if issue_id:
        query = query.filter(SyncLog.issue_id == issue_id)
    if status:
        query = query.filter(SyncLog.status == status)
    return query.limit(limit).all()


@router.get("/linked-issues", response_model=List[LinkedIssueResponse])
def list_linked_issues(issue_id: Optional[str] = None, db: Session = Depends(get_db)):
    """List linked issues"""
    query = db.query(LinkedIssue).order_by(LinkedIssue.created_at.desc())
    if issue_id:
        query = query.filter(LinkedIssue.issue_id == issue_id)
    return query.all()
