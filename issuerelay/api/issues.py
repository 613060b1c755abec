"""Issue endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from issuerelay.api.deps import get_dispatcher, get_summarizer
from issuerelay.errors import InvalidIssueError, IssueConflictError, IssueNotFoundError
from issuerelay.models.base import get_db
from issuerelay.schemas import IssueCreate, IssueUpdate, LinkIssueData
from issuerelay.services.issue_service import IssueService

router = APIRouter(prefix="/api/teams/{team_id}/issues", tags=["issues"])


class IssueCreateRequest(IssueCreate):
    user_id: Optional[str] = None
    link_issue: Optional[LinkIssueData] = None


class IssueUpdateRequest(IssueUpdate):
    user_id: Optional[str] = None
    link_issue: Optional[LinkIssueData] = None


class IssueResponse(BaseModel):
    id: str
    team_id: str
    number: int
    title: str
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = None
    parent_id: Optional[str] = None
    state_id: Optional[str] = None
    estimate: Optional[float] = None
    label_ids: List[str]
    source_metadata: Optional[Dict[str, Any]] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class IssueHistoryResponse(BaseModel):
    id: int
    issue_id: str
    user_id: Optional[str] = None
    from_assignee_id: Optional[str] = None
    to_assignee_id: Optional[str] = None
    from_priority: Optional[int] = None
    to_priority: Optional[int] = None
    from_parent_id: Optional[str] = None
    to_parent_id: Optional[str] = None
    from_state_id: Optional[str] = None
    to_state_id: Optional[str] = None
    from_estimate: Optional[float] = None
    to_estimate: Optional[float] = None
    added_label_ids: List[str]
    removed_label_ids: List[str]
    source_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


def get_issue_service(
    db: Session = Depends(get_db),
    summarizer=Depends(get_summarizer),
    dispatcher=Depends(get_dispatcher),
) -> IssueService:
    return IssueService(db, summarizer=summarizer, dispatcher=dispatcher)


@router.post("/", response_model=IssueResponse)
def create_issue(
    team_id: str, payload: IssueCreateRequest, service: IssueService = Depends(get_issue_service)
):
    """Create an issue"""
    data = IssueCreate(**payload.model_dump(include=set(IssueCreate.model_fields)))
    try:
        return service.create_issue(
            team_id, data, user_id=payload.user_id, link_issue_data=payload.link_issue
        )
    except IssueConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidIssueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{issue_id}", response_model=IssueResponse)
def get_issue(team_id: str, issue_id: str, service: IssueService = Depends(get_issue_service)):
    """Get a specific issue"""
    try:
        return service.get_issue(team_id, issue_id)
    except IssueNotFoundError:
        raise HTTPException(status_code=404, detail="Issue not found")


@router.put("/{issue_id}", response_model=IssueResponse)
def update_issue(
    team_id: str,
    issue_id: str,
    payload: IssueUpdateRequest,
    service: IssueService = Depends(get_issue_service),
):
    """Update an issue; only fields present in the body change"""
    fields = payload.model_fields_set & set(IssueUpdate.model_fields)
    patch = IssueUpdate(**payload.model_dump(include=fields))
    try:
        return service.update_issue(
            team_id, issue_id, patch, user_id=payload.user_id, link_issue_data=payload.link_issue
        )
    except IssueNotFoundError:
        raise HTTPException(status_code=404, detail="Issue not found")
    except IssueConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidIssueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/{issue_id}")
def delete_issue(team_id: str, issue_id: str, service: IssueService = Depends(get_issue_service)):
    """Soft-delete an issue"""
    try:
        service.soft_delete_issue(team_id, issue_id)
    except IssueNotFoundError:
        raise HTTPException(status_code=404, detail="Issue not found")
    except IssueConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Issue deleted successfully"}


@router.delete("/{issue_id}/permanent")
def delete_issue_permanently(
    team_id: str, issue_id: str, service: IssueService = Depends(get_issue_service)
):
    """Hard-delete an issue and its history. Deleting a missing issue is not an error."""
    try:
        deleted = service.hard_delete_issue(team_id, issue_id)
    except IssueConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if deleted is None:
        return {"message": "Issue not found"}
    return {"message": "Issue permanently deleted"}


@router.get("/{issue_id}/history", response_model=List[IssueHistoryResponse])
def list_issue_history(
    team_id: str, issue_id: str, service: IssueService = Depends(get_issue_service)
):
    """List the audit trail of an issue, oldest first"""
    try:
        issue = service.get_issue(team_id, issue_id, include_deleted=True)
    except IssueNotFoundError:
        raise HTTPException(status_code=404, detail="Issue not found")
    return service.history.list_for_issue(issue.id)
