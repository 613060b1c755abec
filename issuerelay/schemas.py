"""Request/patch schemas shared by the API and the services"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IssueCreate(BaseModel):
    # Optional: if omitted/blank, the title is generated from the description
    title: Optional[str] = None
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = None
    parent_id: Optional[str] = None
    state_id: Optional[str] = None
    estimate: Optional[float] = None
    label_ids: List[str] = Field(default_factory=list)


class IssueUpdate(BaseModel):
    """Sparse patch.

    Only fields the caller actually set are applied (`model_fields_set`); an explicit
    `null` clears the field, an omitted field is left alone.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    priority: Optional[int] = None
    parent_id: Optional[str] = None
    state_id: Optional[str] = None
    estimate: Optional[float] = None
    label_ids: Optional[List[str]] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class LinkIssueData(BaseModel):
    """An external item (chat thread, tracker issue) to link to an issue"""

    url: str
    title: Optional[str] = None
    source_id: Optional[str] = None
    source: Optional[Dict[str, Any]] = None
    source_data: Optional[Dict[str, Any]] = None
