"""Linked issue persistence"""

from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuerelay.models import LinkedIssue
from issuerelay.schemas import LinkIssueData


def find_linked_issue(db: Session, issue_id: str, source_type: str) -> Optional[LinkedIssue]:
    """The link of `issue_id` to an item of the given provider, if any."""
    rows = (
        db.query(LinkedIssue)
        .filter(LinkedIssue.issue_id == issue_id)
        .order_by(LinkedIssue.id.asc())
        .all()
    )
    for row in rows:
        if row.source_type == source_type:
            return row
    return None


def upsert_linked_issue(db: Session, issue_id: str, data: LinkIssueData) -> Tuple[LinkedIssue, bool]:
    """Insert or update the link keyed by external url.

    Returns (row, created). A concurrent insert of the same url loses the race with
    an IntegrityError; we then update the winner's row instead.
    """
    values = data.model_dump(exclude_unset=True)
    row = db.query(LinkedIssue).filter(LinkedIssue.url == data.url).first()
    if row is None:
        row = LinkedIssue(issue_id=issue_id, **values)
        try:
            db.add(row)
            db.commit()
            return row, True
        except IntegrityError:
            # Another worker likely created the link first.
            db.rollback()
            row = db.query(LinkedIssue).filter(LinkedIssue.url == data.url).one()

    row.issue_id = issue_id
    for key, value in values.items():
        if key == "source_data" and row.source_data:
            # Keep bookkeeping keys written by earlier syncs.
            value = {**row.source_data, **(value or {})}
        setattr(row, key, value)
    db.commit()
    return row, False
