"""Append-only issue history"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from issuerelay.models import IssueHistory

logger = logging.getLogger(__name__)


class HistoryRecorder:
    """Persist diff records for issues.

    The recorder is mechanical: whatever diff it is handed is stored, including an
    empty one. Callers decide whether a mutation is worth recording.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user_id: Optional[str],
        issue_id: str,
        diff: Dict[str, Any],
        source_metadata: Optional[Dict[str, Any]] = None,
    ) -> IssueHistory:
        """Append one history entry"""
        entry = IssueHistory(
            issue_id=issue_id,
            user_id=user_id,
            added_label_ids=list(diff.get("added_label_ids") or []),
            removed_label_ids=list(diff.get("removed_label_ids") or []),
            source_metadata=source_metadata,
        )
        for key, value in diff.items():
            if key.startswith(("from_", "to_")):
                setattr(entry, key, value)
        self.db.add(entry)
        self.db.commit()
        return entry

    def purge(self, issue_id: str) -> int:
        """Remove every entry of an issue. Only hard delete calls this."""
        count = (
            self.db.query(IssueHistory)
            .filter(IssueHistory.issue_id == issue_id)
            .delete(synchronize_session=False)
        )
        logger.info(f"Purged {count} history entries for issue {issue_id}")
        return count

    def list_for_issue(self, issue_id: str) -> List[IssueHistory]:
        return (
            self.db.query(IssueHistory)
            .filter(IssueHistory.issue_id == issue_id)
            .order_by(IssueHistory.created_at.asc(), IssueHistory.id.asc())
            .all()
        )
