"""Issue mutation service"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from issuerelay.errors import InvalidIssueError, IssueConflictError, IssueNotFoundError
from issuerelay.models import Issue, IssueComment, LinkedIssue, TeamIssueCounter
from issuerelay.models.base import utcnow
from issuerelay.models.sync_log import IssueAction
from issuerelay.schemas import IssueCreate, IssueUpdate, LinkIssueData
from issuerelay.services.diff import IssueSnapshot, diff_issues
from issuerelay.services.history import HistoryRecorder
from issuerelay.services.linked_issues import upsert_linked_issue

logger = logging.getLogger(__name__)

FALLBACK_TITLE_LENGTH = 80

# Constraint names (Postgres) and column lists (SQLite) of the numbering uniques
NUMBERING_CONSTRAINTS = (
    "uq_issues_team_number",
    "issues.team_id, issues.number",
    "team_issue_counters",
)


def _is_numbering_conflict(error: IntegrityError) -> bool:
    message = str(error.orig)
    return any(name in message for name in NUMBERING_CONSTRAINTS)


class IssueService:
    """Create, update and delete issues.

    Every committed create/update is followed by a history entry and an outbound
    sync dispatch. Those follow-ups are best-effort: a failure there is logged and
    the committed mutation stands.
    """

    def __init__(self, db: Session, summarizer=None, dispatcher=None):
        self.db = db
        self.summarizer = summarizer
        self.dispatcher = dispatcher
        self.history = HistoryRecorder(db)

    # ------------------------------------------------------------------
    # Titles
    # ------------------------------------------------------------------

    @staticmethod
    def _fallback_title(description: str) -> str:
        first_line = next((line.strip() for line in description.splitlines() if line.strip()), "")
        return first_line[:FALLBACK_TITLE_LENGTH]

    def _generate_title(self, description: str) -> str:
        """Summarize a description, degrading to its first line."""
        if self.summarizer is not None:
            # No transaction may stay open across the summarizer call.
            self.db.rollback()
            try:
                return self.summarizer.summarize(description)
            except Exception as e:
                logger.warning(f"Title generation failed, using description: {e}")
        return self._fallback_title(description)

    def _title_for_create(self, data: IssueCreate) -> Tuple[str, bool]:
        """Return (title, generated)."""
        if data.title and data.title.strip():
            return data.title.strip(), False
        if data.description and data.description.strip():
            return self._generate_title(data.description), True
        return "", False

    @staticmethod
    def _title_replaceable(issue: Any) -> bool:
        """Only titles nobody typed may be regenerated."""
        return bool(issue.title_generated) or not issue.title

    # ------------------------------------------------------------------
    # Follow-ups
    # ------------------------------------------------------------------

    def _attach_link(
        self, issue: Issue, link_issue_data: Optional[LinkIssueData]
    ) -> Optional[LinkedIssue]:
        if link_issue_data is None:
            return None
        try:
            row, _ = upsert_linked_issue(self.db, issue.id, link_issue_data)
            return row
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to link {link_issue_data.url} to issue {issue.id}: {e}")
            return None

    def _record_history(
        self,
        user_id: Optional[str],
        issue_id: str,
        previous: Optional[IssueSnapshot],
        current: IssueSnapshot,
        source_metadata: Optional[Dict[str, Any]],
    ) -> None:
        try:
            self.history.record(user_id, issue_id, diff_issues(previous, current), source_metadata)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record history for issue {issue_id}: {e}")

    def _dispatch_sync(self, issue: Issue, action: IssueAction, user_id: Optional[str]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(issue.id, action, user_id)
        except Exception as e:
            logger.error(f"Failed to dispatch {action.value} sync for issue {issue.id}: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _next_number(self, team_id: str) -> int:
        """Bump the team counter; the caller commits it together with the new issue."""
        counter = (
            self.db.query(TeamIssueCounter)
            .filter(TeamIssueCounter.team_id == team_id)
            .with_for_update()
            .first()
        )
        if counter is None:
            # Seed from rows written before the team had a counter
            last = self.db.query(func.max(Issue.number)).filter(Issue.team_id == team_id).scalar()
            counter = TeamIssueCounter(team_id=team_id, last_number=last or 0)
            self.db.add(counter)
        counter.last_number += 1
        return counter.last_number

    def get_issue(self, team_id: str, issue_id: str, *, include_deleted: bool = False) -> Issue:
        query = self.db.query(Issue).filter(Issue.id == issue_id, Issue.team_id == team_id)
        if not include_deleted:
            query = query.filter(Issue.deleted_at.is_(None))
        issue = query.first()
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_issue(
        self,
        team_id: str,
        data: IssueCreate,
        user_id: Optional[str] = None,
        link_issue_data: Optional[LinkIssueData] = None,
        link_metadata: Optional[Dict[str, Any]] = None,
    ) -> Issue:
        """Create an issue with the next number from the team counter"""
        # Summarize before opening the write transaction.
        title, generated = self._title_for_create(data)

        values = data.model_dump(exclude={"title"})
        values["label_ids"] = list(dict.fromkeys(values.get("label_ids") or []))
        number = self._next_number(team_id)
        issue = Issue(
            team_id=team_id,
            number=number,
            title=title,
            title_generated=generated,
            source_metadata=link_metadata,
            created_by_id=user_id,
            **values,
        )
        try:
            self.db.add(issue)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if _is_numbering_conflict(e):
                raise IssueConflictError(f"Issue number {number} already taken in team {team_id}") from e
            raise InvalidIssueError(f"Issue rejected in team {team_id}: {e.orig}") from e
        self.db.refresh(issue)
        logger.info(f"Created issue {team_id}#{issue.number} ({issue.id})")

        self._attach_link(issue, link_issue_data)
        self._record_history(user_id, issue.id, None, IssueSnapshot.from_issue(issue), link_metadata)
        self._dispatch_sync(issue, IssueAction.CREATED, user_id)
        return issue

    def _wants_new_title(self, team_id: str, issue_id: str, changes: Dict[str, Any]) -> bool:
        if (changes.get("title") or "").strip():
            return False
        description = changes.get("description")
        if not description or not description.strip():
            return False
        current = (
            self.db.query(Issue.title, Issue.title_generated, Issue.description)
            .filter(Issue.id == issue_id, Issue.team_id == team_id)
            .first()
        )
        if current is None or current.description == description:
            return False
        return self._title_replaceable(current)

    def update_issue(
        self,
        team_id: str,
        issue_id: str,
        patch: IssueUpdate,
        user_id: Optional[str] = None,
        link_issue_data: Optional[LinkIssueData] = None,
        link_metadata: Optional[Dict[str, Any]] = None,
    ) -> Issue:
        """Apply a sparse patch.

        The snapshot used for the diff is read under a row lock in the same
        transaction as the write, and the UPDATE is version-checked, so a
        concurrent writer makes this call fail with IssueConflictError instead of
        producing a diff against a superseded state.
        """
        changes = patch.changes()
        new_title = None
        if self._wants_new_title(team_id, issue_id, changes):
            new_title = self._generate_title(changes["description"])

        try:
            issue = (
                self.db.query(Issue)
                .filter(Issue.id == issue_id, Issue.team_id == team_id, Issue.deleted_at.is_(None))
                .with_for_update()
                .populate_existing()
                .first()
            )
            if issue is None:
                raise IssueNotFoundError(issue_id)

            previous = IssueSnapshot.from_issue(issue)
            replaceable = self._title_replaceable(issue)
            description_changed = (
                "description" in changes and changes["description"] != issue.description
            )

            title = (changes.pop("title", None) or "").strip()
            if title:
                issue.title = title
                issue.title_generated = False
            elif new_title is not None and description_changed and replaceable:
                issue.title = new_title
                issue.title_generated = True

            if "label_ids" in changes:
                changes["label_ids"] = list(dict.fromkeys(changes["label_ids"] or []))
            for key, value in changes.items():
                setattr(issue, key, value)

            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise IssueConflictError(f"Concurrent update of issue {issue_id}") from e
        except IntegrityError as e:
            self.db.rollback()
            raise InvalidIssueError(f"Update of issue {issue_id} rejected: {e.orig}") from e
        except IssueNotFoundError:
            self.db.rollback()
            raise

        self.db.refresh(issue)
        logger.info(f"Updated issue {team_id}#{issue.number} ({issue.id})")

        self._attach_link(issue, link_issue_data)
        self._record_history(user_id, issue.id, previous, IssueSnapshot.from_issue(issue), link_metadata)
        self._dispatch_sync(issue, IssueAction.UPDATED, user_id)
        return issue

    def soft_delete_issue(self, team_id: str, issue_id: str) -> Issue:
        """Mark an issue deleted. History is kept and nothing is synced out."""
        issue = self.get_issue(team_id, issue_id, include_deleted=True)
        if issue.deleted_at is not None:
            return issue
        try:
            issue.deleted_at = utcnow()
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise IssueConflictError(f"Concurrent update of issue {issue_id}") from e
        logger.info(f"Soft-deleted issue {team_id}#{issue.number} ({issue.id})")
        return issue

    def hard_delete_issue(self, team_id: str, issue_id: str) -> Optional[Issue]:
        """Remove an issue with its history, comments and links.

        Returns None when the issue does not exist (already deleted).
        """
        issue = (
            self.db.query(Issue)
            .filter(Issue.id == issue_id, Issue.team_id == team_id)
            .first()
        )
        if issue is None:
            logger.info(f"Issue {issue_id} not found in team {team_id}; nothing to delete")
            return None

        try:
            self.history.purge(issue.id)
            self.db.query(IssueComment).filter(IssueComment.issue_id == issue.id).delete(
                synchronize_session=False
            )
            self.db.query(LinkedIssue).filter(LinkedIssue.issue_id == issue.id).delete(
                synchronize_session=False
            )
            # Children lose their parent rather than blocking the delete.
            detached = []
            for child in self.db.query(Issue).filter(Issue.parent_id == issue.id).all():
                detached.append((child, IssueSnapshot.from_issue(child)))
                child.parent_id = None
            self.db.delete(issue)
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise IssueConflictError(f"Concurrent update of issue {issue_id}") from e
        logger.info(f"Hard-deleted issue {team_id}#{issue.number} ({issue_id})")

        for child, previous in detached:
            self._record_history(None, child.id, previous, IssueSnapshot.from_issue(child), None)
        return issue

    def add_comment(
        self,
        issue_id: str,
        body: str,
        user_id: Optional[str] = None,
        source_metadata: Optional[Dict[str, Any]] = None,
    ) -> IssueComment:
        issue = (
            self.db.query(Issue)
            .filter(Issue.id == issue_id, Issue.deleted_at.is_(None))
            .first()
        )
        if issue is None:
            raise IssueNotFoundError(issue_id)
        comment = IssueComment(
            issue_id=issue.id,
            body=body,
            user_id=user_id,
            source_metadata=source_metadata,
        )
        self.db.add(comment)
        self.db.commit()
        return comment
