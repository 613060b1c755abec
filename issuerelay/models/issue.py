"""Issue and comment models"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from issuerelay.models.base import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Issue(Base):
    """Canonical work item"""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("team_id", "number", name="uq_issues_team_number"),
    )

    id = Column(String, primary_key=True, default=_new_id)
    team_id = Column(String, nullable=False, index=True)
    # Team-scoped sequential number, assigned once at creation
    number = Column(Integer, nullable=False)

    title = Column(String, nullable=False, default="")
    # True when the title came from the summarizer rather than a person
    title_generated = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)

    assignee_id = Column(String, nullable=True)
    priority = Column(Integer, nullable=True)
    parent_id = Column(String, ForeignKey("issues.id"), nullable=True)
    state_id = Column(String, nullable=True)
    estimate = Column(Float, nullable=True)
    label_ids = Column(JSON, nullable=False, default=list)

    # Provenance of an externally-created issue (opaque)
    source_metadata = Column(JSON, nullable=True)
    created_by_id = Column(String, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    # Bumped on every UPDATE; a concurrent writer's stale version fails the statement
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    linked_issues = relationship("LinkedIssue", back_populates="issue", passive_deletes="all")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<Issue(team_id='{self.team_id}', number={self.number})>"


class IssueComment(Base):
    """Comment attached to an issue, e.g. a mirrored chat thread reply"""

    __tablename__ = "issue_comments"

    id = Column(String, primary_key=True, default=_new_id)
    issue_id = Column(String, ForeignKey("issues.id"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    user_id = Column(String, nullable=True)
    source_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<IssueComment(issue_id='{self.issue_id}')>"


class TeamIssueCounter(Base):
    """Last number handed out per team; survives hard deletes so numbers are never reused"""

    __tablename__ = "team_issue_counters"

    team_id = Column(String, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<TeamIssueCounter(team_id='{self.team_id}', last_number={self.last_number})>"
