"""Issue history model"""
from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String

from issuerelay.models.base import Base, utcnow


class IssueHistory(Base):
    """One immutable audit record of an issue mutation"""

    __tablename__ = "issue_history"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(String, ForeignKey("issues.id"), nullable=False, index=True)

    # Acting user; inbound sync may act without one
    user_id = Column(String, nullable=True)

    # Tracked field changes (sparse: NULL on both sides means "unchanged")
    from_assignee_id = Column(String, nullable=True)
    to_assignee_id = Column(String, nullable=True)
    from_priority = Column(Integer, nullable=True)
    to_priority = Column(Integer, nullable=True)
    from_parent_id = Column(String, nullable=True)
    to_parent_id = Column(String, nullable=True)
    from_state_id = Column(String, nullable=True)
    to_state_id = Column(String, nullable=True)
    from_estimate = Column(Float, nullable=True)
    to_estimate = Column(Float, nullable=True)

    added_label_ids = Column(JSON, nullable=False, default=list)
    removed_label_ids = Column(JSON, nullable=False, default=list)

    # Provenance, e.g. the chat message that triggered the change
    source_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<IssueHistory(issue_id='{self.issue_id}', user_id={self.user_id!r})>"
