"""Linked issue model"""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from issuerelay.models.base import Base, utcnow


class LinkedIssue(Base):
    """Mapping of a canonical issue to one external item"""

    __tablename__ = "linked_issues"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(String, ForeignKey("issues.id"), nullable=False, index=True)

    # External item; the url is the upsert key
    url = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=True)
    source_id = Column(String, nullable=True, index=True)
    source = Column(JSON, nullable=True)  # e.g. {"type": "gitlab"}
    source_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    issue = relationship("Issue", back_populates="linked_issues")

    @property
    def source_type(self):
        return (self.source or {}).get("type")

    def __repr__(self):
        return f"<LinkedIssue(issue_id='{self.issue_id}', url='{self.url}')>"
