"""Sync log model"""
import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text

from issuerelay.models.base import Base, utcnow


class SyncStatus(str, enum.Enum):
    """Sync status enumeration"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class IssueAction(str, enum.Enum):
    """Mutation that triggered a sync"""
    CREATED = "created"
    UPDATED = "updated"


class SyncLog(Base):
    """Log of outbound sync operations"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Issue may since have been hard-deleted; keep the log row anyway.
    issue_id = Column(String, nullable=False, index=True)
    integration_account_id = Column(Integer, ForeignKey("integration_accounts.id"), nullable=True)

    action = Column(Enum(IssueAction), nullable=False)
    status = Column(Enum(SyncStatus), nullable=False)
    message = Column(Text, nullable=True)
    external_url = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<SyncLog(status={self.status}, action={self.action})>"
