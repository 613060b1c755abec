"""Database models"""

from issuerelay.models.base import Base
from issuerelay.models.integration_account import IntegrationAccount
from issuerelay.models.issue import Issue, IssueComment, TeamIssueCounter
from issuerelay.models.issue_history import IssueHistory
from issuerelay.models.linked_issue import LinkedIssue
from issuerelay.models.sync_log import SyncLog

__all__ = [
    "Base",
    "IntegrationAccount",
    "Issue",
    "IssueComment",
    "IssueHistory",
    "LinkedIssue",
    "SyncLog",
    "TeamIssueCounter",
]
