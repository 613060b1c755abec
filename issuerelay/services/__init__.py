"""Services"""

from issuerelay.services.history import HistoryRecorder
from issuerelay.services.issue_service import IssueService
from issuerelay.services.router import EventRouter
from issuerelay.services.two_way_sync import TwoWaySyncCoordinator

__all__ = ["EventRouter", "HistoryRecorder", "IssueService", "TwoWaySyncCoordinator"]
