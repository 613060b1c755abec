"""Background dispatch of outbound sync jobs"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from issuerelay.models import Issue
from issuerelay.models.base import SessionLocal
from issuerelay.models.integration_account import Provider
from issuerelay.models.sync_log import IssueAction
from issuerelay.services.gitlab_client import GitLabTracker
from issuerelay.services.two_way_sync import TwoWaySyncCoordinator

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Run two-way sync off the request path.

    Each mutation submits a one-off job; webhook and API responses do not wait for
    the external tracker. Jobs for the same issue run one at a time. When the
    scheduler is not running (scripts, tests) jobs run inline.
    """

    def __init__(self, session_factory=None, trackers=None):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory or SessionLocal
        self.trackers = trackers if trackers is not None else {Provider.GITLAB: GitLabTracker()}
        # issue id -> [lock, jobs holding or waiting on it]; dropped when the count hits zero
        self._locks: Dict[str, List] = {}
        self._locks_guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def dispatch(self, issue_id: str, action: IssueAction, user_id: Optional[str] = None):
        """Queue a sync of one issue"""
        if not self.running:
            self._sync_issue_job(issue_id, action, user_id)
            return

        # No trigger: run once, as soon as a worker is free.
        self.scheduler.add_job(
            func=self._sync_issue_job,
            args=[issue_id, action, user_id],
            name=f"sync_issue_{issue_id}_{action.value}",
            misfire_grace_time=None,
        )
        logger.debug(f"Queued {action.value} sync for issue {issue_id}")

    @contextmanager
    def _issue_lock(self, issue_id: str):
        with self._locks_guard:
            entry = self._locks.setdefault(issue_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[issue_id]

    def _sync_issue_job(self, issue_id: str, action: IssueAction, user_id: Optional[str]):
        """Job function to sync one issue"""
        with self._issue_lock(issue_id):
            db = self.session_factory()
            try:
                issue = db.query(Issue).filter(Issue.id == issue_id).first()
                if issue is None:
                    logger.info(f"Issue {issue_id} no longer exists; skipping {action.value} sync")
                    return
                status = TwoWaySyncCoordinator(db, self.trackers).sync_issue(issue, action, user_id)
                logger.debug(f"Sync job for issue {issue_id} finished: {status.value}")
            except Exception as e:
                logger.error(f"Sync job failed for issue {issue_id}: {e}")
            finally:
                db.close()


# Global scheduler instance
scheduler = SyncScheduler()
