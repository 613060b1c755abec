"""Outbound half of bidirectional sync"""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from issuerelay.models import IntegrationAccount, Issue, SyncLog
from issuerelay.models.integration_account import Provider
from issuerelay.models.sync_log import IssueAction, SyncStatus
from issuerelay.schemas import LinkIssueData
from issuerelay.services.gitlab_client import GitLabTracker
from issuerelay.services.linked_issues import find_linked_issue, upsert_linked_issue

logger = logging.getLogger(__name__)

LINKING_COMMENT_FLAG = "linking_comment_sent"


class TwoWaySyncCoordinator:
    """Push a mutated issue to the external tracker its team is linked to.

    Re-running for the same change is safe: the external item is found again by the
    tracker's upsert key, the link row is upserted by url, and the linking comment is
    sent once per link.

    Our own writes come back as webhooks authored by the integration's bot identity;
    the event normalizer drops those, which closes the loop.
    """

    def __init__(self, db: Session, trackers: Optional[Dict[str, object]] = None):
        self.db = db
        self.trackers = trackers if trackers is not None else {Provider.GITLAB: GitLabTracker()}

    def find_account(self, team_id: str) -> Optional[IntegrationAccount]:
        """First account of a tracker provider with a bidirectional mapping for the team"""
        accounts = (
            self.db.query(IntegrationAccount)
            .filter(IntegrationAccount.provider.in_(list(self.trackers)))
            .order_by(IntegrationAccount.id.asc())
            .all()
        )
        for account in accounts:
            if account.typed_settings.bidirectional_mapping(team_id) is not None:
                return account
        return None

    def _log_sync(
        self,
        issue_id: str,
        account: IntegrationAccount,
        action: IssueAction,
        status: SyncStatus,
        message: str = "",
        external_url: Optional[str] = None,
    ):
        """Log sync operation"""
        try:
            log = SyncLog(
                issue_id=issue_id,
                integration_account_id=account.id,
                action=action,
                status=status,
                message=message,
                external_url=external_url,
            )
            self.db.add(log)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to persist sync log for issue {issue_id}: {e}")

    def sync_issue(self, issue: Issue, action: IssueAction, user_id: Optional[str] = None) -> SyncStatus:
        if issue.deleted_at is not None:
            logger.debug(f"Issue {issue.id} is deleted; not syncing")
            return SyncStatus.SKIPPED

        account = self.find_account(issue.team_id)
        if account is None:
            logger.debug(f"No bidirectional mapping for team {issue.team_id}")
            return SyncStatus.SKIPPED

        tracker = self.trackers[account.provider]
        item = None
        try:
            linked = find_linked_issue(self.db, issue.id, account.provider)
            item = tracker.upsert_item(issue, account, user_id, linked=linked)
            link, _ = upsert_linked_issue(
                self.db,
                issue.id,
                LinkIssueData(
                    url=item.external_url,
                    title=item.external_title,
                    source_id=item.external_id,
                    source={"type": account.provider},
                    source_data={**item.source_data, "title": item.external_title},
                ),
            )

            if action == IssueAction.CREATED and not (link.source_data or {}).get(LINKING_COMMENT_FLAG):
                tracker.post_linking_comment(account, issue, item.external_id)
                link.source_data = {**(link.source_data or {}), LINKING_COMMENT_FLAG: True}
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to sync issue {issue.id} to {account.provider}: {e}")
            self._log_sync(
                issue.id,
                account,
                action,
                SyncStatus.FAILED,
                f"Sync failed: {e}",
                external_url=item.external_url if item else None,
            )
            return SyncStatus.FAILED

        logger.info(f"Synced issue {issue.id} ({action.value}) to {item.external_url}")
        self._log_sync(issue.id, account, action, SyncStatus.SUCCESS, external_url=item.external_url)
        return SyncStatus.SUCCESS
