"""Webhook event handlers"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from issuerelay.errors import ExternalServiceError, IssueNotFoundError
from issuerelay.models import IntegrationAccount, Issue, LinkedIssue
from issuerelay.models.integration_account import Provider
from issuerelay.schemas import IssueCreate, IssueUpdate, LinkIssueData
from issuerelay.services.events import EventKind, InboundEvent, RouteOutcome
from issuerelay.services.gitlab_client import GitLabTracker
from issuerelay.services.issue_service import IssueService
from issuerelay.services.router import EventRouter
from issuerelay.services.slack_client import SlackClient

logger = logging.getLogger(__name__)


def slack_thread_key(channel_id: str, thread_ts: str) -> str:
    """Source id under which a Slack thread is linked to an issue"""
    return f"{channel_id}_{thread_ts}"


def _find_slack_thread_link(db: Session, channel_id: str, thread_ts: str) -> Optional[LinkedIssue]:
    rows = (
        db.query(LinkedIssue)
        .filter(LinkedIssue.source_id == slack_thread_key(channel_id, thread_ts))
        .all()
    )
    return next((row for row in rows if row.source_type == Provider.SLACK), None)


class SlackThreadHandler:
    """Mirror replies in a linked Slack thread as issue comments"""

    def __init__(self, issue_service: IssueService):
        self.issue_service = issue_service

    def __call__(self, event: InboundEvent, account: IntegrationAccount) -> RouteOutcome:
        message = event.event
        if message.get("subtype"):
            return RouteOutcome.declined(f"Ignoring message subtype: {message['subtype']}")

        channel_id = message.get("channel")
        thread_ts = message.get("thread_ts")
        if not channel_id or not thread_ts or thread_ts == message.get("ts"):
            return RouteOutcome.declined("Not a thread reply")

        link = _find_slack_thread_link(self.issue_service.db, channel_id, thread_ts)
        if link is None:
            logger.debug(f"No issue linked to Slack thread {channel_id}/{thread_ts}")
            return RouteOutcome.declined("No issue linked to thread")

        try:
            self.issue_service.add_comment(
                link.issue_id,
                message.get("text") or "",
                source_metadata={
                    "type": Provider.SLACK,
                    "channel_id": channel_id,
                    "message_ts": message.get("ts"),
                    "slack_user_id": event.actor_id,
                },
            )
        except IssueNotFoundError:
            return RouteOutcome.declined(f"Issue {link.issue_id} is deleted")
        return RouteOutcome.dispatched()


class SlackReactionHandler:
    """Create an issue from a message that got the triage emoji"""

    def __init__(self, issue_service: IssueService, slack: SlackClient):
        self.issue_service = issue_service
        self.slack = slack

    def __call__(self, event: InboundEvent, account: IntegrationAccount) -> RouteOutcome:
        reaction = event.event
        settings = account.typed_settings
        if reaction.get("reaction") != settings.triage_emoji:
            return RouteOutcome.declined(f"Ignoring reaction: {reaction.get('reaction')}")

        item = reaction.get("item") or {}
        if item.get("type") != "message":
            return RouteOutcome.declined("Reaction is not on a message")

        channel_id, message_ts = item.get("channel"), item.get("ts")
        team_id = settings.team_for_channel(channel_id)
        if team_id is None:
            return RouteOutcome.declined(f"Channel {channel_id} is not mapped to a team")

        try:
            message = self.slack.get_message(account, channel_id, message_ts)
            if message is None:
                return RouteOutcome.declined("Reacted message not found")
            thread_ts = message.get("thread_ts") or message_ts

            # One issue per thread, however many times it gets the emoji.
            if _find_slack_thread_link(self.issue_service.db, channel_id, thread_ts) is not None:
                return RouteOutcome.declined("Thread is already linked to an issue")

            permalink = self.slack.get_permalink(account, channel_id, message_ts)
        except ExternalServiceError as e:
            logger.warning(f"Could not read Slack message {channel_id}/{message_ts}: {e}")
            return RouteOutcome.declined("Could not read reacted message")

        metadata: Dict[str, Any] = {
            "type": Provider.SLACK,
            "channel_id": channel_id,
            "message_ts": message_ts,
            "reacted_by": event.actor_id,
        }
        issue = self.issue_service.create_issue(
            team_id,
            IssueCreate(description=message.get("text") or ""),
            link_issue_data=LinkIssueData(
                url=permalink,
                title="Slack message",
                source_id=slack_thread_key(channel_id, thread_ts),
                source={"type": Provider.SLACK},
                source_data={
                    "channel_id": channel_id,
                    "message_ts": message_ts,
                    "thread_ts": thread_ts,
                    "slack_user_id": message.get("user"),
                },
            ),
            link_metadata=metadata,
        )

        # Posted as the bot, so the echo is filtered on the way back in.
        try:
            self.slack.post_message(
                account,
                channel_id,
                f"Created issue #{issue.number}: {issue.title}",
                thread_ts=thread_ts,
            )
        except ExternalServiceError as e:
            logger.warning(f"Failed to announce issue {issue.id} in Slack: {e}")
        return RouteOutcome.dispatched()


class GitLabIssueHandler:
    """Apply edits made on a linked GitLab issue to the canonical issue"""

    def __init__(self, issue_service: IssueService):
        self.issue_service = issue_service

    def __call__(self, event: InboundEvent, account: IntegrationAccount) -> RouteOutcome:
        attrs = event.event
        url = attrs.get("url")
        if not url:
            return RouteOutcome.declined("Event carries no issue url")
        db = self.issue_service.db
        link = db.query(LinkedIssue).filter(LinkedIssue.url == url).first()
        if link is None:
            return RouteOutcome.declined(f"No issue linked to {url}")

        issue = db.query(Issue).filter(Issue.id == link.issue_id).first()
        if issue is None or issue.deleted_at is not None:
            return RouteOutcome.declined(f"Issue {link.issue_id} is deleted")

        changes: Dict[str, Any] = {}
        title = attrs.get("title")
        if title and title != issue.title:
            changes["title"] = title
        if "description" in attrs:
            description = GitLabTracker.strip_issue_marker(attrs.get("description"))
            if description != (issue.description or ""):
                changes["description"] = description
        if not changes:
            return RouteOutcome.declined("No tracked changes")

        user = event.body.get("user") or {}
        try:
            self.issue_service.update_issue(
                issue.team_id,
                issue.id,
                IssueUpdate(**changes),
                link_metadata={
                    "type": Provider.GITLAB,
                    "external_url": url,
                    "gitlab_user": user.get("username"),
                },
            )
        except IssueNotFoundError:
            return RouteOutcome.declined(f"Issue {link.issue_id} is deleted")
        return RouteOutcome.dispatched()


def build_router(
    db: Session,
    summarizer=None,
    dispatcher=None,
    slack: Optional[SlackClient] = None,
) -> EventRouter:
    """Router with the standard handler set bound to one session"""
    issue_service = IssueService(db, summarizer=summarizer, dispatcher=dispatcher)
    return EventRouter(
        {
            EventKind.SLACK_MESSAGE: SlackThreadHandler(issue_service),
            EventKind.SLACK_REACTION_ADDED: SlackReactionHandler(issue_service, slack or SlackClient()),
            EventKind.GITLAB_ISSUE: GitLabIssueHandler(issue_service),
        }
    )
