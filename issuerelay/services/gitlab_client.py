"""GitLab API client wrapper and tracker adapter"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import gitlab

from issuerelay.config import settings
from issuerelay.models import IntegrationAccount, Issue, LinkedIssue
from issuerelay.models.integration_account import Provider

logger = logging.getLogger(__name__)


class GitLabClient:
    """Wrapper for GitLab API operations"""

    def __init__(self, url: str, access_token: str, timeout: Optional[float] = None):
        """Initialize GitLab client"""
        self.url = url
        self.gl = gitlab.Gitlab(
            url,
            private_token=access_token,
            timeout=timeout or settings.tracker_timeout_seconds,
        )
        self.gl.auth()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        # python-gitlab exceptions often carry an HTTP response code
        rc = getattr(exc, "response_code", None)
        if rc in (429, 500, 502, 503, 504):
            return True
        # If we can't classify, don't retry to avoid hiding real issues.
        return False

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def get_project(self, project_id: str):
        """Get project by ID or path"""
        try:
            return self._with_retries(lambda: self.gl.projects.get(project_id))
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get project {project_id}: {e}")
            raise

    def get_issue_or_none(self, project_id: str, issue_iid: int) -> Optional[Any]:
        """Get a specific issue by IID, returning None on 404/403."""
        project = self.get_project(project_id)
        try:
            return self._with_retries(lambda: project.issues.get(issue_iid))
        except gitlab.exceptions.GitlabGetError as e:
            if getattr(e, "response_code", None) in (403, 404):
                return None
            raise

    def search_issues(self, project_id: str, search: str) -> List[Any]:
        """Search issue titles and descriptions of a project"""
        try:
            project = self.get_project(project_id)
            return self._with_retries(
                lambda: project.issues.list(get_all=True, state="all", per_page=100, search=search)
            )
        except Exception as e:
            logger.error(f"Failed to search issues in project {project_id}: {e}")
            raise

    def create_issue(self, project_id: str, issue_data: Dict[str, Any]) -> Any:
        """Create a new issue"""
        try:
            project = self.get_project(project_id)
            issue = self._with_retries(lambda: project.issues.create(issue_data))
            logger.info(f"Created issue #{issue.iid} in project {project_id}")
            return issue
        except Exception as e:
            logger.error(f"Failed to create issue in project {project_id}: {e}")
            raise

    def update_issue(self, project_id: str, issue_iid: int, issue_data: Dict[str, Any]) -> Any:
        """Update an existing issue"""
        try:
            project = self.get_project(project_id)
            issue = self._with_retries(lambda: project.issues.get(issue_iid))
            for key, value in issue_data.items():
                setattr(issue, key, value)
            self._with_retries(lambda: issue.save())
            logger.info(f"Updated issue #{issue_iid} in project {project_id}")
            return issue
        except Exception as e:
            logger.error(f"Failed to update issue {issue_iid} in project {project_id}: {e}")
            raise

    def create_issue_note(self, project_id: str, issue_iid: int, note_body: str) -> Any:
        """Create a note (comment) on an issue"""
        try:
            project = self.get_project(project_id)
            issue = self._with_retries(lambda: project.issues.get(issue_iid))
            note = self._with_retries(lambda: issue.notes.create({"body": note_body}))
            logger.info(f"Created note on issue #{issue_iid}")
            return note
        except Exception as e:
            logger.error(f"Failed to create note on issue {issue_iid}: {e}")
            raise


@dataclass(frozen=True)
class ExternalItem:
    """What a tracker reports back after an upsert"""

    external_id: str
    external_url: str
    external_title: str
    source_data: Dict[str, Any]


class GitLabTracker:
    """Mirror canonical issues into a GitLab project.

    Each mirrored issue carries a hidden marker with the canonical issue id, so an
    upsert can find the item it created earlier even when no link was stored.
    """

    provider = Provider.GITLAB

    _MARKER_RE = re.compile(r"<!--\s*issuerelay-issue:(?P<id>[A-Za-z0-9-]+)\s*-->")

    def __init__(self, client_factory=None):
        self._client_factory = client_factory or GitLabClient
        # account id -> ((url, token), client); a changed url or token replaces the client
        self.clients: Dict[int, Tuple[Tuple[str, str], GitLabClient]] = {}

    @classmethod
    def issue_marker(cls, issue_id: str) -> str:
        return f"<!-- issuerelay-issue:{issue_id} -->"

    @classmethod
    def parse_issue_marker(cls, description: Optional[str]) -> Optional[str]:
        if not description:
            return None
        m = cls._MARKER_RE.search(description)
        return m.group("id") if m else None

    @classmethod
    def strip_issue_marker(cls, description: Optional[str]) -> str:
        return cls._MARKER_RE.sub("", description or "").rstrip()

    def _get_client(self, account: IntegrationAccount) -> GitLabClient:
        """Get or create GitLab client for an account's current url and token"""
        url = account.typed_settings.instance_url or "https://gitlab.com"
        credentials = (url, account.access_token)
        cached = self.clients.get(account.id)
        if cached is None or cached[0] != credentials:
            self.clients[account.id] = (credentials, self._client_factory(url, account.access_token))
        return self.clients[account.id][1]

    @staticmethod
    def _project_for(issue: Issue, account: IntegrationAccount) -> str:
        mapping = account.typed_settings.bidirectional_mapping(issue.team_id)
        if mapping is None or not mapping.project_id:
            raise ValueError(f"No GitLab project mapped for team {issue.team_id}")
        return mapping.project_id

    def _payload(self, issue: Issue) -> Dict[str, Any]:
        description = issue.description or ""
        return {
            "title": issue.title or f"Issue {issue.number}",
            "description": f"{description}\n\n{self.issue_marker(issue.id)}".lstrip(),
        }

    def _find_by_marker(self, client: GitLabClient, project_id: str, issue_id: str) -> Optional[Any]:
        for candidate in client.search_issues(project_id, issue_id):
            if self.parse_issue_marker(getattr(candidate, "description", None)) == issue_id:
                return candidate
        return None

    def upsert_item(
        self,
        issue: Issue,
        account: IntegrationAccount,
        actor_id: Optional[str],
        linked: Optional[LinkedIssue] = None,
    ) -> ExternalItem:
        """Create or update the GitLab issue mirroring `issue`."""
        client = self._get_client(account)
        project_id = self._project_for(issue, account)
        payload = self._payload(issue)

        target = None
        if linked is not None and (linked.source_data or {}).get("iid") is not None:
            target = client.get_issue_or_none(project_id, int(linked.source_data["iid"]))
        if target is None:
            target = self._find_by_marker(client, project_id, issue.id)

        if target is None:
            target = client.create_issue(project_id, payload)
        else:
            target = client.update_issue(project_id, target.iid, payload)
        logger.debug(f"Upserted GitLab issue #{target.iid} for issue {issue.id} (actor={actor_id})")

        return ExternalItem(
            external_id=str(target.iid),
            external_url=target.web_url,
            external_title=target.title,
            source_data={"id": str(target.id), "iid": int(target.iid), "project_id": project_id},
        )

    def post_linking_comment(self, account: IntegrationAccount, issue: Issue, external_id: str) -> None:
        """Tell the GitLab side which canonical issue it mirrors."""
        client = self._get_client(account)
        project_id = self._project_for(issue, account)
        body = f"This issue is linked to issue #{issue.number} and kept in sync both ways."
        client.create_issue_note(project_id, int(external_id), body)
