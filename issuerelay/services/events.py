"""Inbound webhook normalization"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from issuerelay.models import IntegrationAccount
from issuerelay.models.integration_account import Provider

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Event kinds the router knows about"""
    SLACK_MESSAGE = "slack.message"
    SLACK_REACTION_ADDED = "slack.reaction_added"
    GITLAB_ISSUE = "gitlab.issue"


_SLACK_KINDS = {
    "message": EventKind.SLACK_MESSAGE,
    "reaction_added": EventKind.SLACK_REACTION_ADDED,
}
_GITLAB_KINDS = {
    "issue": EventKind.GITLAB_ISSUE,
}


class RouteStatus(str, enum.Enum):
    VERIFICATION = "verification"
    DISPATCHED = "dispatched"
    NO_ACCOUNT = "no_account"
    SELF_EVENT = "self_event"
    UNHANDLED = "unhandled"
    DECLINED = "declined"


@dataclass(frozen=True)
class RouteOutcome:
    """Result of one webhook dispatch. Every outcome is a 2xx for the provider."""

    status: RouteStatus
    message: Optional[str] = None
    challenge: Optional[str] = None

    @classmethod
    def verification(cls, challenge: str) -> "RouteOutcome":
        return cls(RouteStatus.VERIFICATION, challenge=challenge)

    @classmethod
    def dispatched(cls, message: Optional[str] = None) -> "RouteOutcome":
        return cls(RouteStatus.DISPATCHED, message=message)

    @classmethod
    def declined(cls, message: str, status: RouteStatus = RouteStatus.DECLINED) -> "RouteOutcome":
        return cls(status, message=message)

    def to_response(self) -> Dict[str, Any]:
        if self.status == RouteStatus.VERIFICATION:
            return {"challenge": self.challenge}
        if self.status == RouteStatus.DISPATCHED:
            return {"status": 200}
        return {"message": self.message or self.status.value}


@dataclass(frozen=True)
class UrlVerification:
    """Provider handshake; answered with the challenge and nothing else"""

    challenge: str


@dataclass
class InboundEvent:
    """Provider-neutral view of one webhook delivery"""

    provider: str
    kind: Optional[EventKind]
    raw_type: str
    actor_id: Optional[str]
    event: Dict[str, Any]
    account: IntegrationAccount
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)


NormalizedEvent = Union[UrlVerification, InboundEvent, RouteOutcome]


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _is_self(account: IntegrationAccount, *actor_ids: Optional[str]) -> bool:
    bot_user_id = account.typed_settings.bot_user_id
    return bool(bot_user_id) and bot_user_id in actor_ids


def _normalize_slack(
    headers: Dict[str, str], body: Dict[str, Any], accounts: Iterable[IntegrationAccount]
) -> NormalizedEvent:
    if body.get("type") == "url_verification":
        logger.info("Responding to Slack URL verification challenge")
        return UrlVerification(challenge=body.get("challenge", ""))

    event = body.get("event") or {}
    team_id = _as_str(body.get("team_id") or body.get("teamId") or body.get("workspaceId"))
    account = next((a for a in accounts if a.account_id == team_id), None)
    if account is None:
        logger.debug(f"No integration account found for team: {team_id}")
        return RouteOutcome.declined(
            f"No integration account found for team: {team_id}", RouteStatus.NO_ACCOUNT
        )

    actor_id = _as_str(event.get("user"))
    if _is_self(account, actor_id, _as_str(event.get("bot_id"))):
        logger.debug("Ignoring bot message")
        return RouteOutcome.declined("Ignoring bot message", RouteStatus.SELF_EVENT)

    raw_type = str(event.get("type") or "")
    return InboundEvent(
        provider=Provider.SLACK,
        kind=_SLACK_KINDS.get(raw_type),
        raw_type=raw_type,
        actor_id=actor_id,
        event=event,
        account=account,
        headers=headers,
        body=body,
    )


def _gitlab_account_for(
    project: Dict[str, Any], accounts: Iterable[IntegrationAccount]
) -> Optional[IntegrationAccount]:
    keys = {_as_str(project.get("id")), project.get("path_with_namespace")} - {None}
    for account in accounts:
        if account.account_id in keys:
            return account
        for mapping in account.typed_settings.repository_mappings:
            if mapping.project_id in keys:
                return account
    return None


def _normalize_gitlab(
    headers: Dict[str, str], body: Dict[str, Any], accounts: Iterable[IntegrationAccount]
) -> NormalizedEvent:
    project = body.get("project") or {}
    account = _gitlab_account_for(project, accounts)
    if account is None:
        project_ref = project.get("path_with_namespace") or project.get("id")
        logger.debug(f"No integration account found for project: {project_ref}")
        return RouteOutcome.declined(
            f"No integration account found for project: {project_ref}", RouteStatus.NO_ACCOUNT
        )

    user = body.get("user") or {}
    actor_id = _as_str(user.get("id"))
    if _is_self(account, actor_id, user.get("username")):
        logger.debug("Ignoring event authored by the integration user")
        return RouteOutcome.declined("Ignoring bot event", RouteStatus.SELF_EVENT)

    raw_type = str(body.get("object_kind") or "")
    return InboundEvent(
        provider=Provider.GITLAB,
        kind=_GITLAB_KINDS.get(raw_type),
        raw_type=raw_type,
        actor_id=actor_id,
        event=body.get("object_attributes") or {},
        account=account,
        headers=headers,
        body=body,
    )


_NORMALIZERS = {
    Provider.SLACK: _normalize_slack,
    Provider.GITLAB: _normalize_gitlab,
}


def normalize(
    provider: str,
    headers: Mapping[str, str],
    body: Dict[str, Any],
    accounts: Mapping[str, Iterable[IntegrationAccount]],
) -> NormalizedEvent:
    """Turn a raw webhook into a verification request, an event, or a decline.

    `accounts` holds the integration accounts known to the caller, keyed by provider.
    """
    normalizer = _NORMALIZERS.get(provider)
    if normalizer is None:
        return RouteOutcome.declined(f"Unsupported provider: {provider}")
    return normalizer(
        {k.lower(): v for k, v in headers.items()},
        body or {},
        list(accounts.get(provider) or []),
    )
