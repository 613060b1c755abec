"""Slack Web API client"""

import logging
from typing import Any, Dict, Optional

import httpx

from issuerelay.config import settings
from issuerelay.errors import ExternalServiceError
from issuerelay.models import IntegrationAccount

logger = logging.getLogger(__name__)

API_BASE = "https://slack.com/api"


class SlackClient:
    """The few Slack calls the sync engine needs"""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self._timeout = timeout or settings.chat_timeout_seconds
        self._transport = transport

    def _call(self, account: IntegrationAccount, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as http:
                response = http.post(
                    f"{API_BASE}/{method}",
                    data=params,
                    headers={"Authorization": f"Bearer {account.access_token}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise ExternalServiceError("slack", f"{method} failed: {e}") from e

        if not data.get("ok"):
            raise ExternalServiceError("slack", f"{method} returned error: {data.get('error')}")
        return data

    def get_message(self, account: IntegrationAccount, channel_id: str, ts: str) -> Optional[Dict[str, Any]]:
        """Fetch one message by timestamp (thread replies included)."""
        data = self._call(
            account,
            "conversations.replies",
            {"channel": channel_id, "ts": ts, "latest": ts, "inclusive": "true", "limit": 1},
        )
        for message in data.get("messages") or []:
            if message.get("ts") == ts:
                return message
        return None

    def get_permalink(self, account: IntegrationAccount, channel_id: str, ts: str) -> str:
        data = self._call(account, "chat.getPermalink", {"channel": channel_id, "message_ts": ts})
        return data["permalink"]

    def post_message(
        self,
        account: IntegrationAccount,
        channel_id: str,
        text: str,
        thread_ts: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"channel": channel_id, "text": text}
        if thread_ts:
            params["thread_ts"] = thread_ts
        data = self._call(account, "chat.postMessage", params)
        logger.info(f"Posted Slack message in {channel_id}")
        return data
