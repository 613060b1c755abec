"""Inbound webhook endpoint"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from issuerelay.api.deps import get_dispatcher, get_summarizer
from issuerelay.config import settings
from issuerelay.errors import IssueConflictError
from issuerelay.models import IntegrationAccount
from issuerelay.models.base import get_db
from issuerelay.models.integration_account import Provider
from issuerelay.security import verify_gitlab_token, verify_slack_signature
from issuerelay.services.events import InboundEvent
from issuerelay.services.handlers import build_router

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _make_verifier(raw_body: bytes, headers: Dict[str, str]):
    def verify(event: InboundEvent) -> None:
        secret = event.account.typed_settings.signing_secret
        if not settings.verify_webhook_signatures or not secret:
            return
        if event.provider == Provider.SLACK:
            ok = verify_slack_signature(
                secret,
                headers.get("x-slack-request-timestamp"),
                raw_body,
                headers.get("x-slack-signature"),
            )
        else:
            ok = verify_gitlab_token(secret, headers.get("x-gitlab-token"))
        if not ok:
            logger.warning(f"Invalid {event.provider} webhook signature for account {event.account.id}")
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    return verify


def _dispatch(
    provider: str,
    headers: Dict[str, str],
    raw_body: bytes,
    body: Dict[str, Any],
    db: Session,
    summarizer,
    dispatcher,
) -> Dict[str, Any]:
    accounts = {
        provider: db.query(IntegrationAccount).filter(IntegrationAccount.provider == provider).all()
    }
    event_router = build_router(db, summarizer=summarizer, dispatcher=dispatcher)
    try:
        outcome = event_router.handle_webhook(
            provider, headers, body, accounts, verifier=_make_verifier(raw_body, headers)
        )
    except IssueConflictError as e:
        # Let the provider redeliver; the retry will diff against the winning write.
        raise HTTPException(status_code=409, detail=str(e))
    logger.debug(f"{provider} webhook outcome: {outcome.status.value}")
    return outcome.to_response()


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    summarizer=Depends(get_summarizer),
    dispatcher=Depends(get_dispatcher),
):
    """Receive a provider webhook.

    Declines (unknown account, our own bot's events, unhandled kinds) are answered
    with a 2xx message so the provider does not redeliver them.
    """
    raw_body = await request.body()
    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    headers = {k.lower(): v for k, v in request.headers.items()}
    return await run_in_threadpool(
        _dispatch, provider, headers, raw_body, body, db, summarizer, dispatcher
    )
