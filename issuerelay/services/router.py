"""Event routing"""

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from issuerelay.models import IntegrationAccount
from issuerelay.services.events import (
    EventKind,
    InboundEvent,
    RouteOutcome,
    RouteStatus,
    UrlVerification,
    normalize,
)

logger = logging.getLogger(__name__)

Handler = Callable[[InboundEvent, IntegrationAccount], RouteOutcome]


class EventRouter:
    """Dispatch each event to exactly one handler, chosen by its kind"""

    def __init__(self, handlers: Optional[Dict[EventKind, Handler]] = None):
        self.handlers: Dict[EventKind, Handler] = dict(handlers or {})

    def register(self, kind: EventKind, handler: Handler) -> None:
        self.handlers[kind] = handler

    def route(self, event: InboundEvent) -> RouteOutcome:
        handler = self.handlers.get(event.kind) if event.kind is not None else None
        if handler is None:
            logger.debug(f"Unhandled {event.provider} event type: {event.raw_type}")
            return RouteOutcome.declined(
                f"Unhandled {event.provider} event type: {event.raw_type}", RouteStatus.UNHANDLED
            )

        logger.info(f"Processing {event.provider} event: {event.raw_type}")
        return handler(event, event.account)

    def handle_webhook(
        self,
        provider: str,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        accounts: Mapping[str, Iterable[IntegrationAccount]],
        verifier: Optional[Callable[[InboundEvent], None]] = None,
    ) -> RouteOutcome:
        """Normalize a raw webhook and route it.

        `verifier` runs once the owning account is known and raises to reject the request.
        """
        normalized = normalize(provider, headers, body, accounts)
        if isinstance(normalized, UrlVerification):
            return RouteOutcome.verification(normalized.challenge)
        if isinstance(normalized, RouteOutcome):
            return normalized
        if verifier is not None:
            verifier(normalized)
        return self.route(normalized)
