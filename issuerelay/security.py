"""Security-related helpers.

Provides webhook request verification and optional HTTP Basic auth protection
for the API.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Replay window for signed Slack requests.
SLACK_SIGNATURE_MAX_AGE_SECONDS = 60 * 5


@dataclass(frozen=True)
class BasicAuthCredentials:
    username: str
    password: str


def _parse_basic_auth_header(header_value: str) -> BasicAuthCredentials | None:
    """Parse an Authorization header containing HTTP Basic auth."""
    if not header_value:
        return None

    scheme, _, param = header_value.partition(" ")
    if scheme.lower() != "basic" or not param:
        return None

    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    username, sep, password = decoded.partition(":")
    if sep != ":":
        return None

    return BasicAuthCredentials(username=username, password=password)


def verify_slack_signature(
    signing_secret: str,
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    *,
    now: float | None = None,
) -> bool:
    """Check an `X-Slack-Signature` header (v0 HMAC-SHA256 scheme)."""
    if not timestamp or not signature:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - ts) > SLACK_SIGNATURE_MAX_AGE_SECONDS:
        return False

    basestring = b"v0:" + timestamp.encode("ascii") + b":" + body
    expected = "v0=" + hmac.new(signing_secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_gitlab_token(secret: str, token: str | None) -> bool:
    """Check the `X-Gitlab-Token` header against the configured webhook secret."""
    if not token:
        return False
    return secrets.compare_digest(secret, token)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Protect routes via HTTP Basic auth.

    If enabled, we protect all paths except an allowlist (/health) and path
    prefixes that authenticate themselves (webhooks).
    """

    def __init__(
        self,
        app,
        *,
        username: str,
        password: str,
        allow_paths: set[str] | None = None,
        allow_prefixes: tuple[str, ...] = (),
        realm: str = "IssueRelay",
    ):
        super().__init__(app)
        self._username = username
        self._password = password
        self._allow_paths = allow_paths or {"/health"}
        self._allow_prefixes = allow_prefixes
        self._realm = realm

    def _unauthorized(self) -> Response:
        return Response(
            content="Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{self._realm}", charset="UTF-8"'},
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self._allow_paths or path.startswith(self._allow_prefixes):
            return await call_next(request)

        creds = _parse_basic_auth_header(request.headers.get("Authorization", ""))
        if creds is None:
            return self._unauthorized()

        ok_user = secrets.compare_digest(creds.username, self._username)
        ok_pass = secrets.compare_digest(creds.password, self._password)
        if not (ok_user and ok_pass):
            return self._unauthorized()

        return await call_next(request)
