import base64
import hashlib
import hmac
import json
import logging
import time
import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from db_helpers import FakeDispatcher, make_session_factory

logging.disable(logging.CRITICAL)


class _ApiTestCase(unittest.TestCase):
    def setUp(self):
        from issuerelay.api.deps import get_dispatcher, get_summarizer
        from issuerelay.main import app
        from issuerelay.models.base import get_db

        self.session_factory = make_session_factory()
        self.dispatcher = FakeDispatcher()

        def _get_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_summarizer] = lambda: None
        app.dependency_overrides[get_dispatcher] = lambda: self.dispatcher
        self.addCleanup(app.dependency_overrides.clear)
        # No context manager: the lifespan (scheduler, file database) is not started.
        self.client = TestClient(app)

    def _add_account(self, **kwargs):
        from issuerelay.models import IntegrationAccount

        db = self.session_factory()
        try:
            account = IntegrationAccount(**kwargs)
            db.add(account)
            db.commit()
            return account.id
        finally:
            db.close()


class IssueApiTests(_ApiTestCase):
    def test_create_update_and_history(self):
        created = self.client.post(
            "/api/teams/t1/issues/",
            json={"description": "login fails\nstack trace", "assignee_id": "u1", "label_ids": ["l1", "l2"]},
        )
        self.assertEqual(created.status_code, 200, created.text)
        issue = created.json()
        self.assertEqual(issue["number"], 1)
        self.assertEqual(issue["title"], "login fails")

        updated = self.client.put(
            f"/api/teams/t1/issues/{issue['id']}",
            json={"assignee_id": "u2", "label_ids": ["l2", "l3"], "user_id": "u9"},
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["assignee_id"], "u2")
        self.assertEqual(updated.json()["description"], "login fails\nstack trace")

        history = self.client.get(f"/api/teams/t1/issues/{issue['id']}/history").json()
        self.assertEqual(len(history), 2)
        self.assertEqual(history[1]["from_assignee_id"], "u1")
        self.assertEqual(history[1]["to_assignee_id"], "u2")
        self.assertEqual(history[1]["added_label_ids"], ["l3"])
        self.assertEqual(history[1]["removed_label_ids"], ["l1"])
        self.assertEqual(history[1]["user_id"], "u9")
        self.assertEqual([call[1].value for call in self.dispatcher.calls], ["created", "updated"])

    def test_unknown_issue_is_404(self):
        self.assertEqual(self.client.get("/api/teams/t1/issues/missing").status_code, 404)
        self.assertEqual(
            self.client.put("/api/teams/t1/issues/missing", json={"priority": 1}).status_code, 404
        )

    def test_unknown_parent_is_422_not_409(self):
        self.session_factory = make_session_factory(foreign_keys=True)

        created = self.client.post("/api/teams/t1/issues/", json={"title": "Orphan", "parent_id": "nope"})
        self.assertEqual(created.status_code, 422, created.text)

        issue = self.client.post("/api/teams/t1/issues/", json={"title": "Real"}).json()
        updated = self.client.put(f"/api/teams/t1/issues/{issue['id']}", json={"parent_id": "nope"})
        self.assertEqual(updated.status_code, 422, updated.text)
        self.assertEqual(issue["number"], 1)

    def test_soft_then_hard_delete(self):
        issue = self.client.post("/api/teams/t1/issues/", json={"title": "Temp"}).json()

        self.assertEqual(self.client.delete(f"/api/teams/t1/issues/{issue['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/teams/t1/issues/{issue['id']}").status_code, 404)
        # History survives a soft delete
        self.assertEqual(len(self.client.get(f"/api/teams/t1/issues/{issue['id']}/history").json()), 1)

        first = self.client.delete(f"/api/teams/t1/issues/{issue['id']}/permanent")
        second = self.client.delete(f"/api/teams/t1/issues/{issue['id']}/permanent")
        self.assertEqual(first.json(), {"message": "Issue permanently deleted"})
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json(), {"message": "Issue not found"})
        self.assertEqual(self.client.get(f"/api/teams/t1/issues/{issue['id']}/history").status_code, 404)


class WebhookApiTests(_ApiTestCase):
    def test_url_verification_echoes_challenge(self):
        response = self.client.post(
            "/api/webhooks/slack", json={"type": "url_verification", "challenge": "c-123"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"challenge": "c-123"})

    def test_unknown_team_is_acknowledged(self):
        response = self.client.post(
            "/api/webhooks/slack", json={"team_id": "T404", "event": {"type": "message"}}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "No integration account found for team: T404"})

    def test_bot_message_is_ignored(self):
        self._add_account(provider="slack", account_id="T1", settings={"bot_user_id": "UBOT"})

        response = self.client.post(
            "/api/webhooks/slack",
            json={"team_id": "T1", "event": {"type": "message", "user": "UBOT", "text": "hi"}},
        )

        self.assertEqual(response.json(), {"message": "Ignoring bot message"})

    def test_invalid_json_is_rejected(self):
        response = self.client.post(
            "/api/webhooks/slack", content=b"not json", headers={"Content-Type": "application/json"}
        )

        self.assertEqual(response.status_code, 400)

    def test_signed_account_rejects_bad_signature(self):
        self._add_account(provider="slack", account_id="T1", settings={"signing_secret": "s3cret"})
        body = json.dumps({"team_id": "T1", "event": {"type": "message", "user": "U1"}}).encode()

        bad = self.client.post(
            "/api/webhooks/slack",
            content=body,
            headers={"X-Slack-Request-Timestamp": str(int(time.time())), "X-Slack-Signature": "v0=bad"},
        )
        self.assertEqual(bad.status_code, 401)

        timestamp = str(int(time.time()))
        signature = "v0=" + hmac.new(
            b"s3cret", f"v0:{timestamp}:".encode() + body, hashlib.sha256
        ).hexdigest()
        good = self.client.post(
            "/api/webhooks/slack",
            content=body,
            headers={"X-Slack-Request-Timestamp": timestamp, "X-Slack-Signature": signature},
        )
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.json(), {"message": "Not a thread reply"})

    def test_gitlab_token_is_checked(self):
        self._add_account(provider="gitlab", account_id="7", settings={"signing_secret": "tok"})
        payload = {"object_kind": "issue", "project": {"id": 7}, "user": {"id": 1}, "object_attributes": {}}

        self.assertEqual(
            self.client.post("/api/webhooks/gitlab", json=payload, headers={"X-Gitlab-Token": "nope"}).status_code,
            401,
        )
        ok = self.client.post("/api/webhooks/gitlab", json=payload, headers={"X-Gitlab-Token": "tok"})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"message": "Event carries no issue url"})


class IntegrationAccountApiTests(_ApiTestCase):
    def test_create_and_reject_duplicates(self):
        payload = {
            "provider": "gitlab",
            "account_id": "g/p",
            "access_token": "token",
            "settings": {"repository_mappings": [{"team_id": "t1", "bidirectional": True, "project_id": "g/p"}]},
        }

        created = self.client.post("/api/integration-accounts/", json=payload)
        duplicate = self.client.post("/api/integration-accounts/", json=payload)

        self.assertEqual(created.status_code, 200, created.text)
        self.assertNotIn("access_token", created.json())
        self.assertEqual(duplicate.status_code, 400)

    def test_invalid_provider_or_settings(self):
        bad_provider = self.client.post(
            "/api/integration-accounts/", json={"provider": "jira", "account_id": "x"}
        )
        bad_settings = self.client.post(
            "/api/integration-accounts/",
            json={"provider": "slack", "account_id": "T1", "settings": {"channel_mappings": [{"channel_id": "C1"}]}},
        )

        self.assertEqual(bad_provider.status_code, 400)
        self.assertEqual(bad_settings.status_code, 400)


class BasicAuthMiddlewareTests(unittest.TestCase):
    def _client(self):
        from issuerelay.security import BasicAuthMiddleware

        app = FastAPI()
        app.add_middleware(
            BasicAuthMiddleware,
            username="admin",
            password="pw",
            allow_prefixes=("/api/webhooks/",),
        )

        @app.get("/health")
        def health():
            return {"status": "healthy"}

        @app.get("/api/sync/logs")
        def logs():
            return []

        @app.post("/api/webhooks/slack")
        def hook():
            return {"status": 200}

        return TestClient(app)

    def test_protects_api_but_not_health_or_webhooks(self):
        client = self._client()
        token = base64.b64encode(b"admin:pw").decode("ascii")

        self.assertEqual(client.get("/health").status_code, 200)
        self.assertEqual(client.post("/api/webhooks/slack").status_code, 200)
        denied = client.get("/api/sync/logs")
        self.assertEqual(denied.status_code, 401)
        self.assertIn("Basic", denied.headers["WWW-Authenticate"])
        self.assertEqual(client.get("/api/sync/logs", headers={"Authorization": f"Basic {token}"}).status_code, 200)


if __name__ == "__main__":
    unittest.main()
