import logging
import threading
import unittest
from types import SimpleNamespace

from db_helpers import make_session_factory

logging.disable(logging.CRITICAL)


class _FakeTracker:
    """Tracker double that remembers what it created, keyed by canonical issue id"""

    def __init__(self, fail=False):
        self.fail = fail
        self.items = {}
        self.upserts = []
        self.comments = []

    def upsert_item(self, issue, account, actor_id, linked=None):
        from issuerelay.services.gitlab_client import ExternalItem

        if self.fail:
            raise RuntimeError("tracker unavailable")
        self.upserts.append((issue.id, actor_id, linked.url if linked else None))
        iid = self.items.setdefault(issue.id, len(self.items) + 1)
        return ExternalItem(
            external_id=str(iid),
            external_url=f"https://gitlab.example/g/p/-/issues/{iid}",
            external_title=issue.title,
            source_data={"iid": iid, "project_id": "g/p"},
        )

    def post_linking_comment(self, account, issue, external_id):
        self.comments.append((issue.id, external_id))


class TwoWaySyncCoordinatorTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.tracker = _FakeTracker()

    def tearDown(self):
        self.db.close()

    def _account(self, bidirectional=True, team_id="t1"):
        from issuerelay.models import IntegrationAccount

        account = IntegrationAccount(
            provider="gitlab",
            account_id="42",
            access_token="token",
            settings={
                "bot_user_id": "99",
                "repository_mappings": [
                    {"team_id": team_id, "bidirectional": bidirectional, "project_id": "g/p"}
                ],
            },
        )
        self.db.add(account)
        self.db.commit()
        return account

    def _issue(self, title="Crash", team_id="t1"):
        from issuerelay.models import Issue

        issue = Issue(team_id=team_id, number=1, title=title, label_ids=[])
        self.db.add(issue)
        self.db.commit()
        return issue

    def _coordinator(self, tracker=None):
        from issuerelay.services.two_way_sync import TwoWaySyncCoordinator

        return TwoWaySyncCoordinator(self.db, {"gitlab": tracker or self.tracker})

    def test_skips_without_bidirectional_mapping(self):
        from issuerelay.models import LinkedIssue, SyncLog
        from issuerelay.models.sync_log import IssueAction, SyncStatus

        self._account(bidirectional=False)
        issue = self._issue()

        status = self._coordinator().sync_issue(issue, IssueAction.CREATED)

        self.assertEqual(status, SyncStatus.SKIPPED)
        self.assertEqual(self.tracker.upserts, [])
        self.assertEqual(self.db.query(LinkedIssue).count(), 0)
        self.assertEqual(self.db.query(SyncLog).count(), 0)

    def test_skips_other_teams(self):
        from issuerelay.models.sync_log import IssueAction, SyncStatus

        self._account(team_id="t2")
        issue = self._issue()

        self.assertEqual(self._coordinator().sync_issue(issue, IssueAction.UPDATED), SyncStatus.SKIPPED)
        self.assertEqual(self.tracker.upserts, [])

    def test_created_links_item_and_comments_once(self):
        from issuerelay.models import LinkedIssue, SyncLog
        from issuerelay.models.sync_log import IssueAction, SyncStatus
        from issuerelay.services.two_way_sync import LINKING_COMMENT_FLAG

        self._account()
        issue = self._issue()
        coordinator = self._coordinator()

        first = coordinator.sync_issue(issue, IssueAction.CREATED, "u1")
        second = coordinator.sync_issue(issue, IssueAction.CREATED, "u1")

        self.assertEqual((first, second), (SyncStatus.SUCCESS, SyncStatus.SUCCESS))
        links = self.db.query(LinkedIssue).filter(LinkedIssue.issue_id == issue.id).all()
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].url, "https://gitlab.example/g/p/-/issues/1")
        self.assertEqual(links[0].source_type, "gitlab")
        self.assertEqual(links[0].source_id, "1")
        self.assertTrue(links[0].source_data[LINKING_COMMENT_FLAG])
        self.assertEqual(self.tracker.comments, [(issue.id, "1")])
        # The second run finds the stored link
        self.assertEqual(self.tracker.upserts[1][2], links[0].url)
        self.assertEqual(
            self.db.query(SyncLog).filter(SyncLog.status == SyncStatus.SUCCESS).count(), 2
        )

    def test_updated_does_not_post_linking_comment(self):
        from issuerelay.models import LinkedIssue
        from issuerelay.models.sync_log import IssueAction, SyncStatus

        self._account()
        issue = self._issue()

        status = self._coordinator().sync_issue(issue, IssueAction.UPDATED)

        self.assertEqual(status, SyncStatus.SUCCESS)
        self.assertEqual(self.tracker.comments, [])
        self.assertEqual(self.db.query(LinkedIssue).count(), 1)

    def test_update_after_create_keeps_comment_flag(self):
        from issuerelay.models import LinkedIssue
        from issuerelay.models.sync_log import IssueAction
        from issuerelay.services.two_way_sync import LINKING_COMMENT_FLAG

        self._account()
        issue = self._issue()
        coordinator = self._coordinator()

        coordinator.sync_issue(issue, IssueAction.CREATED)
        issue.title = "Crash on login"
        self.db.commit()
        coordinator.sync_issue(issue, IssueAction.UPDATED)

        link = self.db.query(LinkedIssue).one()
        self.assertEqual(link.title, "Crash on login")
        self.assertTrue(link.source_data[LINKING_COMMENT_FLAG])
        self.assertEqual(len(self.tracker.comments), 1)

    def test_tracker_failure_is_logged_not_raised(self):
        from issuerelay.models import LinkedIssue, SyncLog
        from issuerelay.models.sync_log import IssueAction, SyncStatus

        self._account()
        issue = self._issue()

        status = self._coordinator(_FakeTracker(fail=True)).sync_issue(issue, IssueAction.CREATED)

        self.assertEqual(status, SyncStatus.FAILED)
        self.assertEqual(self.db.query(LinkedIssue).count(), 0)
        log = self.db.query(SyncLog).one()
        self.assertEqual(log.status, SyncStatus.FAILED)
        self.assertIn("tracker unavailable", log.message)

    def test_deleted_issue_is_not_synced(self):
        from issuerelay.models.base import utcnow
        from issuerelay.models.sync_log import IssueAction, SyncStatus

        self._account()
        issue = self._issue()
        issue.deleted_at = utcnow()
        self.db.commit()

        self.assertEqual(self._coordinator().sync_issue(issue, IssueAction.UPDATED), SyncStatus.SKIPPED)
        self.assertEqual(self.tracker.upserts, [])


class SyncSchedulerTests(unittest.TestCase):
    def test_dispatch_runs_inline_when_not_started(self):
        from issuerelay.models import IntegrationAccount, Issue, LinkedIssue
        from issuerelay.models.sync_log import IssueAction
        from issuerelay.scheduler import SyncScheduler

        factory = make_session_factory()
        db = factory()
        db.add(
            IntegrationAccount(
                provider="gitlab",
                account_id="42",
                settings={"repository_mappings": [{"team_id": "t1", "bidirectional": True, "project_id": "g/p"}]},
            )
        )
        issue = Issue(team_id="t1", number=1, title="T", label_ids=[])
        db.add(issue)
        db.commit()
        issue_id = issue.id

        tracker = _FakeTracker()
        sched = SyncScheduler(session_factory=factory, trackers={"gitlab": tracker})
        self.assertFalse(sched.running)

        sched.dispatch(issue_id, IssueAction.CREATED, "u1")

        self.assertEqual(tracker.comments, [(issue_id, "1")])
        self.assertEqual(db.query(LinkedIssue).count(), 1)
        db.close()

    def test_summarized_creation_upserts_once(self):
        from issuerelay.models import IntegrationAccount
        from issuerelay.scheduler import SyncScheduler
        from issuerelay.schemas import IssueCreate
        from issuerelay.services.issue_service import IssueService

        factory = make_session_factory()
        db = factory()
        db.add(
            IntegrationAccount(
                provider="gitlab",
                account_id="42",
                settings={"repository_mappings": [{"team_id": "t1", "bidirectional": True, "project_id": "g/p"}]},
            )
        )
        db.commit()
        tracker = _FakeTracker()
        summarizer = SimpleNamespace(summarize=lambda description: "Fix crash on startup")
        svc = IssueService(
            db,
            summarizer=summarizer,
            dispatcher=SyncScheduler(session_factory=factory, trackers={"gitlab": tracker}),
        )

        issue = svc.create_issue("t1", IssueCreate(description="fix crash"))

        self.assertEqual(issue.title, "Fix crash on startup")
        self.assertEqual(len(tracker.upserts), 1)
        history = svc.history.list_for_issue(issue.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].added_label_ids, [])
        db.close()

    def test_dispatch_for_missing_issue_is_a_no_op(self):
        from issuerelay.models.sync_log import IssueAction
        from issuerelay.scheduler import SyncScheduler

        tracker = _FakeTracker()
        sched = SyncScheduler(session_factory=make_session_factory(), trackers={"gitlab": tracker})

        sched.dispatch("missing", IssueAction.UPDATED)

        self.assertEqual(tracker.upserts, [])

    def test_issue_locks_are_released_after_jobs(self):
        from issuerelay.models.sync_log import IssueAction
        from issuerelay.scheduler import SyncScheduler

        sched = SyncScheduler(session_factory=make_session_factory(), trackers={"gitlab": _FakeTracker()})

        for n in range(50):
            sched.dispatch(f"issue-{n}", IssueAction.UPDATED)

        self.assertEqual(sched._locks, {})

    def test_jobs_for_one_issue_share_a_lock(self):
        from issuerelay.scheduler import SyncScheduler

        sched = SyncScheduler(session_factory=make_session_factory(), trackers={})
        entered = threading.Event()

        def second_job():
            with sched._issue_lock("i1"):
                entered.set()

        with sched._issue_lock("i1"):
            worker = threading.Thread(target=second_job)
            worker.start()
            self.assertFalse(entered.wait(0.2))
            with sched._locks_guard:
                self.assertEqual(sched._locks["i1"][1], 2)
        worker.join(timeout=5)

        self.assertTrue(entered.is_set())
        self.assertEqual(sched._locks, {})


if __name__ == "__main__":
    unittest.main()
