"""Seed a demo SQLite DB with sample IssueRelay data.

This is intended for docs and local demos.
It does NOT contact Slack, GitLab or the summarizer.

Usage:
  python scripts/seed_demo_data.py --db ./data/demo_issuerelay.db --overwrite
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


def _sqlite_url_for_path(db_path: Path) -> str:
    # SQLAlchemy sqlite absolute path uses 4 slashes: sqlite:////abs/path
    p = db_path.expanduser().resolve()
    return f"sqlite:////{p}"


@dataclass(frozen=True)
class SeedResult:
    db_path: Path
    issue_count: int


def seed_demo_db(db_path: Path, overwrite: bool = False) -> SeedResult:
    db_path = db_path.expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if overwrite and db_path.exists():
        db_path.unlink()

    # IMPORTANT: DATABASE_URL must be set before importing issuerelay.* modules
    os.environ["DATABASE_URL"] = _sqlite_url_for_path(db_path)
    os.environ.setdefault("LOG_LEVEL", "WARNING")

    from issuerelay.models.base import SessionLocal, init_db, utcnow  # noqa: WPS433
    from issuerelay.models import IntegrationAccount, Issue, SyncLog  # noqa: WPS433
    from issuerelay.models.sync_log import IssueAction, SyncStatus  # noqa: WPS433
    from issuerelay.schemas import IssueCreate, IssueUpdate, LinkIssueData  # noqa: WPS433
    from issuerelay.services.issue_service import IssueService  # noqa: WPS433

    init_db()

    now = utcnow()

    db = SessionLocal()
    try:
        slack = IntegrationAccount(
            provider="slack",
            account_id="T0DEMO",
            workspace_id="acme",
            access_token="xoxb-demo",
            settings={
                "bot_user_id": "U0RELAYBOT",
                "triage_emoji": "ticket",
                "channel_mappings": [{"channel_id": "C0SUPPORT", "team_id": "platform"}],
            },
        )
        gitlab = IntegrationAccount(
            provider="gitlab",
            account_id="acme/platform",
            workspace_id="acme",
            access_token="glpat-demo",
            settings={
                "bot_user_id": "issuerelay-bot",
                "instance_url": "https://gitlab.example.com",
                "repository_mappings": [
                    {"team_id": "platform", "bidirectional": True, "project_id": "acme/platform"}
                ],
            },
        )
        db.add_all([slack, gitlab])
        db.commit()

        # No dispatcher: nothing is pushed to GitLab while seeding.
        service = IssueService(db)
        login = service.create_issue(
            "platform",
            IssueCreate(description="Login fails after password reset\nSeen on Safari only.", priority=1),
            link_issue_data=LinkIssueData(
                url="https://acme.slack.com/archives/C0SUPPORT/p1700000000000100",
                title="Slack message",
                source_id="C0SUPPORT_1700000000.000100",
                source={"type": "slack"},
            ),
            link_metadata={"type": "slack", "channel_id": "C0SUPPORT"},
        )
        service.update_issue(
            "platform",
            login.id,
            IssueUpdate(assignee_id="alice", state_id="in-progress", label_ids=["bug", "auth"]),
            user_id="bob",
        )
        export = service.create_issue(
            "platform",
            IssueCreate(title="CSV export times out", estimate=3, label_ids=["performance"]),
            user_id="carol",
        )
        service.create_issue("docs", IssueCreate(title="Document webhook setup"), user_id="carol")
        stale = service.create_issue("platform", IssueCreate(title="Old duplicate"), user_id="bob")
        service.soft_delete_issue("platform", stale.id)

        db.add_all(
            [
                SyncLog(
                    issue_id=login.id,
                    integration_account_id=gitlab.id,
                    action=IssueAction.CREATED,
                    status=SyncStatus.SUCCESS,
                    external_url="https://gitlab.example.com/acme/platform/-/issues/41",
                    created_at=now - timedelta(hours=3),
                ),
                SyncLog(
                    issue_id=export.id,
                    integration_account_id=gitlab.id,
                    action=IssueAction.CREATED,
                    status=SyncStatus.FAILED,
                    message="Sync failed: 403 Forbidden",
                    created_at=now - timedelta(hours=1),
                ),
            ]
        )
        db.commit()
        issue_count = db.query(Issue).count()
    finally:
        db.close()
    return SeedResult(db_path=db_path, issue_count=issue_count)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo IssueRelay SQLite DB")
    parser.add_argument(
        "--db",
        default="./data/demo_issuerelay.db",
        help="Path to SQLite DB file to create (default: ./data/demo_issuerelay.db)",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Delete existing DB file first",
    )
    args = parser.parse_args()
    result = seed_demo_db(Path(args.db), overwrite=bool(args.overwrite))
    print(f"Seeded {result.issue_count} issues into demo DB at: {result.db_path}")


if __name__ == "__main__":
    main()
