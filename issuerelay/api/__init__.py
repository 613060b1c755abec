"""API routes"""

from issuerelay.api import integration_accounts, issues, sync, webhooks

__all__ = ["integration_accounts", "issues", "sync", "webhooks"]
