"""Exceptions raised by the sync engine"""


class IssueRelayError(Exception):
    """Base class for engine errors"""


class IssueNotFoundError(IssueRelayError):
    """The issue does not exist (or not in the requested team)"""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} not found")
        self.issue_id = issue_id


class IssueConflictError(IssueRelayError):
    """A concurrent writer won; the caller may retry the whole mutation"""

    retryable = True


class InvalidIssueError(IssueRelayError):
    """The database rejected the mutation itself, e.g. an unknown parent issue"""

    retryable = False


class ExternalServiceError(IssueRelayError):
    """A provider or summarization call failed or timed out"""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
