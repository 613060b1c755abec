"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuerelay.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Title summarization (optional). Without an API key, titles fall back to
    # the first line of the description.
    openai_api_key: str | None = None
    openai_model: str = "gpt-3.5-turbo"

    # Independent timeouts for external calls, in seconds.
    summarizer_timeout_seconds: float = 10.0
    tracker_timeout_seconds: float = 15.0
    chat_timeout_seconds: float = 10.0

    # Reject webhooks whose signature (Slack) or token (GitLab) does not match the account's secret.
    # Accounts without a signing secret are accepted unverified.
    verify_webhook_signatures: bool = True

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, all routes are protected by HTTP Basic auth,
    # except for /health and the webhook endpoints.
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
