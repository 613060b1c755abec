"""Integration account model"""

from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from issuerelay.models.base import Base, utcnow


class Provider:
    """Provider identities known to the engine"""

    SLACK = "slack"
    GITLAB = "gitlab"


class RepositoryMapping(BaseModel):
    """A team linked to an external tracker project"""

    team_id: str
    bidirectional: bool = False
    # GitLab project ID or path
    project_id: Optional[str] = None


class ChannelMapping(BaseModel):
    """A chat channel whose triaged messages become issues of a team"""

    channel_id: str
    team_id: str


class IntegrationSettings(BaseModel):
    """Typed view over the provider-specific settings document"""

    # Identity the integration itself acts as. Events authored by it are our own echoes.
    bot_user_id: Optional[str] = None
    repository_mappings: List[RepositoryMapping] = Field(default_factory=list)
    channel_mappings: List[ChannelMapping] = Field(default_factory=list)
    triage_emoji: str = "ticket"
    instance_url: Optional[str] = None
    signing_secret: Optional[str] = None

    def bidirectional_mapping(self, team_id: str) -> Optional[RepositoryMapping]:
        for mapping in self.repository_mappings:
            if mapping.team_id == team_id and mapping.bidirectional:
                return mapping
        return None

    def team_for_channel(self, channel_id: str) -> Optional[str]:
        for mapping in self.channel_mappings:
            if mapping.channel_id == channel_id:
                return mapping.team_id
        return None


class IntegrationAccount(Base):
    """One external-tool connection for a workspace"""

    __tablename__ = "integration_accounts"
    __table_args__ = (
        UniqueConstraint("provider", "account_id", name="uq_integration_accounts_provider_account"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, index=True)
    # Provider-side workspace/team/project id that webhooks declare
    account_id = Column(String, nullable=False)
    workspace_id = Column(String, nullable=True)
    access_token = Column(String, nullable=True)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def typed_settings(self) -> IntegrationSettings:
        """Settings parsed once per loaded account.

        Unreadable documents yield empty settings (no mappings, no bot identity).
        """
        cached = self.__dict__.get("_typed_settings")
        if cached is None:
            try:
                cached = IntegrationSettings.model_validate(self.settings or {})
            except ValidationError:
                cached = IntegrationSettings()
            self.__dict__["_typed_settings"] = cached
        return cached

    def __repr__(self):
        return f"<IntegrationAccount(provider='{self.provider}', account_id='{self.account_id}')>"
