"""Issue title generation"""

import logging
from typing import Optional

import openai

from issuerelay.config import settings
from issuerelay.errors import ExternalServiceError

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "You write titles for issues in an issue tracker. Given the issue description, "
    "reply with a single short title (at most 10 words), without quotes or trailing punctuation."
)


class Summarizer:
    """Summarize an issue description into a title via the OpenAI chat API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        self.model = model or settings.openai_model
        if client is not None:
            self.client = client
        else:
            # No SDK-level retries: a slow summary must not hold up issue creation.
            self.client = openai.OpenAI(
                api_key=api_key or settings.openai_api_key,
                timeout=timeout or settings.summarizer_timeout_seconds,
                max_retries=0,
            )

    def summarize(self, description: str) -> str:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": TITLE_PROMPT},
                    {"role": "user", "content": description},
                ],
            )
            content = completion.choices[0].message.content
        except Exception as e:
            raise ExternalServiceError("summarizer", str(e)) from e

        title = (content or "").strip().strip('"').strip()
        if not title:
            raise ExternalServiceError("summarizer", "empty completion")
        return title


def build_summarizer() -> Optional[Summarizer]:
    """Summarizer from settings, or None when no API key is configured."""
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set. Issue titles will fall back to the description.")
        return None
    return Summarizer()
