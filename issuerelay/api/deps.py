"""Shared route dependencies"""

from functools import lru_cache

from issuerelay.scheduler import scheduler
from issuerelay.services.summarizer import build_summarizer


@lru_cache(maxsize=1)
def get_summarizer():
    """Process-wide summarizer, or None when title generation is not configured"""
    return build_summarizer()


def get_dispatcher():
    return scheduler
