# Text-generation providers for article commentary

import os
import logging

from dotenv import load_dotenv
from .base import (
    CommentaryAPIError,
    CommentaryProvider,
    CommentaryRateLimitError,
    NullCommentaryProvider,
    build_commentary_prompt,
)

# Ensure .env is loaded for API key access
load_dotenv()

logger = logging.getLogger(__name__)

__all__ = [
    "CommentaryAPIError",
    "CommentaryProvider",
    "CommentaryRateLimitError",
    "NullCommentaryProvider",
    "build_commentary_prompt",
    "get_commentary_provider",
]


def get_commentary_provider() -> CommentaryProvider:
    """
    Get the configured commentary provider.

    Returns ClaudeCommentaryProvider if ANTHROPIC_API_KEY is set, otherwise
    NullCommentaryProvider, which generates nothing.
    """
    from config.settings import settings

    api_key = settings.anthropic_api_key or os.environ.get("ANTHROPIC_API_KEY")
    if api_key:
        try:
            from .claude import ClaudeCommentaryProvider
            provider = ClaudeCommentaryProvider(api_key=api_key, model=settings.commentary_model)
            logger.info("Using Claude for commentary generation")
            return provider
        except Exception as e:
            logger.warning(f"Failed to initialize Claude provider: {e}")

    logger.info("Using null commentary provider (no API key configured)")
    return NullCommentaryProvider()
