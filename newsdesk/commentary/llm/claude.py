"""Claude commentary provider."""

import logging
from typing import Optional

import anthropic
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from .base import (
    SYSTEM_PROMPT,
    CommentaryAPIError,
    CommentaryProvider,
    CommentaryRateLimitError,
    build_commentary_prompt,
)
from ..models import CommentaryJob

logger = logging.getLogger(__name__)


class ClaudeCommentaryProvider(CommentaryProvider):
    """
    Generates article commentary with Anthropic's Claude API.
    """

    # Haiku is fast and cheap enough for bulk background commentary
    MODEL = "claude-3-haiku-20240307"

    MAX_TOKENS = 500

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        client: Optional[anthropic.Anthropic] = None,
    ):
        """
        Args:
            api_key: Anthropic API key
            model: Model name; defaults to MODEL
            client: Pre-built client (mainly for tests)
        """
        self._model = model or self.MODEL
        self._client = client or anthropic.Anthropic(api_key=api_key)
        logger.info(f"Claude commentary provider initialized ({self._model})")

    @property
    def provider_name(self) -> str:
        return "claude"

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(CommentaryRateLimitError),
        reraise=True,
    )
    def _call_claude(self, prompt: str) -> str:
        """
        Make a call to Claude with retry on rate limits.
        """
        try:
            message = self._client.messages.create(
                model=self._model,
                max_tokens=self.MAX_TOKENS,
                temperature=0.7,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            logger.warning(f"Claude rate limit hit: {e}")
            raise CommentaryRateLimitError(str(e))
        except anthropic.APITimeoutError as e:
            logger.warning(f"Claude request timed out: {e}")
            raise TimeoutError(str(e))
        except anthropic.APIConnectionError as e:
            logger.error(f"Claude connection error: {e}")
            raise CommentaryAPIError(str(e))
        except anthropic.APIStatusError as e:
            logger.error(f"Claude API error: {e.status_code} - {e.message}")
            raise CommentaryAPIError(f"{e.status_code}: {e.message}")

        if not message.content:
            return ""
        return message.content[0].text

    def generate(self, job: CommentaryJob, style: str = "analyst") -> Optional[str]:
        prompt = build_commentary_prompt(job, style)
        text = self._call_claude(prompt).strip()
        return text or None
