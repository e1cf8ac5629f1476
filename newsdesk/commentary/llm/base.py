"""Base commentary provider abstraction."""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import CommentaryJob


class CommentaryAPIError(Exception):
    """Raised when the text-generation API call fails."""
    pass


class CommentaryRateLimitError(CommentaryAPIError):
    """Raised when the text-generation API rate limits us."""
    pass


# ============================================================================
# Prompt Templates
# ============================================================================

ANALYST_PROMPT = """As an expert analyst, provide a brief but insightful commentary (2-3 paragraphs) on the following {category} article:

Title: {title}
Content: {content}

Focus on:
1. Key implications and potential impacts
2. Expert analysis of the situation
3. Historical context or similar cases if relevant
4. Potential future developments

Keep the tone professional and analytical. Provide only the commentary without any prefacing text."""

STYLE_PROMPTS = {
    "analyst": ANALYST_PROMPT,
    "expertise": """You are an expert in {category}. Provide a brief, insightful commentary on this news article. Be specific, analytical, and add context that most readers wouldn't know. Keep it under 150 words.

Article: {title}
Content: {content}

Your expert take:""",
    "analysis": """As a subject matter expert, provide 2-3 bullet points analyzing this news story. Focus on implications, context, or insider knowledge that adds value. Be conversational but authoritative.

Article: {title}
Summary: {content}

Key insights:""",
    "perspective": """Give a balanced perspective on this news story. What are people missing? What's the bigger picture? Write as an informed commentator who helps others understand the deeper implications.

Headline: {title}
Details: {content}

Perspective:""",
}

SYSTEM_PROMPT = (
    "You are an expert news analyst who provides insightful commentary on "
    "current events. Your analysis should be professional, balanced, and informative."
)


def build_commentary_prompt(job: CommentaryJob, style: str = "analyst") -> str:
    """Fill the prompt template for ``style`` with the job's article."""
    template = STYLE_PROMPTS.get(style, ANALYST_PROMPT)
    return template.format(
        category=job.category or "news",
        title=job.title,
        content=job.content or "No description available",
    )


class CommentaryProvider(ABC):
    """Abstract base class for commentary generators."""

    @abstractmethod
    def generate(self, job: CommentaryJob, style: str = "analyst") -> Optional[str]:
        """
        Generate commentary text for an article.

        Returns:
            The commentary, or None if the provider produced nothing

        Raises:
            CommentaryRateLimitError: Upstream rate limit persisted after retries
            TimeoutError: Upstream call timed out
            CommentaryAPIError: Any other upstream failure
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @property
    @abstractmethod
    def is_available(self) -> bool:
        pass


class NullCommentaryProvider(CommentaryProvider):
    """
    Produces nothing. Used when no API key is configured or during testing.
    """

    def generate(self, job: CommentaryJob, style: str = "analyst") -> Optional[str]:
        return None

    @property
    def provider_name(self) -> str:
        return "null"

    @property
    def is_available(self) -> bool:
        return False
