"""
Background AI commentary generation.

Usage:
    from newsdesk.commentary import get_commentary_worker

    worker = get_commentary_worker()
    worker.enqueue(articles)
    worker.start()
"""
from .models import CommentaryJob, calculate_priority
from .worker import ArticleStore, CommentaryWorker, get_commentary_worker

__all__ = [
    "ArticleStore",
    "CommentaryJob",
    "CommentaryWorker",
    "calculate_priority",
    "get_commentary_worker",
]
