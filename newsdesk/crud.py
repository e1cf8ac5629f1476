"""
CRUD operations for articles, plus the article store used by the
commentary worker
"""
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from newsdesk.models import Article


def get_articles(
    db: Session,
    section: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> List[Article]:
    """
    Get articles newest first, optionally filtered by section
    """
    query = db.query(Article)
    if section and section != "home":
        query = query.filter(Article.section == section)
    return (
        query.order_by(desc(Article.published_at), desc(Article.created_at))
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_article_by_id(db: Session, article_id: str) -> Optional[Article]:
    return db.query(Article).filter(Article.id == article_id).first()


def get_recent_articles(db: Session, limit: int = 50) -> List[Article]:
    return db.query(Article).order_by(desc(Article.created_at)).limit(limit).all()


def update_article_commentary(db: Session, article_id: str, commentary: str) -> bool:
    """
    Store generated commentary on an article
    Returns False if the article does not exist
    """
    article = get_article_by_id(db, article_id)
    if article is None:
        return False
    article.commentary = commentary
    db.commit()
    return True


def upsert_articles(db: Session, articles: List[Dict[str, Any]]) -> int:
    """
    Insert new articles, refresh fields of existing ones
    Existing commentary and engagement counters are preserved
    """
    count = 0
    for data in articles:
        article = get_article_by_id(db, data["id"])
        if article is None:
            article = Article(id=data["id"])
            db.add(article)
        article.title = data.get("title") or ""
        article.abstract = data.get("abstract")
        article.content = data.get("content")
        article.section = data.get("section")
        article.url = data.get("url")
        article.byline = data.get("byline")
        article.published_at = data.get("published_at")
        count += 1
    db.commit()
    return count


class SqlArticleStore:
    """
    Article store backed by the SQL database
    Opens a short-lived session per call so it is safe from worker threads
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from newsdesk.db import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    def get_recent_articles(self, limit: int = 50) -> List[Dict[str, Any]]:
        db = self._session_factory()
        try:
            return [a.to_dict() for a in get_recent_articles(db, limit)]
        finally:
            db.close()

    def get_articles(self, section: Optional[str] = None, skip: int = 0, limit: int = 20) -> List[Dict[str, Any]]:
        db = self._session_factory()
        try:
            return [a.to_dict() for a in get_articles(db, section, skip, limit)]
        finally:
            db.close()

    def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        db = self._session_factory()
        try:
            article = get_article_by_id(db, article_id)
            return article.to_dict() if article else None
        finally:
            db.close()

    def save_commentary(self, article_id: str, commentary: str) -> bool:
        db = self._session_factory()
        try:
            return update_article_commentary(db, article_id, commentary)
        finally:
            db.close()

    def save_articles(self, articles: List[Dict[str, Any]]) -> int:
        db = self._session_factory()
        try:
            return upsert_articles(db, articles)
        finally:
            db.close()
