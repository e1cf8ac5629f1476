"""
Database models
SQLAlchemy ORM model for stored news articles
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Article(Base):
    """
    Article entity - one record per upstream story
    Commentary is filled in later by the background worker
    """
    __tablename__ = "articles"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    abstract = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    section = Column(String, nullable=True, index=True)
    url = Column(String, nullable=True)
    byline = Column(String, nullable=True)
    published_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    views = Column(Integer, default=0)
    shares = Column(Integer, default=0)
    commentary = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "abstract": self.abstract,
            "content": self.content,
            "section": self.section,
            "url": self.url,
            "byline": self.byline,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "views": self.views or 0,
            "shares": self.shares or 0,
            "commentary": self.commentary,
        }

    def __repr__(self):
        return f"<Article(id='{self.id}', section='{self.section}')>"
