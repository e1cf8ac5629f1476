"""
Pydantic schemas for API responses
"""
from typing import Optional

from pydantic import BaseModel


# ===== ARTICLE SCHEMAS =====

class Article(BaseModel):
    """Stored article as returned by the listing endpoint"""
    id: str
    title: str
    abstract: Optional[str] = None
    content: Optional[str] = None
    section: Optional[str] = None
    url: Optional[str] = None
    byline: Optional[str] = None
    published_at: Optional[str] = None
    created_at: Optional[str] = None
    views: int = 0
    shares: int = 0
    commentary: Optional[str] = None

    class Config:
        from_attributes = True


class ArticleList(BaseModel):
    """Listing page with the cache tier that served it"""
    articles: list[Article]
    count: int
    cacheSource: str


# ===== COMMENTARY SCHEMAS =====

class Commentary(BaseModel):
    articleId: str
    commentary: str
    source: str  # stored | ai | cache
    style: Optional[str] = None


# ===== HEALTH =====

class Health(BaseModel):
    status: str
    version: str
    rateLimiter: str
    remoteCache: str
