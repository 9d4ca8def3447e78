"""Blog posts, addressed by slug for reading and by id for editing."""
import re
from typing import List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from errors import AlreadyExists, InvalidRequest, NotFound
from logconfig import get_logger
from schemas import BlogCreate, BlogUpdate, SEOInfo

logger = get_logger(__name__)

COLLECTION = "blog"
SUMMARY_LENGTH = 200
# query value -> stored field
SORT_FIELDS = {"publishedAt": "published_at", "title": "title"}

_MARKDOWN = [
    (re.compile(r"#{1,6}\s"), ""),
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"!\[(.*?)\]\(.*?\)"), ""),
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),
    (re.compile(r"`{1,3}(.*?)`{1,3}"), r"\1"),
    (re.compile(r"\n"), " "),
]


def generate_summary(content: str) -> str:
    """Plain-text summary of markdown content, at most 200 characters."""
    text = content
    for pattern, replacement in _MARKDOWN:
        text = pattern.sub(replacement, text)
    text = text.strip()
    if len(text) > SUMMARY_LENGTH:
        text = text[:SUMMARY_LENGTH - 3] + "..."
    return text


def default_meta(title: str, slug: str, tags: List[str], content: str, image: str) -> SEOInfo:
    summary = generate_summary(content)
    return SEOInfo(
        title=title,
        meta_description=summary,
        keywords=tags,
        canonical=f"/blogs/{slug}",
        image=image,
        og_title=title,
        og_description=summary,
        og_image=image,
        og_type="article",
        twitter_title=title,
        twitter_description=summary,
        twitter_image=image,
    )


def list_blogs(page: int = 1, limit: int = 10, tags: Optional[List[str]] = None,
               sort_by: str = "publishedAt", sort_order: str = "desc") -> Tuple[List[dict], int]:
    query = {}
    if tags:
        query["tags"] = {"$in": tags}
    key = SORT_FIELDS.get(sort_by, "published_at")
    direction = ASCENDING if sort_order == "asc" else DESCENDING

    blogs = database.get_documents(COLLECTION, query, limit=limit, sort=[(key, direction)], skip=(page - 1) * limit)
    total = database.db[COLLECTION].count_documents(query)
    return blogs, total


def summarize(blog: dict) -> dict:
    return {
        "id": str(blog["_id"]),
        "title": blog["title"],
        "slug": blog["slug"],
        "tags": blog["tags"],
        "author": blog["author"],
        "published_at": blog.get("published_at"),
        "updated_at": blog.get("updated_at"),
        "image": blog["blog_image"],
    }


def get_by_slug(slug: str) -> dict:
    blog = database.db[COLLECTION].find_one({"slug": slug})
    if blog is None:
        raise NotFound("Blog post not found.")
    return blog


def create_blog(payload: BlogCreate) -> dict:
    data = payload.model_dump()
    if payload.meta is None:
        data["meta"] = default_meta(
            payload.title, payload.slug, payload.tags, payload.content, payload.blog_image
        ).model_dump()
    data["published_at"] = database.now()
    try:
        blog_id = database.create_document(COLLECTION, data)
    except DuplicateKeyError:
        raise AlreadyExists("Blog slug already exists.")
    logger.info("blog created", blog_id=blog_id, slug=payload.slug)
    return database.db[COLLECTION].find_one({"_id": database.to_object_id(blog_id)})


def _blog_id(raw):
    oid = database.to_object_id(raw)
    if oid is None:
        raise InvalidRequest("Invalid blog ID.")
    return oid


def update_blog(blog_id, payload: BlogUpdate) -> dict:
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise InvalidRequest("Nothing to update.")
    updates["updated_at"] = database.now()
    try:
        updated = database.db[COLLECTION].find_one_and_update(
            {"_id": _blog_id(blog_id)},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise AlreadyExists("Blog slug already exists.")
    if updated is None:
        raise NotFound("Blog post not found.")
    return updated


def delete_blog(blog_id) -> None:
    result = database.db[COLLECTION].delete_one({"_id": _blog_id(blog_id)})
    if result.deleted_count == 0:
        raise NotFound("Blog post not found.")
    logger.info("blog deleted", blog_id=str(blog_id))
