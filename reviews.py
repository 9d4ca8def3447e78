"""Product reviews. Every change recomputes the product's rating aggregate."""
from typing import List, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

import catalog
import database
from errors import AlreadyExists, Forbidden, InvalidRequest, NotFound, ProductNotFound
from logconfig import get_logger
from schemas import ReviewCreate, ReviewUpdate

logger = get_logger(__name__)

COLLECTION = "review"


def _review_id(raw):
    oid = database.to_object_id(raw)
    if oid is None:
        raise InvalidRequest("Invalid review ID.")
    return oid


def _owned_review(review_id, user_id) -> dict:
    review = database.db[COLLECTION].find_one({"_id": _review_id(review_id)})
    if review is None:
        raise NotFound("Review not found.")
    if review["user_id"] != user_id:
        raise Forbidden("You can only change your own reviews.")
    return review


def create_review(user_id, payload: ReviewCreate) -> dict:
    product = catalog.find_product(payload.product_id)
    if product is None:
        raise ProductNotFound()

    existing = database.db[COLLECTION].find_one({"user_id": user_id, "product_id": product["_id"]})
    if existing:
        raise AlreadyExists("You have already reviewed this product.")

    doc = {
        "user_id": user_id,
        "product_id": product["_id"],
        "rating": payload.rating,
        "comment": payload.comment,
    }
    try:
        review_id = database.create_document(COLLECTION, doc)
    except DuplicateKeyError:
        raise AlreadyExists("You have already reviewed this product.")

    catalog.update_product_rating(product["_id"])
    logger.info("review created", review_id=review_id, product_id=str(product["_id"]))
    return database.db[COLLECTION].find_one({"_id": database.to_object_id(review_id)})


def update_review(review_id, user_id, payload: ReviewUpdate) -> dict:
    review = _owned_review(review_id, user_id)
    updated = database.db[COLLECTION].find_one_and_update(
        {"_id": review["_id"]},
        {"$set": {"rating": payload.rating, "comment": payload.comment, "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Review not found.")
    catalog.update_product_rating(review["product_id"])
    return updated


def delete_review(review_id, user_id) -> None:
    review = _owned_review(review_id, user_id)
    database.db[COLLECTION].delete_one({"_id": review["_id"]})
    catalog.update_product_rating(review["product_id"])
    logger.info("review deleted", review_id=str(review["_id"]))


def product_reviews(product_id, page: int = 1, limit: int = 10) -> Tuple[List[dict], int]:
    """Newest first, each with the reviewer's name attached."""
    oid = database.to_object_id(product_id)
    if oid is None:
        raise InvalidRequest("Invalid product ID.")

    query = {"product_id": oid}
    reviews = database.get_documents(
        COLLECTION, query, limit=limit, sort=[("created_at", DESCENDING), ("_id", DESCENDING)], skip=(page - 1) * limit
    )
    total = database.db[COLLECTION].count_documents(query)

    user_ids = list({r["user_id"] for r in reviews})
    users = database.db["user"].find({"_id": {"$in": user_ids}}, {"info_user.username": 1})
    names = {u["_id"]: u.get("info_user", {}).get("username") for u in users}
    for review in reviews:
        review["user"] = {"id": str(review["user_id"]), "username": names.get(review["user_id"])}
    return reviews, total
