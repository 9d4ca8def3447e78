"""Stock counters kept on the product documents.

Every change is a single conditional update on the server; callers never read
a stock value, modify it and write it back.
"""
from pymongo import ReturnDocument

import database
from errors import InsufficientStock, ProductNotFound
from logconfig import get_logger

logger = get_logger(__name__)

COLLECTION = "product"


def available(product_id, session=None) -> int:
    doc = database.db[COLLECTION].find_one({"_id": product_id}, {"stock": 1}, session=session)
    if doc is None:
        raise ProductNotFound(product_id)
    return int(doc.get("stock", 0))


def reserve(product_id, quantity: int, session=None) -> int:
    """Take ``quantity`` units out of stock; returns the stock left.

    Succeeds only when at least ``quantity`` units are in stock at the moment
    of the update.
    """
    updated = database.db[COLLECTION].find_one_and_update(
        {"_id": product_id, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": database.now()}},
        projection={"stock": 1},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if updated is not None:
        return int(updated["stock"])

    current = database.db[COLLECTION].find_one({"_id": product_id}, {"stock": 1, "name": 1}, session=session)
    if current is None:
        raise ProductNotFound(product_id)
    raise InsufficientStock(product_id, current.get("name"), quantity, int(current.get("stock", 0)))


def release(product_id, quantity: int, session=None) -> bool:
    """Put ``quantity`` units back. A product that no longer exists is left alone."""
    result = database.db[COLLECTION].update_one(
        {"_id": product_id},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": database.now()}},
        session=session,
    )
    if result.matched_count == 0:
        logger.info("stock release skipped, product gone", product_id=str(product_id), quantity=quantity)
        return False
    return True
