"""Product catalog: listing, search, lookup, creation and rating aggregates."""
import re
import unicodedata
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

import database
from errors import AlreadyExists, InvalidRequest, ProductNotFound
from logconfig import get_logger
from schemas import ProductCreate, SEOInfo

logger = get_logger(__name__)

COLLECTION = "product"
DEFAULT_IMAGE = "default_image_url.jpg"
SORT_FIELDS = {"name": "name", "price": "price.sell_price", "rating": "avg_rating"}


def first_image(product: dict) -> str:
    images = product.get("images") or []
    if images and images[0].get("url"):
        return images[0]["url"]
    return DEFAULT_IMAGE


def sell_price(product: dict) -> float:
    return float(product["price"]["sell_price"])


def find_product(product_id) -> Optional[dict]:
    """Return the live product document, or None when the id is unknown or malformed."""
    oid = database.to_object_id(product_id)
    if oid is None:
        return None
    return database.db[COLLECTION].find_one({"_id": oid})


def get_product(product_id) -> dict:
    product = find_product(product_id)
    if product is None:
        raise ProductNotFound()
    return product


def _price_range(min_price: Optional[float], max_price: Optional[float]) -> Dict[str, float]:
    bounds = {}
    if min_price is not None:
        bounds["$gte"] = min_price
    if max_price is not None:
        bounds["$lte"] = max_price
    return bounds


def list_products(page: int = 1, limit: int = 10, category: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  in_stock: Optional[bool] = None, sort_by: str = "name",
                  sort_order: str = "asc") -> Tuple[List[dict], int]:
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        # discounted products are filtered on the sell price, the rest on the origin price
        bounds = _price_range(min_price, max_price)
        query["$or"] = [
            {"price.discount": {"$gt": 0}, "price.sell_price": bounds},
            {"price.discount": 0, "price.origin_price": bounds},
        ]
    if in_stock is not None:
        query["stock"] = {"$gt": 0} if in_stock else 0

    key = SORT_FIELDS.get(sort_by, "name")
    if sort_by == "rating":
        direction = DESCENDING
    else:
        direction = DESCENDING if sort_order == "desc" else ASCENDING

    skip = (page - 1) * limit
    products = database.get_documents(COLLECTION, query, limit=limit, sort=[(key, direction)], skip=skip)
    total = database.db[COLLECTION].count_documents(query)
    return products, total


def summarize(product: dict) -> dict:
    return {
        "id": str(product["_id"]),
        "name": product["name"],
        "slug": product["slug"],
        "category": product["category"],
        "image_first": (product.get("images") or [{}])[0].get("url", ""),
        "price": product["price"],
        "avg_rating": product.get("avg_rating", 0),
        "num_reviews": product.get("num_reviews", 0),
        "updated_at": product.get("updated_at"),
    }


def fold_name(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).replace("đ", "d")


def search_products(keyword: Optional[str]) -> List[dict]:
    """Case- and accent-insensitive substring match on the product name."""
    if not keyword or not keyword.strip():
        raise InvalidRequest("Please enter a search keyword.")
    needle = fold_name(keyword.strip())
    # products stored before name_folded existed are checked here instead of on the server
    query = {"$or": [{"name_folded": {"$regex": re.escape(needle)}}, {"name_folded": {"$exists": False}}]}
    products = database.db[COLLECTION].find(query).sort("name", ASCENDING)
    return [p for p in products if needle in p.get("name_folded", fold_name(p.get("name", "")))]


def default_meta(name: str, slug: str, category: str, description: str, image: str) -> SEOInfo:
    return SEOInfo(
        title=name,
        meta_description=description,
        keywords=[category],
        canonical=f"/products/{slug}",
        image=image,
        og_title=name,
        og_description=description,
        og_image=image,
        og_type="product",
        twitter_title=name,
        twitter_description=description,
        twitter_image=image,
    )


def create_product(payload: ProductCreate) -> dict:
    data = payload.model_dump()
    image = data["images"][0]["url"] if data["images"] else ""
    data.update(
        name_folded=fold_name(payload.name),
        avg_rating=0,
        num_reviews=0,
        meta=default_meta(payload.name, payload.slug, payload.category, payload.description, image).model_dump(),
    )
    try:
        product_id = database.create_document(COLLECTION, data)
    except DuplicateKeyError:
        raise AlreadyExists("Product slug already exists.")
    logger.info("product created", product_id=product_id, slug=payload.slug)
    return database.db[COLLECTION].find_one({"_id": database.to_object_id(product_id)})


def update_product_rating(product_id) -> None:
    """Recompute the review count and the average rating (one decimal)."""
    ratings = [r["rating"] for r in database.db["review"].find({"product_id": product_id}, {"rating": 1})]
    num_reviews = len(ratings)
    avg_rating = round(sum(ratings) / num_reviews, 1) if num_reviews else 0
    database.db[COLLECTION].update_one(
        {"_id": product_id},
        {"$set": {"num_reviews": num_reviews, "avg_rating": avg_rating, "updated_at": database.now()}},
    )
