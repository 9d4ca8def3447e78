"""Per-user shopping carts.

A cart with no items is never stored: saving an empty item list deletes the
document, and a missing document reads as an empty cart.
"""
from typing import Iterable, List, Optional

from bson import ObjectId

import catalog
import database
from errors import CartNotFound, InsufficientStock, InvalidRequest, NotFound, ProductNotFound
from logconfig import get_logger
from schemas import CartLine

logger = get_logger(__name__)

COLLECTION = "cart"


def calculate_total(items: Iterable[dict]) -> float:
    return sum(item["price"] * item["quantity"] for item in items)


def get_cart(user_id) -> Optional[dict]:
    return database.db[COLLECTION].find_one({"userId": user_id})


def view(user_id, cart: Optional[dict] = None) -> dict:
    """The cart as the API returns it, including its total."""
    if cart is None:
        return {"userId": str(user_id), "items": [], "totalPrice": 0}
    data = database.serialize_doc(cart)
    data["totalPrice"] = calculate_total(cart["items"])
    return data


def save_items(user_id, items: List[dict]) -> Optional[dict]:
    if not items:
        clear_cart(user_id)
        return None
    stamp = database.now()
    database.db[COLLECTION].update_one(
        {"userId": user_id},
        {"$set": {"items": items, "updatedAt": stamp}, "$setOnInsert": {"createdAt": stamp}},
        upsert=True,
    )
    return get_cart(user_id)


def clear_cart(user_id) -> None:
    database.db[COLLECTION].delete_one({"userId": user_id})


def _product_id(raw) -> ObjectId:
    oid = database.to_object_id(raw)
    if oid is None:
        raise InvalidRequest(f"Invalid product ID: {raw}")
    return oid


def _check_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("Invalid product quantity.")


def _in_stock(product: dict, quantity: int) -> None:
    if product.get("stock", 0) < quantity:
        raise InsufficientStock(product["_id"], product.get("name"), quantity, product.get("stock", 0))


def _snapshot(product: dict, quantity: int) -> dict:
    return {
        "productId": product["_id"],
        "name": product["name"],
        "image": catalog.first_image(product),
        "price": catalog.sell_price(product),
        "quantity": quantity,
    }


def add_item(user_id, product_id, quantity: int = 1) -> Optional[dict]:
    """Add a product, or raise its quantity when it is already in the cart."""
    oid = _product_id(product_id)
    _check_quantity(quantity)
    product = catalog.find_product(oid)
    if product is None:
        raise ProductNotFound()
    _in_stock(product, quantity)

    cart = get_cart(user_id)
    items = list(cart["items"]) if cart else []
    for item in items:
        if item["productId"] == oid:
            _in_stock(product, item["quantity"] + quantity)
            item["quantity"] += quantity
            break
    else:
        items.append(_snapshot(product, quantity))
    return save_items(user_id, items)


def replace_items(user_id, lines: List[CartLine]) -> Optional[dict]:
    """Store the client's view of the cart; lines with quantity <= 0 are dropped.

    Name, image and price always come from the product, never from the client.
    """
    items = []
    for line in lines:
        if line.quantity <= 0:
            continue
        oid = _product_id(line.product_id)
        product = catalog.find_product(oid)
        if product is None:
            raise ProductNotFound(line.product_id)
        _in_stock(product, line.quantity)
        items.append(_snapshot(product, line.quantity))
    return save_items(user_id, items)


def update_item(user_id, product_id, quantity) -> Optional[dict]:
    """Set one item's quantity; zero or less removes it."""
    oid = _product_id(product_id)
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidRequest("Invalid product quantity.")

    cart = get_cart(user_id)
    if cart is None:
        raise CartNotFound()
    items = list(cart["items"])
    index = next((i for i, item in enumerate(items) if item["productId"] == oid), None)
    if index is None:
        raise NotFound("Product is not in the cart.")

    if quantity <= 0:
        items.pop(index)
    else:
        product = catalog.find_product(oid)
        if product is None:
            raise ProductNotFound(product_id)
        _in_stock(product, quantity)
        items[index]["quantity"] = quantity
    return save_items(user_id, items)


def remove_item(user_id, product_id) -> Optional[dict]:
    oid = _product_id(product_id)
    cart = get_cart(user_id)
    if cart is None:
        raise CartNotFound()
    items = [item for item in cart["items"] if item["productId"] != oid]
    if len(items) == len(cart["items"]):
        raise NotFound("Product is not in the cart.")
    return save_items(user_id, items)


def purge_invalid_carts() -> int:
    """Delete carts without an owner or without items; returns how many went."""
    result = database.db[COLLECTION].delete_many(
        {"$or": [{"userId": None}, {"items": {"$exists": False}}, {"items": {"$size": 0}}]}
    )
    if result.deleted_count:
        logger.info("invalid carts removed", count=result.deleted_count)
    return result.deleted_count
