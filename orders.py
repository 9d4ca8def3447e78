"""Order placement, cancellation and status changes.

Checkout turns a cart (or a single "buy now" product) into a pending order.
Every precondition is checked before anything is written; the writes
themselves (order insert, one conditional stock decrement per item, cart
removal) run as one unit of work, so a failure leaves no order behind and
every product's stock as it was.

Order items are priced from the live product at checkout time, on both the
cart path and the buy-now path; the price cached on a cart item is only
what the cart displays.
"""
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

import carts
import catalog
import database
import inventory
from errors import (
    CancellationFailed,
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidRequest,
    InvalidShippingAddress,
    InvalidState,
    OrderFinalizationFailed,
    OrderNotFound,
    ProductNotFound,
)
from logconfig import get_logger
from schemas import OrderStatus, ShippingAddress

logger = get_logger(__name__)

COLLECTION = "order"
DEFAULT_PAYMENT_METHOD = "COD"
PENDING = OrderStatus.pending.value
CANCELLED = OrderStatus.cancelled.value


def validate_shipping_address(address: Any) -> dict:
    if address is None:
        raise InvalidShippingAddress("Please provide shipping information.")
    if not isinstance(address, ShippingAddress):
        try:
            address = ShippingAddress.model_validate(address)
        except ValidationError as exc:
            if any(err["loc"] and err["loc"][-1] == "phone" and err["type"] == "value_error"
                   for err in exc.errors()):
                raise InvalidShippingAddress("Shipping phone number is invalid (must be 10 digits).")
            raise InvalidShippingAddress("Shipping information is incomplete (full name, address, phone).")
    return address.model_dump(by_alias=True, exclude_none=True)


def _order_id(raw) -> ObjectId:
    oid = database.to_object_id(raw)
    if oid is None:
        raise InvalidRequest("Invalid order ID.")
    return oid


def _price_items(lines: List[Tuple[ObjectId, int]]) -> List[dict]:
    """Check every line against the live catalog and snapshot it into an order item."""
    items = []
    for product_id, quantity in lines:
        product = catalog.find_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        stock = product.get("stock", 0)
        if stock < quantity:
            raise InsufficientStock(product_id, product.get("name"), quantity, stock)
        items.append({
            "productId": product["_id"],
            "name": product["name"],
            "image": catalog.first_image(product),
            "price": catalog.sell_price(product),
            "quantity": quantity,
        })
    return items


def _explain_failure(items: List[dict], exc: Exception) -> None:
    # a write conflict on a product that has since sold out reads as out of stock
    for item in items:
        try:
            stock = inventory.available(item["productId"])
        except (PyMongoError, ProductNotFound):
            logger.warning("stock check after failed order skipped", product_id=str(item["productId"]))
            return
        if stock < item["quantity"]:
            raise InsufficientStock(item["productId"], item["name"], item["quantity"], stock) from exc


def _finalize(user_id, items: List[dict], address: dict, payment_method: Optional[str], from_cart: bool) -> dict:
    stamp = database.now()
    order = {
        "userId": user_id,
        "items": items,
        "shippingAddress": address,
        "paymentMethod": payment_method or DEFAULT_PAYMENT_METHOD,
        "totalPrice": carts.calculate_total(items),
        "status": PENDING,
        "orderDate": stamp,
        "createdAt": stamp,
        "updatedAt": stamp,
    }
    orders = database.db[COLLECTION]
    cart_collection = database.db[carts.COLLECTION]

    try:
        with database.transaction() as uow:
            order["_id"] = orders.insert_one(order, session=uow.session).inserted_id
            uow.compensate(orders.delete_one, {"_id": order["_id"]})

            for item in items:
                inventory.reserve(item["productId"], item["quantity"], session=uow.session)
                uow.compensate(inventory.release, item["productId"], item["quantity"])

            if from_cart:
                removed = cart_collection.find_one_and_delete({"userId": user_id}, session=uow.session)
                if removed is None:
                    # the cart was checked out by a concurrent request
                    raise EmptyCart()
                uow.compensate(cart_collection.insert_one, removed)
    except (InsufficientStock, ProductNotFound, EmptyCart) as exc:
        logger.warning("order rolled back", user_id=str(user_id), reason=exc.message)
        raise
    except PyMongoError as exc:
        logger.exception("order finalization failed", user_id=str(user_id))
        _explain_failure(items, exc)
        raise OrderFinalizationFailed() from exc

    logger.info(
        "order placed",
        order_id=str(order["_id"]),
        user_id=str(user_id),
        items=len(items),
        total_price=order["totalPrice"],
    )
    return order


def place_cart_order(user_id, shipping_address, payment_method: Optional[str] = None) -> dict:
    """Check out the user's whole cart. The cart is gone once the order exists."""
    address = validate_shipping_address(shipping_address)
    cart = carts.get_cart(user_id)
    if not cart or not cart.get("items"):
        raise EmptyCart()
    items = _price_items([(item["productId"], item["quantity"]) for item in cart["items"]])
    return _finalize(user_id, items, address, payment_method, from_cart=True)


def place_direct_order(user_id, product_id, quantity, shipping_address,
                       payment_method: Optional[str] = None) -> dict:
    """Buy a single product now, leaving the cart untouched."""
    address = validate_shipping_address(shipping_address)
    oid = database.to_object_id(product_id)
    if oid is None:
        raise InvalidRequest("Invalid product ID.")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("Invalid product quantity.")
    items = _price_items([(oid, quantity)])
    return _finalize(user_id, items, address, payment_method, from_cart=False)


def list_orders(user_id) -> List[dict]:
    cursor = database.db[COLLECTION].find({"userId": user_id})
    return list(cursor.sort([("orderDate", DESCENDING), ("_id", DESCENDING)]))


def get_order(order_id, user_id, action: str = "view") -> dict:
    """Load an order and check that ``user_id`` owns it."""
    oid = _order_id(order_id)
    order = database.db[COLLECTION].find_one({"_id": oid})
    if order is None:
        raise OrderNotFound(order_id)
    if order["userId"] != user_id:
        raise Forbidden(f"You do not have permission to {action} this order.")
    return order


def cancel_order(order_id, user_id) -> dict:
    """Cancel a pending order and put its items back in stock."""
    order = get_order(order_id, user_id, action="cancel")
    if order["status"] != PENDING:
        raise InvalidState(order["status"])

    orders = database.db[COLLECTION]
    try:
        with database.transaction() as uow:
            cancelled = orders.find_one_and_update(
                {"_id": order["_id"], "status": PENDING},
                {"$set": {"status": CANCELLED, "updatedAt": database.now()}},
                return_document=ReturnDocument.AFTER,
                session=uow.session,
            )
            if cancelled is None:
                current = orders.find_one({"_id": order["_id"]}, {"status": 1}, session=uow.session)
                if current is None:
                    raise OrderNotFound(order_id)
                raise InvalidState(current["status"])
            uow.compensate(
                orders.update_one,
                {"_id": order["_id"]},
                {"$set": {"status": PENDING, "updatedAt": order["updatedAt"]}},
            )

            for item in order["items"]:
                if inventory.release(item["productId"], item["quantity"], session=uow.session):
                    uow.compensate(inventory.reserve, item["productId"], item["quantity"])
    except (InvalidState, OrderNotFound):
        raise
    except PyMongoError as exc:
        logger.exception("order cancellation failed", order_id=str(order["_id"]))
        raise CancellationFailed() from exc

    logger.info("order cancelled", order_id=str(order["_id"]), user_id=str(user_id))
    return cancelled


def set_status(order_id, user_id, status) -> dict:
    """Move an order to any status. Paid and delivered are time-stamped; stock is not touched."""
    try:
        status = OrderStatus(status)
    except ValueError:
        raise InvalidRequest(f"Status '{status}' is not valid.")
    order = get_order(order_id, user_id, action="update")

    stamp = database.now()
    updates = {"status": status.value, "updatedAt": stamp}
    if status is OrderStatus.paid:
        updates["paidAt"] = stamp
    if status is OrderStatus.delivered:
        updates["deliveredAt"] = stamp

    updated = database.db[COLLECTION].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise OrderNotFound(order_id)
    logger.info("order status changed", order_id=str(order["_id"]), status=status.value)
    return updated
