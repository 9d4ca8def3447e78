"""Tests for carts."""

import pytest
from bson import ObjectId

import carts
from errors import CartNotFound, InsufficientStock, InvalidRequest, NotFound, ProductNotFound
from schemas import CartLine


class TestAddItem:
    def test_first_item_creates_cart(self, make_product, buyer):
        pid = make_product(name="Mouse", stock=5, origin_price=20)
        cart = carts.add_item(buyer, str(pid), 2)
        assert cart["userId"] == buyer
        assert cart["items"] == [
            {"productId": pid, "name": "Mouse", "image": "mouse.jpg", "price": 20.0, "quantity": 2}
        ]

    def test_same_product_merges(self, make_product, buyer):
        pid = make_product(stock=5)
        carts.add_item(buyer, str(pid), 1)
        cart = carts.add_item(buyer, str(pid), 2)
        assert len(cart["items"]) == 1
        assert cart["items"][0]["quantity"] == 3

    def test_merged_quantity_is_stock_checked(self, make_product, buyer):
        pid = make_product(stock=3)
        carts.add_item(buyer, str(pid), 2)
        with pytest.raises(InsufficientStock):
            carts.add_item(buyer, str(pid), 2)
        assert carts.get_cart(buyer)["items"][0]["quantity"] == 2

    def test_missing_image_uses_placeholder(self, make_product, buyer):
        pid = make_product(images=[])
        cart = carts.add_item(buyer, str(pid), 1)
        assert cart["items"][0]["image"] == "default_image_url.jpg"

    def test_bad_input(self, make_product, buyer):
        pid = make_product()
        with pytest.raises(InvalidRequest):
            carts.add_item(buyer, "nope", 1)
        with pytest.raises(InvalidRequest):
            carts.add_item(buyer, str(pid), 0)
        with pytest.raises(ProductNotFound):
            carts.add_item(buyer, str(ObjectId()), 1)
        assert carts.get_cart(buyer) is None


class TestReplaceItems:
    def test_prices_come_from_the_product(self, make_product, buyer):
        pid = make_product(name="Desk", stock=5, origin_price=150)
        lines = [CartLine(product_id=str(pid), quantity=2, name="Cheap desk", price=1.0)]
        cart = carts.replace_items(buyer, lines)
        assert cart["items"][0]["name"] == "Desk"
        assert cart["items"][0]["price"] == 150.0

    def test_non_positive_lines_are_dropped(self, make_product, buyer):
        a = make_product(name="A")
        b = make_product(name="B")
        cart = carts.replace_items(
            buyer, [CartLine(product_id=str(a), quantity=1), CartLine(product_id=str(b), quantity=0)]
        )
        assert [item["productId"] for item in cart["items"]] == [a]

    def test_nothing_left_deletes_cart(self, make_product, buyer):
        pid = make_product()
        carts.add_item(buyer, str(pid), 1)
        assert carts.replace_items(buyer, [CartLine(product_id=str(pid), quantity=0)]) is None
        assert carts.get_cart(buyer) is None


class TestUpdateAndRemove:
    def test_set_quantity(self, make_product, buyer):
        pid = make_product(stock=5)
        carts.add_item(buyer, str(pid), 1)
        cart = carts.update_item(buyer, str(pid), 4)
        assert cart["items"][0]["quantity"] == 4

    def test_zero_removes_and_deletes_empty_cart(self, make_product, buyer):
        pid = make_product()
        carts.add_item(buyer, str(pid), 1)
        assert carts.update_item(buyer, str(pid), 0) is None
        assert carts.get_cart(buyer) is None

    def test_over_stock(self, make_product, buyer):
        pid = make_product(stock=2)
        carts.add_item(buyer, str(pid), 1)
        with pytest.raises(InsufficientStock):
            carts.update_item(buyer, str(pid), 3)

    def test_missing_cart_or_item(self, make_product, buyer):
        a = make_product(name="A")
        b = make_product(name="B")
        with pytest.raises(CartNotFound):
            carts.update_item(buyer, str(a), 1)
        carts.add_item(buyer, str(a), 1)
        with pytest.raises(NotFound, match="not in the cart"):
            carts.update_item(buyer, str(b), 1)
        with pytest.raises(NotFound, match="not in the cart"):
            carts.remove_item(buyer, str(b))

    def test_remove_keeps_other_items(self, make_product, buyer):
        a = make_product(name="A")
        b = make_product(name="B")
        carts.add_item(buyer, str(a), 1)
        carts.add_item(buyer, str(b), 1)
        cart = carts.remove_item(buyer, str(a))
        assert [item["productId"] for item in cart["items"]] == [b]
        assert carts.remove_item(buyer, str(b)) is None
        assert carts.get_cart(buyer) is None


class TestView:
    def test_empty(self, buyer):
        assert carts.view(buyer) == {"userId": str(buyer), "items": [], "totalPrice": 0}

    def test_total(self, make_product, buyer):
        a = make_product(name="A", origin_price=10)
        b = make_product(name="B", origin_price=2.5)
        carts.add_item(buyer, str(a), 2)
        cart = carts.add_item(buyer, str(b), 4)
        data = carts.view(buyer, cart)
        assert data["totalPrice"] == 30
        assert data["userId"] == str(buyer)
        assert data["items"][0]["productId"] == str(a)


def test_purge_invalid_carts(db, make_product, buyer):
    pid = make_product()
    carts.add_item(buyer, str(pid), 1)
    db["cart"].insert_many([
        {"userId": None, "items": [{"productId": pid, "quantity": 1}]},
        {"userId": ObjectId(), "items": []},
        {"userId": ObjectId()},
    ])

    assert carts.purge_invalid_carts() == 3
    assert db["cart"].count_documents({}) == 1
    assert carts.get_cart(buyer) is not None
