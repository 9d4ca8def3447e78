"""Error types raised by the shop services.

Each error carries the HTTP status the API answers with; main.py turns them
into JSON bodies of the form ``{"detail": ..., "error_type": ...}``.
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base exception for all shop errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error_type": type(self).__name__}


class InvalidRequest(ShopError):
    """Malformed or incomplete input."""

    status_code = 400


class InvalidShippingAddress(InvalidRequest):
    pass


class EmptyCart(InvalidRequest):
    def __init__(self):
        super().__init__("Your cart is empty.")


class AlreadyExists(InvalidRequest):
    """Raised when a unique value (email, slug, review) is already taken."""


class Unauthorized(ShopError):
    status_code = 401


class Forbidden(ShopError):
    status_code = 403


class NotFound(ShopError):
    status_code = 404


class ProductNotFound(NotFound):
    def __init__(self, product_id: Any = None):
        self.product_id = str(product_id) if product_id is not None else None
        msg = "Product not found."
        if product_id is not None:
            msg = f"Product with ID {product_id} no longer exists."
        super().__init__(msg)


class OrderNotFound(NotFound):
    def __init__(self, order_id: Any):
        self.order_id = str(order_id)
        super().__init__("Order not found.")


class CartNotFound(NotFound):
    def __init__(self):
        super().__init__("Cart not found.")


class InsufficientStock(ShopError):
    """Raised when a product has fewer units than requested."""

    status_code = 400

    def __init__(self, product_id: Any, name: Optional[str], requested: int, available: int):
        self.product_id = str(product_id)
        self.name = name
        self.requested = requested
        self.available = available
        label = name or self.product_id
        super().__init__(
            f"Product '{label}' does not have enough stock "
            f"(requested {requested}, available {available})."
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            product_id=self.product_id,
            requested=self.requested,
            available=self.available,
        )
        return data


class InvalidState(ShopError):
    status_code = 400

    def __init__(self, status: str):
        self.status = status
        super().__init__(
            f"Cannot cancel an order in status '{status}'. "
            "Only pending orders can be cancelled."
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class OrderFinalizationFailed(ShopError):
    status_code = 500

    def __init__(self):
        super().__init__(
            "An error occurred while placing the order. Nothing was charged "
            "or reserved; please try again."
        )


class CancellationFailed(ShopError):
    status_code = 500

    def __init__(self):
        super().__init__("An error occurred while cancelling the order. Please try again.")
