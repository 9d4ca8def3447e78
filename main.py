import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
import blogs
import carts
import catalog
import database
import orders
import reviews
import users
from errors import InvalidRequest, ShopError
from logconfig import add_context, clear_context, configure_logging, get_logger
from schemas import (
    AddCartItem,
    BlogCreate,
    BlogUpdate,
    BuyNowRequest,
    CartQuantity,
    CartReplace,
    CheckoutRequest,
    LoginPayload,
    PasswordChange,
    ProductCreate,
    ProfileUpdate,
    RegisterPayload,
    ReviewCreate,
    ReviewUpdate,
    StatusChange,
)

configure_logging()
logger = get_logger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
        carts.purge_invalid_carts()
    else:
        logger.warning("DATABASE_URL not set, starting without a database")
    yield


app = FastAPI(title="Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Tag every log line of a request with its id and log the outcome."""
    clear_context()
    add_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex)
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


# Error handlers

@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = "Invalid request."
    if errors:
        field = ".".join(str(part) for part in errors[0]["loc"] if part != "body")
        detail = f"{field}: {errors[0]['msg']}" if field else errors[0]["msg"]
    content = InvalidRequest(detail).to_dict()
    return JSONResponse(status_code=InvalidRequest.status_code, content=content)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error_type": "InternalError"})


def _pagination(total: int, page: int, limit: int) -> dict:
    return {"total": total, "page": page, "limit": limit, "totalPages": -(-total // limit)}


@app.get("/")
def root():
    return {"message": "Shop Backend Running"}


# Users

@app.post("/users/register", status_code=201)
def register(payload: RegisterPayload):
    return users.register(payload)


@app.post("/users/login")
def login(payload: LoginPayload):
    return users.login(payload)


@app.get("/users/profile")
def get_profile(user=Depends(auth.get_current_user)):
    return users.public_view(user)


@app.patch("/users/profile")
def update_profile(payload: ProfileUpdate, user=Depends(auth.get_current_user)):
    return users.update_profile(user, payload)


@app.patch("/users/change-password")
def change_password(payload: PasswordChange, user=Depends(auth.get_current_user)):
    users.change_password(user, payload)
    return {"status": "updated"}


# Products

@app.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
    sort_by: str = "name",
    sort_order: str = "asc",
):
    items, total = catalog.list_products(page, limit, category, min_price, max_price, in_stock, sort_by, sort_order)
    return {
        "products": [database.serialize_doc(catalog.summarize(p)) for p in items],
        "pagination": _pagination(total, page, limit),
    }


@app.get("/products/search")
def search_products(keyword: Optional[str] = None):
    return [database.serialize_doc(catalog.summarize(p)) for p in catalog.search_products(keyword)]


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return database.serialize_doc(catalog.get_product(product_id))


@app.post("/products", status_code=201)
def create_product(payload: ProductCreate, user=Depends(auth.get_current_user)):
    return database.serialize_doc(catalog.create_product(payload))


@app.get("/products/{product_id}/reviews")
@app.get("/reviews/products/{product_id}/reviews")
def product_reviews(product_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    items, total = reviews.product_reviews(product_id, page, limit)
    return {
        "reviews": [database.serialize_doc(r) for r in items],
        "pagination": _pagination(total, page, limit),
    }


# Cart

@app.get("/cart")
def get_cart(user=Depends(auth.get_current_user)):
    return carts.view(user["_id"], carts.get_cart(user["_id"]))


@app.post("/cart/items")
def add_to_cart(payload: AddCartItem, user=Depends(auth.get_current_user)):
    cart = carts.add_item(user["_id"], payload.product_id, payload.quantity)
    return carts.view(user["_id"], cart)


@app.put("/cart")
def replace_cart(payload: CartReplace, user=Depends(auth.get_current_user)):
    cart = carts.replace_items(user["_id"], payload.items)
    return carts.view(user["_id"], cart)


@app.put("/cart/items/{product_id}")
def update_cart_item(product_id: str, payload: CartQuantity, user=Depends(auth.get_current_user)):
    cart = carts.update_item(user["_id"], product_id, payload.quantity)
    return carts.view(user["_id"], cart)


@app.delete("/cart/items/{product_id}")
def remove_cart_item(product_id: str, user=Depends(auth.get_current_user)):
    cart = carts.remove_item(user["_id"], product_id)
    return carts.view(user["_id"], cart)


@app.delete("/cart")
def clear_cart(user=Depends(auth.get_current_user)):
    carts.clear_cart(user["_id"])
    return carts.view(user["_id"])


# Orders

@app.post("/orders", status_code=201)
def create_order(payload: CheckoutRequest, user=Depends(auth.get_current_user)):
    order = orders.place_cart_order(user["_id"], payload.shipping_address, payload.payment_method)
    return database.serialize_doc(order)


@app.post("/orders/buy-now", status_code=201)
def buy_now(payload: BuyNowRequest, user=Depends(auth.get_current_user)):
    order = orders.place_direct_order(
        user["_id"], payload.product_id, payload.quantity, payload.shipping_address, payload.payment_method
    )
    return database.serialize_doc(order)


@app.get("/orders/my-orders")
def my_orders(user=Depends(auth.get_current_user)):
    return [database.serialize_doc(o) for o in orders.list_orders(user["_id"])]


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(auth.get_current_user)):
    return database.serialize_doc(orders.get_order(order_id, user["_id"]))


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(auth.get_current_user)):
    return database.serialize_doc(orders.cancel_order(order_id, user["_id"]))


@app.put("/orders/{order_id}/status")
def change_order_status(order_id: str, payload: StatusChange, user=Depends(auth.get_current_user)):
    return database.serialize_doc(orders.set_status(order_id, user["_id"], payload.status))


# Reviews

@app.post("/reviews", status_code=201)
def create_review(payload: ReviewCreate, user=Depends(auth.get_current_user)):
    return database.serialize_doc(reviews.create_review(user["_id"], payload))


@app.put("/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, user=Depends(auth.get_current_user)):
    return database.serialize_doc(reviews.update_review(review_id, user["_id"], payload))


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, user=Depends(auth.get_current_user)):
    reviews.delete_review(review_id, user["_id"])
    return {"status": "deleted"}


# Blog

@app.get("/blogs")
def list_blogs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    tags: Optional[str] = None,
    sort_by: str = "publishedAt",
    sort_order: str = "desc",
):
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    items, total = blogs.list_blogs(page, limit, tag_list, sort_by, sort_order)
    return {
        "blogs": [database.serialize_doc(blogs.summarize(b)) for b in items],
        "pagination": _pagination(total, page, limit),
    }


@app.get("/blogs/{slug}")
def get_blog(slug: str):
    return database.serialize_doc(blogs.get_by_slug(slug))


@app.post("/blogs", status_code=201)
def create_blog(payload: BlogCreate, user=Depends(auth.get_current_user)):
    return database.serialize_doc(blogs.create_blog(payload))


@app.put("/blogs/{blog_id}")
def update_blog(blog_id: str, payload: BlogUpdate, user=Depends(auth.get_current_user)):
    return database.serialize_doc(blogs.update_blog(blog_id, payload))


@app.delete("/blogs/{blog_id}")
def delete_blog(blog_id: str, user=Depends(auth.get_current_user)):
    blogs.delete_blog(blog_id)
    return {"status": "deleted"}


# Simple health and db test
@app.get("/test")
def test_database():
    if database.db is None:
        return {"backend": "ok", "db": "not configured"}
    try:
        collections = database.db.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "db": f"error: {str(e)}"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
