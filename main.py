import os
from contextlib import asynccontextmanager
from typing import Any, List, Literal, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import config
import orders
from auth import authenticate, create_token, get_current_user, public_user, register_user, require_admin
from cart import Cart, LocalCart, merge_guest_cart, open_cart
from checkout import CheckoutOrchestrator
from database import db as default_db
from database import ensure_indexes, get_db, to_object_id, utcnow
from errors import CartConflictError, EmptyCartError, NotFoundError, StorefrontError, ValidationFailed
from logging_config import clear_context, configure_logging
from notifications import OrderNotifier, get_notifier
from schemas import Product
from seed import seed_products

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(default_db)
    yield


# App setup
app = FastAPI(title="Clothing Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix="/api")


@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_context()
    return await call_next(request)


# Error mapping
ERROR_STATUS_CODES: dict[type, int] = {
    NotFoundError: 404,
    ValidationFailed: 400,
    EmptyCartError: 400,
    CartConflictError: 409,
}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code == 500:
        logger.error("storefront_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=500, content={"message": "Server error"})
    return JSONResponse(status_code=status_code, content={"message": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"message": "Server error"})


# Schemas (request/response)
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    size: str
    quantity: Any = None


class UpdateCartItemRequest(BaseModel):
    quantity: Any = None


class GuestCartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    size: str
    quantity: Any = None


class MergeCartRequest(BaseModel):
    items: List[GuestCartItem] = Field(default_factory=list)


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validated by the checkout after the empty-cart check.
    shipping_address: Any = Field(None, alias="shippingAddress")


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = Field(None, alias="imageUrl")
    category: Optional[str] = None
    sizes: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)


class OrderStatusUpdate(BaseModel):
    status: str


class RoleUpdate(BaseModel):
    role: Literal["user", "admin"]


def get_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)) -> Cart:
    return open_cart(db, user)


# Health and helpers
@app.get("/")
def root():
    return {"message": "Clothing E-commerce API is running!"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@api.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = register_user(db, payload.name, payload.email, payload.password)
    return {"token": create_token(user), "user": public_user(user)}


@api.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    return {"token": create_token(user), "user": public_user(user)}


@api.get("/auth/me")
async def me(current_user: dict = Depends(get_current_user)):
    return public_user(current_user)


# Products
@api.get("/products")
def list_products(search: Optional[str] = None, category: Optional[str] = None, size: Optional[str] = None,
                  min_price: Optional[float] = Query(None, alias="minPrice"),
                  max_price: Optional[float] = Query(None, alias="maxPrice"),
                  sort_by: str = Query("createdAt", alias="sortBy"),
                  sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
                  page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                  db: Database = Depends(get_db)):
    return catalog.list_products(db, search=search, category=category, size=size, min_price=min_price,
                                 max_price=max_price, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit)


@api.get("/products/categories/list")
def product_categories():
    return catalog.list_categories()


@api.get("/products/sizes/list")
def product_sizes():
    return catalog.list_sizes()


@api.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.serialize_product(catalog.get_product(db, product_id))


# Cart
@api.get("/cart")
def view_cart(cart: Cart = Depends(get_cart)):
    return cart.view()


@api.post("/cart/add")
def cart_add(item: AddToCartRequest, cart: Cart = Depends(get_cart)):
    cart.add_item(item.product_id, item.size, item.quantity)
    return {"message": "Item added to cart successfully"}


@api.put("/cart/update/{item_id}")
def cart_update(item_id: str, payload: UpdateCartItemRequest, cart: Cart = Depends(get_cart)):
    cart.update_item_quantity(item_id, payload.quantity)
    return {"message": "Cart updated successfully"}


@api.delete("/cart/remove/{item_id}")
def cart_remove(item_id: str, cart: Cart = Depends(get_cart)):
    cart.remove_item(item_id)
    return {"message": "Item removed from cart successfully"}


@api.delete("/cart/clear")
def cart_clear(cart: Cart = Depends(get_cart)):
    cart.clear()
    return {"message": "Cart cleared successfully"}


@api.post("/cart/merge")
def cart_merge(payload: MergeCartRequest, cart: Cart = Depends(get_cart), db: Database = Depends(get_db)):
    guest = LocalCart.from_items(db, [i.model_dump(by_alias=True) for i in payload.items])
    result = merge_guest_cart(guest, cart)
    return {"message": "Guest cart merged", **result}


# Checkout & Orders
@api.post("/orders/create", status_code=201)
def create_order(payload: CreateOrderRequest, background_tasks: BackgroundTasks,
                 user: dict = Depends(get_current_user), db: Database = Depends(get_db),
                 notifier: OrderNotifier = Depends(get_notifier)):
    orchestrator = CheckoutOrchestrator(db, notifier, dispatch=background_tasks.add_task)
    order = orchestrator.create_order(user, payload.shipping_address)
    return {"message": "Order created successfully", "order": order}


@api.get("/orders")
def my_orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return [orders.serialize_order(o) for o in orders.list_user_orders(db, str(user["_id"]))]


@api.get("/orders/{order_id}")
def order_detail(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return orders.serialize_order(orders.get_user_order(db, str(user["_id"]), order_id))


# Admin: products
@api.get("/admin/products")
def admin_products(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    cursor = db["product"].find().sort([("created_at", -1), ("_id", -1)])
    return [catalog.serialize_product(p) for p in cursor]


@api.get("/admin/products/stats/overview")
def admin_product_stats(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return catalog.product_stats(db)


@api.get("/admin/products/{product_id}")
def admin_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return catalog.serialize_product(catalog.get_product(db, product_id))


@api.post("/admin/products", status_code=201)
def admin_create_product(payload: Product, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    product = catalog.create_product(db, payload)
    return {"message": "Product created successfully", "product": catalog.serialize_product(product)}


@api.put("/admin/products/{product_id}")
def admin_update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    product = catalog.update_product(db, product_id, payload.model_dump(exclude_none=True))
    return {"message": "Product updated successfully", "product": catalog.serialize_product(product)}


@api.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product deleted successfully"}


# Admin: orders
@api.get("/admin/orders")
def admin_orders(status: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return orders.list_orders(db, status=status, page=page, limit=limit)


@api.get("/admin/orders/stats/overview")
def admin_order_stats(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return orders.order_stats(db)


@api.get("/admin/orders/{order_id}")
def admin_order(order_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return orders.serialize_order(orders.get_order(db, order_id))


@api.put("/admin/orders/{order_id}/status")
def admin_order_status(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(require_admin),
                       db: Database = Depends(get_db)):
    order = orders.update_order_status(db, order_id, payload.status)
    return {"message": "Order status updated successfully", "order": orders.serialize_order(order)}


# Admin: users
@api.get("/admin/users")
def admin_users(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    cursor = db["user"].find().sort([("created_at", -1), ("_id", -1)])
    return [public_user(u) for u in cursor]


@api.put("/admin/users/{user_id}/role")
def admin_user_role(user_id: str, payload: RoleUpdate, admin: dict = Depends(require_admin),
                    db: Database = Depends(get_db)):
    oid = to_object_id(user_id)
    if oid == admin["_id"] and payload.role != "admin":
        raise ValidationFailed("Admins cannot remove their own admin role", field="role")
    result = db["user"].update_one({"_id": oid}, {"$set": {"role": payload.role, "updated_at": utcnow()}}) if oid else None
    if result is None or result.matched_count == 0:
        raise NotFoundError("User", user_id)
    logger.info("user_role_changed", target_user_id=user_id, role=payload.role)
    return {"message": "User role updated successfully", "user": public_user(db["user"].find_one({"_id": oid}))}


# Optional: seed sample products for demo
@api.post("/admin/seed")
def admin_seed(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    count = seed_products(db)
    if not count:
        return {"seeded": False, "message": "Products already exist"}
    return {"seeded": True, "count": count}


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
