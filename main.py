import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, EmailStr, Field

import accounts
import auth
import catalog
import config
import database
import orders
from auth import get_current_user, require_admin
from errors import AppError
from payments import RazorpayGateway, get_gateway
from schemas import (
    Address, AdminUserUpdate, ApiModel, Category, CategoryUpdate, OrderItemIn, PaymentMethod,
    PaymentProof, Product, ProductUpdate, ProfileUpdate, ShippingAddress, User,
)

config.setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes()
        except Exception:
            logger.exception("Could not create database indexes")
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")
    yield


app = FastAPI(title="Sparkle Crackers API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL] if config.FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        msg = err.get("msg", "Invalid value").replace("Value error, ", "")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------- Models -----------------------
class RegisterBody(ApiModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)


class LoginBody(ApiModel):
    email: EmailStr
    password: str


class ForgotPasswordBody(ApiModel):
    email: EmailStr


class ResetPasswordBody(ApiModel):
    password: str = Field(..., min_length=6)


class CartAddBody(ApiModel):
    product_id: str
    quantity: int = 1


class CartUpdateBody(ApiModel):
    quantity: int


class WishlistBody(ApiModel):
    product_id: str


class CreateIntentBody(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderDetails(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1, validation_alias=AliasChoices("items", "orderItems"))
    shipping_address: ShippingAddress


class VerifyPaymentBody(ApiModel):
    external_order_id: str = Field(..., min_length=1, validation_alias=AliasChoices(
        "externalOrderId", "external_order_id", "razorpay_order_id"))
    external_payment_id: str = Field(..., min_length=1, validation_alias=AliasChoices(
        "externalPaymentId", "external_payment_id", "razorpay_payment_id"))
    signature: str = Field(..., min_length=1, validation_alias=AliasChoices("signature", "razorpay_signature"))
    order_details: OrderDetails


class CreateOrderBody(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1, validation_alias=AliasChoices("items", "orderItems"))
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_proof: Optional[PaymentProof] = None


class StatusUpdateBody(ApiModel):
    status: str
    tracking_number: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Sparkle Crackers API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(body: RegisterBody):
    return auth.register_user(body.first_name, body.last_name, body.email, body.phone, body.password)


@app.post("/auth/login")
def login(body: LoginBody):
    return auth.login_user(body.email, body.password)


@app.post("/auth/forgot-password")
def forgot_password(body: ForgotPasswordBody):
    token = auth.create_password_reset(body.email)
    response = {"message": "If that email is registered, a password reset link has been issued."}
    if token and config.EXPOSE_RESET_TOKEN:
        response["reset_token"] = token
    return response


@app.put("/auth/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordBody):
    return auth.reset_password(token, body.password)


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(
    category_id: Optional[str] = Query(None, alias="categoryId"),
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    return catalog.list_products(category_id=category_id, q=q, page=page, limit=limit)


@app.get("/products/category/{category_id}")
def list_products_in_category(category_id: str):
    return catalog.list_category_products(category_id)


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return catalog.get_product(product_id)


@app.post("/products", status_code=201)
def create_product(body: Product, user=Depends(require_admin)):
    return catalog.create_product(body)


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, user=Depends(require_admin)):
    return catalog.update_product(product_id, body)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin)):
    catalog.delete_product(product_id)
    return {"message": "Product removed"}


# ----------------------- Categories -----------------------
@app.get("/categories")
def list_categories():
    return catalog.list_categories()


@app.get("/categories/{category_id}")
def get_category(category_id: str):
    return catalog.get_category(category_id)


@app.post("/categories", status_code=201)
def create_category(body: Category, user=Depends(require_admin)):
    return catalog.create_category(body)


@app.put("/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, user=Depends(require_admin)):
    return catalog.update_category(category_id, body)


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, user=Depends(require_admin)):
    catalog.delete_category(category_id)
    return {"message": "Category removed"}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(user=Depends(get_current_user)):
    return accounts.get_cart(user["id"])


@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user)):
    return accounts.add_to_cart(user["id"], body.product_id, body.quantity)


@app.delete("/cart")
def clear_cart(user=Depends(get_current_user)):
    return accounts.clear_cart(user["id"])


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, body: CartUpdateBody, user=Depends(get_current_user)):
    return accounts.update_cart_item(user["id"], product_id, body.quantity)


@app.delete("/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user)):
    return accounts.remove_from_cart(user["id"], product_id)


# ----------------------- Users -----------------------
@app.get("/users/profile")
def get_profile(user=Depends(get_current_user)):
    return accounts.get_profile(user["id"])


@app.put("/users/profile")
def update_profile(body: ProfileUpdate, user=Depends(get_current_user)):
    return accounts.update_profile(user["id"], body)


@app.get("/users/addresses")
def list_addresses(user=Depends(get_current_user)):
    return accounts.list_addresses(user["id"])


@app.post("/users/addresses", status_code=201)
def add_address(body: Address, user=Depends(get_current_user)):
    return accounts.add_address(user["id"], body)


@app.put("/users/addresses/{address_id}")
def update_address(address_id: str, body: Address, user=Depends(get_current_user)):
    return accounts.update_address(user["id"], address_id, body)


@app.delete("/users/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user)):
    accounts.delete_address(user["id"], address_id)
    return {"message": "Address removed"}


@app.put("/users/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user)):
    return accounts.set_default_address(user["id"], address_id)


@app.get("/users/wishlist")
def get_wishlist(user=Depends(get_current_user)):
    return accounts.get_wishlist(user["id"])


@app.post("/users/wishlist")
def add_to_wishlist(body: WishlistBody, user=Depends(get_current_user)):
    return accounts.add_to_wishlist(user["id"], body.product_id)


@app.delete("/users/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user)):
    return accounts.remove_from_wishlist(user["id"], product_id)


@app.get("/users")
def list_users(user=Depends(require_admin)):
    return accounts.list_users()


@app.get("/users/{user_id}")
def get_user(user_id: str, user=Depends(require_admin)):
    return accounts.get_user(user_id)


@app.put("/users/{user_id}")
def update_user(user_id: str, body: AdminUserUpdate, user=Depends(require_admin)):
    return accounts.update_user(user_id, body)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user=Depends(require_admin)):
    accounts.delete_user(user_id)
    return {"message": "User removed"}


# ----------------------- Payments -----------------------
@app.post("/payments/create-intent")
def create_payment_intent(
    body: CreateIntentBody,
    user=Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    return orders.create_draft_payment(user["id"], body.items, gateway)


@app.post("/payments/verify-and-order")
def verify_and_order(
    body: VerifyPaymentBody,
    user=Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    proof = PaymentProof(
        gateway_order_id=body.external_order_id,
        gateway_payment_id=body.external_payment_id,
        signature=body.signature,
    )
    order = orders.finalize_order(
        user["id"],
        body.order_details.items,
        body.order_details.shipping_address,
        "online",
        payment_proof=proof,
        gateway=gateway,
    )
    return {"message": "Payment successful and order created", "orderId": order["id"]}


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(
    body: CreateOrderBody,
    user=Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    return orders.finalize_order(
        user["id"],
        body.items,
        body.shipping_address,
        body.payment_method,
        payment_proof=body.payment_proof,
        gateway=gateway,
    )


@app.get("/orders/mine")
def my_orders(user=Depends(get_current_user)):
    return orders.list_user_orders(user["id"])


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return orders.get_order_for(order_id, user)


@app.get("/orders")
def list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), user=Depends(require_admin)):
    return orders.list_orders(page=page, limit=limit)


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdateBody, user=Depends(require_admin)):
    return orders.update_order_status(order_id, body.status, body.tracking_number)


# ----------------------- Seed Demo Data -----------------------
DEMO_CATEGORIES = [
    {"name": "Sparklers", "description": "Hand-held sparklers for all ages.", "icon": "sparkles"},
    {"name": "Ground Chakkars", "description": "Spinning ground wheels.", "icon": "disc"},
    {"name": "Sky Shots", "description": "Aerial shots and multi-colour bursts.", "icon": "rocket"},
    {"name": "Flower Pots", "description": "Fountains of colourful sparks.", "icon": "flower"},
]

DEMO_PRODUCTS = [
    {
        "category": "Sparklers",
        "name": "Electric Sparklers 10cm (Box of 10)",
        "description": "Classic crackling sparklers with a bright silver glow.",
        "short_description": "Silver crackling sparklers.",
        "mrp": 120,
        "price": 90,
        "sound_level": "Low",
        "burn_time": "45 seconds",
        "stock": 200,
        "images": ["https://images.unsplash.com/photo-1467810563316-b5476525c0f9"],
        "features": ["Smokeless", "Child friendly"],
        "tags": ["diwali", "kids"],
        "is_best_seller": True,
    },
    {
        "category": "Sparklers",
        "name": "Colour Sparklers 30cm (Box of 5)",
        "description": "Long sparklers that shift through red, green and gold.",
        "short_description": "Colour changing sparklers.",
        "mrp": 250,
        "price": 199,
        "sound_level": "Low",
        "burn_time": "90 seconds",
        "stock": 120,
        "images": ["https://images.unsplash.com/photo-1498931299472-f7a63a5a1cfa"],
        "tags": ["diwali", "colour"],
    },
    {
        "category": "Ground Chakkars",
        "name": "Deluxe Ground Chakkar (Box of 10)",
        "description": "Fast spinning wheels with a golden trail.",
        "short_description": "Golden spinning wheels.",
        "mrp": 300,
        "price": 240,
        "sound_level": "Medium",
        "burn_time": "20 seconds",
        "stock": 80,
        "images": ["https://images.unsplash.com/photo-1533230408708-8f9f91d1235a"],
        "is_on_sale": True,
    },
    {
        "category": "Sky Shots",
        "name": "30 Shot Multi-Colour Cake",
        "description": "Thirty rapid aerial bursts in mixed colours.",
        "short_description": "30 aerial shots.",
        "mrp": 1800,
        "price": 1450,
        "sound_level": "High",
        "burn_time": "40 seconds",
        "stock": 25,
        "images": ["https://images.unsplash.com/photo-1514125669375-59ee3985d08b"],
        "specifications": {"shots": "30", "height": "25m"},
        "is_new_arrival": True,
    },
    {
        "category": "Flower Pots",
        "name": "Giant Flower Pot (Box of 5)",
        "description": "Tall fountains of silver and gold sparks.",
        "short_description": "Tall spark fountains.",
        "mrp": 450,
        "price": 380,
        "sound_level": "Mixed",
        "burn_time": "60 seconds",
        "stock": 60,
        "images": ["https://images.unsplash.com/photo-1482575832494-771f74bf6857"],
        "is_best_seller": True,
    },
]


@app.post("/seed")
def seed():
    if database.count_documents("product") > 0:
        return {"seeded": False, "message": "Products already exist"}
    category_ids = {}
    for c in DEMO_CATEGORIES:
        existing = database.collection("category").find_one({"name": c["name"]})
        category_ids[c["name"]] = str(existing["_id"]) if existing else database.create_document("category", Category(**c))
    for p in DEMO_PRODUCTS:
        data = {k: v for k, v in p.items() if k != "category"}
        database.create_document("product", Product(category_id=category_ids[p["category"]], **data))
    # create admin user if none
    if database.count_documents("user", {"role": "admin"}) == 0:
        admin = User(
            first_name="Store",
            last_name="Admin",
            email="admin@sparklecrackers.in",
            phone="9876543210",
            password_hash=auth.hash_password("admin123"),
            role="admin",
        )
        database.create_document("user", admin)
    logger.info("Seeded demo catalog")
    return {"seeded": True, "products": database.count_documents("product")}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
