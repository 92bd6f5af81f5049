import logging
import os
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import authenticate_admin, create_token, require_admin
from checkout import CheckoutRejected, CheckoutSession, CheckoutSessionStore, IllegalTransition
from database import db
from images import ImageRejected, ImageStorage, ImageUpload, validate_image_batch
from order_grouping import group_orders
from payments import capability_from_env
from repositories import ADMIN_PRODUCT_LIMIT, OrderRepository, ProductRepository
from schemas import (
    AddItemRequest,
    CustomerInfoRequest,
    LoginRequest,
    PaymentDetails,
    Product,
    ProductCreateRequest,
    SetQuantityRequest,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Bakery Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Loaded once per process, like the SDK script on the page
payments = capability_from_env()
sessions = CheckoutSessionStore(payments)


# Dependencies
def get_database():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def get_product_repo(database=Depends(get_database)):
    return ProductRepository(database)


def get_order_repo(database=Depends(get_database)):
    return OrderRepository(database)


def get_optional_order_repo():
    # Payment approval must still report the payment id when the database is down.
    if db is None:
        return None
    return OrderRepository(db)


def get_image_storage(database=Depends(get_database)):
    return ImageStorage(database)


def get_sessions():
    return sessions


def get_session(session_id: str, store: CheckoutSessionStore = Depends(get_sessions)) -> CheckoutSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


# Error mapping
@app.exception_handler(CheckoutRejected)
async def checkout_rejected_handler(request: Request, exc: CheckoutRejected):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ImageRejected)
async def image_rejected_handler(request: Request, exc: ImageRejected):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(IllegalTransition)
async def illegal_transition_handler(request: Request, exc: IllegalTransition):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "state": exc.current.value},
    )


IMAGES_CHANGED = "Product images were changed by someone else. Please reload and try again."


def remote_failure(message: str):
    logger.exception(message)
    return HTTPException(status_code=502, detail=message)


# Routes
@app.get("/")
def root():
    return {"message": "Bakery storefront API running"}


@app.get("/test")
def test_database(store: CheckoutSessionStore = Depends(get_sessions)):
    """Readiness of the pieces checkout depends on."""
    response = {
        "backend": "running",
        "database": "not configured",
        "collections": {},
        "image_files": None,
        "payments": payments.to_dict(),
        "checkout_sessions": len(store),
    }
    if db is None:
        return response
    try:
        names = set(db.list_collection_names())
        response["collections"] = {
            name: db[name].estimated_document_count() if name in names else 0
            for name in (ProductRepository.collection, OrderRepository.collection)
        }
        response["image_files"] = db["images.files"].estimated_document_count()
        response["database"] = "connected"
    except Exception as e:
        logger.exception("database check failed")
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Catalog
@app.get("/api/products")
def list_products(
    order_by: Literal["name", "created_at"] = "created_at",
    limit: Optional[int] = Query(None, ge=1, le=100),
    products: ProductRepository = Depends(get_product_repo),
):
    try:
        return products.list(order_by=order_by, limit=limit)
    except Exception:
        raise remote_failure("Failed to load products.")


@app.get("/api/products/{product_id}")
def get_product(product_id: str, products: ProductRepository = Depends(get_product_repo)):
    try:
        product = products.get(product_id)
    except Exception:
        raise remote_failure("Failed to load products.")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/api/images/{path:path}")
def get_image(path: str, storage: ImageStorage = Depends(get_image_storage)):
    try:
        stored = storage.open(path)
        if stored is None:
            raise HTTPException(status_code=404, detail="Image not found")
        data = stored.read()
    except HTTPException:
        raise
    except Exception:
        raise remote_failure("Failed to load image.")
    content_type = (stored.metadata or {}).get("content_type") or "application/octet-stream"
    return Response(content=data, media_type=content_type)


@app.get("/api/payments/config")
def payment_config():
    return payments.to_dict()


# Checkout
@app.post("/api/checkout/sessions", status_code=201)
async def create_checkout_session(store: CheckoutSessionStore = Depends(get_sessions)):
    return store.create().to_dict()


@app.get("/api/checkout/sessions/{session_id}")
async def read_checkout_session(session: CheckoutSession = Depends(get_session)):
    return session.to_dict()


@app.post("/api/checkout/sessions/{session_id}/items")
async def add_cart_item(
    req: AddItemRequest,
    session: CheckoutSession = Depends(get_session),
    products: ProductRepository = Depends(get_product_repo),
):
    try:
        product = await run_in_threadpool(products.get, req.product_id)
    except Exception:
        raise remote_failure("Failed to load products.")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    session.add_item(product)
    return session.to_dict()


@app.put("/api/checkout/sessions/{session_id}/items/{product_id}")
async def set_cart_quantity(
    product_id: str,
    req: SetQuantityRequest,
    session: CheckoutSession = Depends(get_session),
):
    session.set_quantity(product_id, req.quantity)
    return session.to_dict()


@app.delete("/api/checkout/sessions/{session_id}/items/{product_id}")
async def remove_cart_item(product_id: str, session: CheckoutSession = Depends(get_session)):
    session.remove_item(product_id)
    return session.to_dict()


@app.put("/api/checkout/sessions/{session_id}/customer")
async def set_customer_info(req: CustomerInfoRequest, session: CheckoutSession = Depends(get_session)):
    session.set_customer_info(req.customer_name, req.phone_number)
    return session.to_dict()


@app.post("/api/checkout/sessions/{session_id}/payment")
async def proceed_to_payment(session: CheckoutSession = Depends(get_session)):
    session.proceed_to_payment()
    return {**session.to_dict(), "sdk_url": session.payments.sdk_url()}


@app.post("/api/checkout/sessions/{session_id}/payment/approve")
async def payment_approved(
    details: PaymentDetails,
    session: CheckoutSession = Depends(get_session),
    orders: Optional[OrderRepository] = Depends(get_optional_order_repo),
):
    if orders is not None:
        create_order = orders.create
    else:
        def create_order(order):
            raise RuntimeError("Database not available")

    outcome = await session.on_approved(details, create_order)
    return {
        **session.to_dict(),
        "outcome": {
            "payment_id": outcome.payment_id,
            "recorded": outcome.recorded,
            "failed": outcome.failed,
            "partial": not outcome.ok,
        },
    }


@app.post("/api/checkout/sessions/{session_id}/payment/error")
async def payment_error(session: CheckoutSession = Depends(get_session)):
    session.on_error()
    return session.to_dict()


@app.post("/api/checkout/sessions/{session_id}/payment/cancel")
async def payment_cancelled(session: CheckoutSession = Depends(get_session)):
    session.on_cancelled()
    return session.to_dict()


@app.post("/api/checkout/sessions/{session_id}/back")
async def back_to_cart(session: CheckoutSession = Depends(get_session)):
    session.back_to_cart()
    return session.to_dict()


# Admin
@app.post("/api/admin/login")
def admin_login(req: LoginRequest):
    if not authenticate_admin(req.username, req.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token, expires_at = create_token(req.username)
    return {"token": token, "expires_at": expires_at.isoformat()}


@app.get("/api/admin/session")
def admin_session(admin=Depends(require_admin)):
    return {"username": admin.get("sub"), "expires_at": admin.get("exp")}


@app.get("/api/admin/products")
def admin_recent_products(admin=Depends(require_admin), products: ProductRepository = Depends(get_product_repo)):
    try:
        return products.list(order_by="created_at", limit=ADMIN_PRODUCT_LIMIT)
    except Exception:
        raise remote_failure("Failed to load products.")


@app.post("/api/products", status_code=201)
def create_product(
    req: ProductCreateRequest,
    admin=Depends(require_admin),
    products: ProductRepository = Depends(get_product_repo),
):
    product = Product(name=req.name.strip(), price=req.price, description=req.description or None)
    try:
        created = products.create(product)
    except Exception:
        raise remote_failure("Failed to add product. Please try again.")
    logger.info("product %s created: %s", created["id"], created["name"])
    return created


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    admin=Depends(require_admin),
    products: ProductRepository = Depends(get_product_repo),
    storage: ImageStorage = Depends(get_image_storage),
):
    try:
        product = products.get(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        products.delete(product_id)
    except HTTPException:
        raise
    except Exception:
        raise remote_failure("Failed to delete product.")

    for url in product.get("images") or []:
        try:
            storage.delete_url(url)
        except Exception:
            logger.exception("failed to delete image %s of product %s", url, product_id)
    logger.info("product %s deleted", product_id)
    return {"deleted": True}


@app.post("/api/products/{product_id}/images")
async def upload_product_images(
    product_id: str,
    files: List[UploadFile] = File(...),
    admin=Depends(require_admin),
    products: ProductRepository = Depends(get_product_repo),
    storage: ImageStorage = Depends(get_image_storage),
):
    try:
        product = await run_in_threadpool(products.get, product_id)
    except Exception:
        raise remote_failure("Failed to load products.")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    uploads = [ImageUpload(f.filename or "image", f.content_type, await f.read()) for f in files]
    existing = product.get("images") or []
    validate_image_batch(len(existing), uploads)

    stored: List[str] = []
    try:
        for upload in uploads:
            stored.append(await run_in_threadpool(storage.upload, product_id, upload))
        saved = await run_in_threadpool(products.set_images, product_id, existing + stored, existing)
    except Exception:
        await discard_images(storage, stored)
        raise remote_failure("Failed to upload images.")
    if not saved:
        # Another upload or removal changed the list after it was read.
        await discard_images(storage, stored)
        raise HTTPException(status_code=409, detail=IMAGES_CHANGED)
    return {**product, "images": existing + stored}


async def discard_images(storage: ImageStorage, urls: List[str]):
    for url in urls:
        try:
            await run_in_threadpool(storage.delete_url, url)
        except Exception:
            logger.exception("failed to clean up image %s", url)


@app.delete("/api/products/{product_id}/images")
def remove_product_image(
    product_id: str,
    url: str,
    admin=Depends(require_admin),
    products: ProductRepository = Depends(get_product_repo),
    storage: ImageStorage = Depends(get_image_storage),
):
    try:
        product = products.get(product_id)
    except Exception:
        raise remote_failure("Failed to load products.")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    images = product.get("images") or []
    if url not in images:
        raise HTTPException(status_code=404, detail="Image not found")

    remaining = [i for i in images if i != url]
    try:
        saved = products.set_images(product_id, remaining, images)
    except Exception:
        raise remote_failure("Failed to update images.")
    if not saved:
        raise HTTPException(status_code=409, detail=IMAGES_CHANGED)
    try:
        storage.delete_url(url)
    except Exception:
        logger.exception("failed to delete image %s of product %s", url, product_id)
    return {**product, "images": remaining}


@app.get("/api/admin/orders")
def pending_orders(admin=Depends(require_admin), orders: OrderRepository = Depends(get_order_repo)):
    try:
        return orders.list_pending()
    except Exception:
        raise remote_failure("Failed to load orders.")


@app.get("/api/admin/orders/grouped")
def grouped_pending_orders(admin=Depends(require_admin), orders: OrderRepository = Depends(get_order_repo)):
    try:
        pending = orders.list_pending()
    except Exception:
        raise remote_failure("Failed to load orders.")
    return [group.to_dict() for group in group_orders(pending)]


@app.patch("/api/admin/orders/{order_id}/complete")
def complete_order(order_id: str, admin=Depends(require_admin), orders: OrderRepository = Depends(get_order_repo)):
    try:
        updated = orders.mark_completed(order_id)
    except Exception:
        raise remote_failure("Failed to mark order as completed.")
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"id": order_id, "is_completed": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
