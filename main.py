import os
import re
import json
import time
import shutil
import logging
import threading
from pathlib import Path
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, Depends, HTTPException, Request, Response, UploadFile, File, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, field_validator

from database import BaseStore, SettingsSlot, get_store, new_id, now_iso
from normalizers import (
    normalize_category, normalize_order, normalize_product, normalize_settings, normalize_user,
)
from pricing import compute_totals, line_total
from query import CATEGORY_QUERY, ORDER_QUERY, PRODUCT_QUERY, SETTINGS_QUERY, select
from schemas import (
    ORDER_STATUSES, Category, Order, OrderStatus, Product, SiteSettings,
)

from dotenv import load_dotenv
load_dotenv()

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MESSAGES_LOG = os.getenv("MESSAGES_LOG", "messages.log")
LOW_STOCK_THRESHOLD = 5

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

os.makedirs(UPLOAD_DIR, exist_ok=True)
_messages_lock = threading.Lock()

# FastAPI app
app = FastAPI(title="Beauté Store API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")

NO_FIELDS = "Aucun champ à mettre à jour"


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Erreur interne du serveur"})


# Pydantic models (update payloads; create payloads live in schemas.py)
class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    order: Optional[int] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = None
    is_new: Optional[bool] = None
    is_promo: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_available: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)
    technical_details: Optional[str] = None
    views: Optional[int] = Field(None, ge=0)

class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    admin_notes: Optional[str] = None
    notes: Optional[str] = None
    client_name: Optional[str] = Field(None, min_length=1)
    client_phone: Optional[str] = Field(None, min_length=1)
    client_email: Optional[EmailStr] = None
    client_address: Optional[str] = Field(None, min_length=1)

    @field_validator("client_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

class SettingsUpdate(BaseModel):
    site_name: Optional[str] = None
    logo_url: Optional[str] = None
    banner_image: Optional[str] = None
    banner_title: Optional[str] = None
    banner_subtitle: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_whatsapp: Optional[str] = None
    contact_email: Optional[str] = None
    contact_address: Optional[str] = None
    facebook_url: Optional[str] = None
    instagram_url: Optional[str] = None
    delivery_fee: Optional[float] = Field(None, ge=0)
    free_delivery_threshold: Optional[float] = Field(None, ge=0)
    about_text: Optional[str] = None
    cgv_text: Optional[str] = None
    shipping_policy: Optional[str] = None
    return_policy: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None


# Helpers
def query_criteria(request: Request) -> Dict[str, Any]:
    return dict(request.query_params)


def patch_from(body: BaseModel, schema) -> Dict[str, Any]:
    """Fields the client sent; null is kept only where ``schema`` defaults to None."""
    clearable = {name for name, f in schema.model_fields.items() if not f.is_required() and f.default is None}
    patch = {
        k: v for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in clearable
    }
    if not patch:
        raise HTTPException(status_code=400, detail=NO_FIELDS)
    return patch


def fetch_or_404(store: BaseStore, collection: str, record_id: str, detail: str) -> Dict[str, Any]:
    record = store.find_by_id(collection, record_id)
    if not record:
        raise HTTPException(status_code=404, detail=detail)
    return record


def stamp(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc.update({"id": new_id(), "created_date": now_iso()})
    return doc


# Health
@app.get("/")
def root():
    return {"message": "Beauté Store API running"}

@app.get("/api/health")
def health():
    return {"status": "ok", "timestamp": now_iso()}


# Settings
@app.get("/api/settings")
def list_settings(request: Request, store: BaseStore = Depends(get_store)):
    current = SettingsSlot(store).get()
    records = [normalize_settings(current)] if current else []
    return select(records, query_criteria(request), SETTINGS_QUERY)

@app.post("/api/settings", status_code=201)
def replace_settings(body: SiteSettings, store: BaseStore = Depends(get_store)):
    doc = stamp(body.model_dump())
    SettingsSlot(store).replace(doc)
    logger.info("Site settings replaced (%s)", doc["id"])
    return normalize_settings(doc)

@app.put("/api/settings/{settings_id}")
def update_settings(settings_id: str, body: SettingsUpdate, store: BaseStore = Depends(get_store)):
    patch = patch_from(body, SiteSettings)
    updated = SettingsSlot(store).patch(settings_id, patch)
    if not updated:
        raise HTTPException(status_code=404, detail="Paramètres introuvables")
    return normalize_settings(updated)


# Categories
@app.get("/api/categories")
def list_categories(request: Request, store: BaseStore = Depends(get_store)):
    categories = [normalize_category(c) for c in store.get("categories")]
    return select(categories, query_criteria(request), CATEGORY_QUERY)

@app.post("/api/categories", status_code=201)
def create_category(body: Category, store: BaseStore = Depends(get_store)):
    doc = stamp(body.model_dump())
    store.insert("categories", doc)
    logger.info("Category %s created", doc["id"])
    return normalize_category(fetch_or_404(store, "categories", doc["id"], "Catégorie introuvable"))

@app.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, store: BaseStore = Depends(get_store)):
    patch = patch_from(body, Category)
    updated = store.update_by_id("categories", category_id, patch)
    if not updated:
        raise HTTPException(status_code=404, detail="Catégorie introuvable")
    return normalize_category(updated)

@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: str, store: BaseStore = Depends(get_store)):
    if not store.delete_by_id("categories", category_id):
        raise HTTPException(status_code=404, detail="Catégorie introuvable")
    logger.info("Category %s deleted", category_id)
    return Response(status_code=204)


# Products
@app.get("/api/products")
def list_products(request: Request, store: BaseStore = Depends(get_store)):
    products = [normalize_product(p) for p in store.get("products")]
    return select(products, query_criteria(request), PRODUCT_QUERY)

@app.get("/api/products/{product_id}")
def get_product(product_id: str, store: BaseStore = Depends(get_store)):
    return normalize_product(fetch_or_404(store, "products", product_id, "Produit introuvable"))

@app.post("/api/products", status_code=201)
def create_product(body: Product, store: BaseStore = Depends(get_store)):
    doc = stamp(body.model_dump())
    doc["views"] = 0
    store.insert("products", doc)
    logger.info("Product %s created", doc["id"])
    return normalize_product(fetch_or_404(store, "products", doc["id"], "Produit introuvable"))

@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, store: BaseStore = Depends(get_store)):
    patch = patch_from(body, Product)
    updated = store.update_by_id("products", product_id, patch)
    if not updated:
        raise HTTPException(status_code=404, detail="Produit introuvable")
    return normalize_product(updated)

@app.post("/api/products/{product_id}/views")
def record_product_view(product_id: str, store: BaseStore = Depends(get_store)):
    product = normalize_product(fetch_or_404(store, "products", product_id, "Produit introuvable"))
    updated = store.update_by_id("products", product_id, {"views": product["views"] + 1})
    if not updated:
        raise HTTPException(status_code=404, detail="Produit introuvable")
    return normalize_product(updated)

@app.delete("/api/products/{product_id}", status_code=204)
def delete_product(product_id: str, store: BaseStore = Depends(get_store)):
    if not store.delete_by_id("products", product_id):
        raise HTTPException(status_code=404, detail="Produit introuvable")
    logger.info("Product %s deleted", product_id)
    return Response(status_code=204)


# Orders
@app.get("/api/orders")
def list_orders(request: Request, store: BaseStore = Depends(get_store)):
    orders = [normalize_order(o) for o in store.get("orders")]
    return select(orders, query_criteria(request), ORDER_QUERY)

@app.get("/api/orders/{order_id}")
def get_order(order_id: str, store: BaseStore = Depends(get_store)):
    return normalize_order(fetch_or_404(store, "orders", order_id, "Commande introuvable"))

@app.post("/api/orders", status_code=201)
def create_order(body: Order, store: BaseStore = Depends(get_store)):
    doc = body.model_dump()
    items = doc["items"]
    for item in items:
        item["total"] = line_total(item)

    delivery_fee = doc.get("delivery_fee")
    if delivery_fee is None:
        current = SettingsSlot(store).get()
        delivery_fee = normalize_settings(current)["delivery_fee"] if current else 0
    totals = compute_totals(items, delivery_fee)
    sent = {k: doc.get(k) for k in ("subtotal", "total") if doc.get(k) is not None}
    if any(sent[k] != totals[k] for k in sent):
        logger.warning("Order totals %s differ from recomputed %s; using recomputed", sent, totals)

    doc.update(totals)
    doc["delivery_fee"] = delivery_fee
    if not doc.get("order_number"):
        doc["order_number"] = f"CMD-{int(time.time() * 1000)}"
    stamp(doc)
    store.insert("orders", doc)
    logger.info("Order %s (%s) created, total %s", doc["id"], doc["order_number"], doc["total"])
    return normalize_order(fetch_or_404(store, "orders", doc["id"], "Commande introuvable"))

@app.put("/api/orders/{order_id}")
def update_order(order_id: str, body: OrderUpdate, store: BaseStore = Depends(get_store)):
    patch = patch_from(body, Order)
    updated = store.update_by_id("orders", order_id, patch)
    if not updated:
        raise HTTPException(status_code=404, detail="Commande introuvable")
    return normalize_order(updated)


# Admin
@app.get("/api/admin/stats")
def admin_stats(store: BaseStore = Depends(get_store)):
    orders = [normalize_order(o) for o in store.get("orders")]
    products = [normalize_product(p) for p in store.get("products")]
    return {
        "orders": len(orders),
        "products": len(products),
        "pending_orders": sum(1 for o in orders if o["status"] == "pending"),
        "orders_by_status": {s: sum(1 for o in orders if o["status"] == s) for s in ORDER_STATUSES},
        "low_stock_products": sum(1 for p in products if 0 < p["stock"] <= LOW_STOCK_THRESHOLD),
        "out_of_stock_products": sum(1 for p in products if p["stock"] == 0),
        "total_revenue": sum(o["total"] for o in orders if o["status"] != "cancelled"),
    }


# Auth
@app.get("/api/auth/me")
def get_me(store: BaseStore = Depends(get_store)):
    users = store.get("users")
    if not users:
        raise HTTPException(status_code=404, detail="Utilisateur introuvable")
    return normalize_user(users[0])

@app.post("/api/auth/logout")
def logout():
    return {"success": True}


# Integrations
@app.post("/api/integrations/email")
def send_email(payload: Dict[str, Any] = Body(...)):
    entry = {**payload, "created_date": now_iso()}
    with _messages_lock:
        with open(MESSAGES_LOG, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    logger.info("Message logged to %s", MESSAGES_LOG)
    return {"success": True}


# Uploads
@app.post("/api/uploads", status_code=201)
def upload_file(request: Request, file: Optional[UploadFile] = File(None)):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="Fichier manquant")
    original = Path(file.filename).name
    safe_name = re.sub(r"\s+", "-", original)
    filename = f"{int(time.time() * 1000)}-{safe_name}"
    target = Path(UPLOAD_DIR) / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        shutil.copyfileobj(file.file, out)
    logger.info("Stored upload %s", filename)
    return {"file_url": f"{str(request.base_url).rstrip('/')}/uploads/{filename}"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 4000))
    uvicorn.run(app, host="0.0.0.0", port=port)
