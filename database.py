"""
Persistence backends.

Three interchangeable stores share one read/write contract over the
collections in ``COLLECTIONS``:

- ``JsonFileStore``: a single JSON document rewritten whole on every change
- ``SqlStore``: one table per collection through SQLAlchemy Core
- ``MongoStore``: one MongoDB collection per resource

Records are plain dicts keyed by a string ``id``. Stores return raw records;
shaping them is the job of ``normalizers``.
"""
import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from sqlalchemy import (
    Boolean, Column, Float, Integer, MetaData, String, Table, Text,
    create_engine, delete, insert, select, update,
)

logger = logging.getLogger(__name__)

COLLECTIONS = ("siteSettings", "categories", "products", "orders", "users")


def new_id() -> str:
    return str(ObjectId())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_data() -> Dict[str, List[Dict[str, Any]]]:
    stamp = now_iso()
    return {
        "siteSettings": [
            {
                "id": "settings-1",
                "site_name": "Beauté Store",
                "banner_title": "Équipements professionnels de beauté",
                "banner_subtitle": "Découvrez une sélection premium pour votre salon",
                "contact_phone": "+225 07 00 00 00 00",
                "contact_email": "contact@beautestore.ci",
                "contact_address": "Abidjan, Côte d'Ivoire",
                "facebook_url": "https://facebook.com",
                "instagram_url": "https://instagram.com",
                "delivery_fee": 2000,
                "free_delivery_threshold": 100000,
                "about_text": "Beauté Store vous accompagne dans le développement de votre salon.",
                "cgv_text": "Conditions générales de vente par défaut.",
                "shipping_policy": "Livraison en 2 à 5 jours ouvrés.",
                "return_policy": "Retours acceptés sous 7 jours.",
                "primary_color": "#E8B4B8",
                "secondary_color": "#D4AF37",
                "created_date": stamp,
            }
        ],
        "categories": [
            {"id": "cat-1", "name": "Coiffure", "order": 1, "created_date": stamp},
            {"id": "cat-2", "name": "Esthétique", "order": 2, "created_date": stamp},
            {"id": "cat-3", "name": "Équipement", "order": 3, "created_date": stamp},
        ],
        "products": [
            {
                "id": "prod-1", "name": "Sèche-cheveux Pro Ionic",
                "short_description": "Technologie ionique pour un séchage rapide",
                "description": "Un sèche-cheveux professionnel léger avec 3 niveaux de température.",
                "price": 45000, "original_price": 55000, "category_id": "cat-1",
                "images": ["https://images.unsplash.com/photo-1507679799987-c73779587ccf?w=800"],
                "is_new": True, "is_promo": True, "is_featured": True, "stock": 12, "is_available": True,
                "technical_details": "Puissance 2200W, câble 2m", "views": 120, "created_date": stamp,
            },
            {
                "id": "prod-2", "name": "Fauteuil de coiffure Deluxe",
                "short_description": "Confort ultime pour vos clientes",
                "description": "Fauteuil réglable en hauteur avec revêtement anti-tâche.",
                "price": 180000, "original_price": 0, "category_id": "cat-3",
                "images": ["https://images.unsplash.com/photo-1507679622673-989605832e3d?w=800"],
                "is_new": False, "is_promo": False, "is_featured": True, "stock": 5, "is_available": True,
                "technical_details": "Structure acier, rotation 360°", "views": 80, "created_date": stamp,
            },
            {
                "id": "prod-3", "name": "Kit maquillage studio",
                "short_description": "Palette complète pour artistes",
                "description": "Comprend 48 teintes professionnelles avec pinceaux.",
                "price": 65000, "original_price": 75000, "category_id": "cat-2",
                "images": ["https://images.unsplash.com/photo-1505826759031-1f0a4b80a0b7?w=800"],
                "is_new": False, "is_promo": True, "is_featured": False, "stock": 20, "is_available": True,
                "technical_details": "Pigments haute tenue", "views": 45, "created_date": stamp,
            },
            {
                "id": "prod-4", "name": "Lave-tête ergonomique",
                "short_description": "Conçu pour le confort des clients",
                "description": "Bac inclinable avec repose-cou en silicone.",
                "price": 220000, "original_price": 0, "category_id": "cat-3",
                "images": ["https://images.unsplash.com/photo-1501386761578-eac5c94b800a?w=800"],
                "is_new": False, "is_promo": False, "is_featured": True, "stock": 3, "is_available": True,
                "technical_details": "Raccordement standard, structure aluminium", "views": 32, "created_date": stamp,
            },
        ],
        "orders": [
            {
                "id": "order-1", "order_number": "CMD-123456",
                "client_name": "Awa Traoré", "client_phone": "+225 05 00 00 00 00",
                "client_email": "awa@example.com", "client_address": "Cocody, Abidjan",
                "items": [
                    {
                        "product_id": "prod-1", "product_name": "Sèche-cheveux Pro Ionic",
                        "product_image": "https://images.unsplash.com/photo-1507679799987-c73779587ccf?w=800",
                        "quantity": 1, "price": 45000, "total": 45000,
                    }
                ],
                "subtotal": 45000, "delivery_fee": 2000, "total": 47000,
                "notes": "", "status": "pending", "created_date": stamp,
            }
        ],
        "users": [
            {"id": "user-1", "full_name": "Admin Beauté Store", "email": "admin@beautestore.ci", "role": "admin"}
        ],
    }


class BaseStore:
    """Read/write contract shared by every backend."""

    name = "base"

    def get(self, collection: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update_by_id(self, collection: str, record_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete_by_id(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError

    def replace(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Drop every record of ``collection`` and store ``record`` alone."""
        raise NotImplementedError

    def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self.get(collection):
            if str(record.get("id")) == record_id:
                return record
        return None

    def is_empty(self) -> bool:
        return not any(self.get(name) for name in COLLECTIONS)

    def load_defaults(self):
        for name, records in default_data().items():
            for record in records:
                self.insert(name, record)
        logger.info("Seeded %s store with demo data", self.name)


class JsonFileStore(BaseStore):
    """Whole-document JSON store.

    The document lives in memory and every mutation rewrites the file under
    one lock, so a single process never loses an update to itself.
    """

    name = "json"

    def __init__(self, path, seed: bool = True):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._data = self._load(seed)

    def _load(self, seed: bool) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            data = default_data() if seed else {name: [] for name in COLLECTIONS}
            self._write(data)
            return data
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        for name in COLLECTIONS:
            data.setdefault(name, [])
        return data

    def _write(self, data):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)

    def _items(self, collection: str) -> List[Dict[str, Any]]:
        if collection not in COLLECTIONS:
            raise KeyError(collection)
        return self._data.setdefault(collection, [])

    def get(self, collection):
        with self._lock:
            return copy.deepcopy(self._items(collection))

    def _commit(self, collection: str, items: List[Dict[str, Any]]):
        # write the new document first; memory only changes once it is on disk
        data = {**self._data, collection: items}
        self._write(data)
        self._data = data

    def insert(self, collection, record):
        with self._lock:
            self._commit(collection, self._items(collection) + [copy.deepcopy(record)])
        return record

    def update_by_id(self, collection, record_id, patch):
        with self._lock:
            items = list(self._items(collection))
            for index, item in enumerate(items):
                if str(item.get("id")) == record_id:
                    items[index] = {**item, **copy.deepcopy(patch)}
                    self._commit(collection, items)
                    return copy.deepcopy(items[index])
        return None

    def delete_by_id(self, collection, record_id):
        with self._lock:
            items = self._items(collection)
            kept = [item for item in items if str(item.get("id")) != record_id]
            if len(kept) == len(items):
                return False
            self._commit(collection, kept)
        return True

    def replace(self, collection, record):
        with self._lock:
            self._items(collection)
            self._commit(collection, [copy.deepcopy(record)])
        return record


metadata = MetaData()

TABLES = {
    "siteSettings": Table(
        "site_settings", metadata,
        Column("id", String(64), primary_key=True),
        Column("site_name", String(255)),
        Column("logo_url", Text),
        Column("banner_image", Text),
        Column("banner_title", String(255)),
        Column("banner_subtitle", String(255)),
        Column("contact_phone", String(64)),
        Column("contact_whatsapp", String(64)),
        Column("contact_email", String(255)),
        Column("contact_address", String(255)),
        Column("facebook_url", Text),
        Column("instagram_url", Text),
        Column("delivery_fee", Float, default=0),
        Column("free_delivery_threshold", Float, default=0),
        Column("about_text", Text),
        Column("cgv_text", Text),
        Column("shipping_policy", Text),
        Column("return_policy", Text),
        Column("primary_color", String(32)),
        Column("secondary_color", String(32)),
        Column("created_date", String(40)),
    ),
    "categories": Table(
        "categories", metadata,
        Column("id", String(64), primary_key=True),
        Column("name", String(255), nullable=False),
        Column("description", Text),
        Column("image_url", Text),
        Column("order_index", Integer, default=0),
        Column("created_date", String(40)),
    ),
    "products": Table(
        "products", metadata,
        Column("id", String(64), primary_key=True),
        Column("name", String(255), nullable=False),
        Column("short_description", Text),
        Column("description", Text),
        Column("price", Float, default=0),
        Column("original_price", Float, default=0),
        Column("category_id", String(64)),
        Column("images", Text),
        Column("is_new", Boolean, default=False),
        Column("is_promo", Boolean, default=False),
        Column("is_featured", Boolean, default=False),
        Column("is_available", Boolean, default=True),
        Column("stock", Integer, default=0),
        Column("technical_details", Text),
        Column("views", Integer, default=0),
        Column("created_date", String(40)),
    ),
    "orders": Table(
        "orders", metadata,
        Column("id", String(64), primary_key=True),
        Column("order_number", String(64)),
        Column("client_name", String(255)),
        Column("client_phone", String(64)),
        Column("client_email", String(255)),
        Column("client_address", Text),
        Column("items", Text),
        Column("subtotal", Float, default=0),
        Column("delivery_fee", Float, default=0),
        Column("total", Float, default=0),
        Column("status", String(32), default="pending"),
        Column("notes", Text),
        Column("admin_notes", Text),
        Column("created_date", String(40)),
    ),
    "users": Table(
        "users", metadata,
        Column("id", String(64), primary_key=True),
        Column("full_name", String(255)),
        Column("email", String(255)),
        Column("role", String(32)),
    ),
}

COLUMN_ALIASES = {"order": "order_index"}


class SqlStore(BaseStore):
    """Relational store; ``images``/``items`` are JSON text columns."""

    name = "sql"

    def __init__(self, url: str, pool_size: int = 10, seed: bool = True):
        if url.startswith("sqlite"):
            self.engine = create_engine(url, connect_args={"check_same_thread": False})
        else:
            self.engine = create_engine(url, pool_size=pool_size, pool_pre_ping=True)
        metadata.create_all(self.engine)
        if seed and self.is_empty():
            self.load_defaults()

    def _table(self, collection: str) -> Table:
        return TABLES[collection]

    def _encode(self, table: Table, record: Dict[str, Any]) -> Dict[str, Any]:
        row = {}
        for key, value in record.items():
            key = COLUMN_ALIASES.get(key, key)
            if key not in table.c:
                continue
            if isinstance(value, (list, dict)):
                value = json.dumps(value, ensure_ascii=False)
            row[key] = value
        return row

    def get(self, collection):
        table = self._table(collection)
        # insertion order: creation stamp, then the time-ordered ObjectId
        ordering = [table.c.created_date, table.c.id] if "created_date" in table.c else [table.c.id]
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(select(table).order_by(*ordering)).mappings()]

    def find_by_id(self, collection, record_id):
        table = self._table(collection)
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.id == record_id)).mappings().first()
        return dict(row) if row else None

    def insert(self, collection, record):
        table = self._table(collection)
        with self.engine.begin() as conn:
            conn.execute(insert(table).values(**self._encode(table, record)))
        return record

    def update_by_id(self, collection, record_id, patch):
        table = self._table(collection)
        row = self._encode(table, patch)
        if row:
            # rowcount is unreliable here (MySQL counts changed rows only), so read back
            with self.engine.begin() as conn:
                conn.execute(update(table).where(table.c.id == record_id).values(**row))
        return self.find_by_id(collection, record_id)

    def delete_by_id(self, collection, record_id):
        table = self._table(collection)
        with self.engine.begin() as conn:
            result = conn.execute(delete(table).where(table.c.id == record_id))
        return result.rowcount > 0

    def replace(self, collection, record):
        table = self._table(collection)
        with self.engine.begin() as conn:
            conn.execute(delete(table))
            conn.execute(insert(table).values(**self._encode(table, record)))
        return record


MONGO_COLLECTIONS = {
    "siteSettings": "site_settings",
    "categories": "categories",
    "products": "products",
    "orders": "orders",
    "users": "users",
}


class MongoStore(BaseStore):
    name = "mongo"

    def __init__(self, db, seed: bool = True):
        self.db = db
        if seed and self.is_empty():
            self.load_defaults()

    def _col(self, collection: str):
        return self.db[MONGO_COLLECTIONS[collection]]

    def get(self, collection):
        return list(self._col(collection).find({}, {"_id": 0}))

    def find_by_id(self, collection, record_id):
        return self._col(collection).find_one({"id": record_id}, {"_id": 0})

    def insert(self, collection, record):
        # insert_one adds _id to the dict it is given
        self._col(collection).insert_one(dict(record))
        return record

    def update_by_id(self, collection, record_id, patch):
        if not patch:
            return self.find_by_id(collection, record_id)
        return self._col(collection).find_one_and_update(
            {"id": record_id},
            {"$set": patch},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    def delete_by_id(self, collection, record_id):
        return self._col(collection).delete_one({"id": record_id}).deleted_count > 0

    def replace(self, collection, record):
        col = self._col(collection)
        col.delete_many({})
        col.insert_one(dict(record))
        return record


class SettingsSlot:
    """The single site-settings record, with upsert-on-create semantics."""

    collection = "siteSettings"

    def __init__(self, store: BaseStore):
        self.store = store

    def get(self) -> Optional[Dict[str, Any]]:
        records = self.store.get(self.collection)
        return records[0] if records else None

    def replace(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self.store.replace(self.collection, record)

    def patch(self, record_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        current = self.get()
        if current is None or str(current.get("id")) != record_id:
            return None
        return self.store.update_by_id(self.collection, record_id, patch)


def create_store() -> BaseStore:
    backend = os.getenv("STORAGE_BACKEND", "json").lower()
    seed = os.getenv("SEED_DATA", "true").lower() in ("1", "true", "yes")
    if backend == "sql":
        url = os.getenv("DATABASE_URL", "sqlite:///data/shop.db")
        if url.startswith("sqlite:///"):
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        store = SqlStore(url, pool_size=int(os.getenv("DB_POOL_SIZE", "10")), seed=seed)
    elif backend == "mongo":
        client = MongoClient(os.getenv("DATABASE_URL", "mongodb://localhost:27017"))
        store = MongoStore(client[os.getenv("DATABASE_NAME", "beaute_store")], seed=seed)
    elif backend == "json":
        store = JsonFileStore(os.getenv("JSON_DB_PATH", "data/db.json"), seed=seed)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
    logger.info("Using %s storage backend", store.name)
    return store


@lru_cache(maxsize=None)
def get_store() -> BaseStore:
    return create_store()
