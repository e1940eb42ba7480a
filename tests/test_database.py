import json

import pytest

from database import COLLECTIONS, JsonFileStore, SettingsSlot, SqlStore
from normalizers import normalize_category, normalize_product


def product(record_id, **fields):
    return {"id": record_id, "name": "Widget", "price": 1000, "images": [], **fields}


def test_insert_then_get(any_store):
    any_store.insert("products", product("p1"))
    assert [p["id"] for p in any_store.get("products")] == ["p1"]
    assert any_store.find_by_id("products", "p1")["name"] == "Widget"
    assert any_store.find_by_id("products", "nope") is None


def test_update_is_a_partial_patch(any_store):
    any_store.insert("products", product("p1", stock=4))
    updated = any_store.update_by_id("products", "p1", {"price": 1500})
    assert updated["price"] == 1500
    assert updated["stock"] == 4
    assert updated["name"] == "Widget"


def test_update_unknown_id_returns_none(any_store):
    assert any_store.update_by_id("products", "ghost", {"price": 1}) is None


def test_delete(any_store):
    any_store.insert("categories", {"id": "c1", "name": "Coiffure", "order": 1})
    assert any_store.delete_by_id("categories", "c1") is True
    assert any_store.delete_by_id("categories", "c1") is False
    assert any_store.get("categories") == []


def test_replace_keeps_a_single_record(any_store):
    any_store.insert("siteSettings", {"id": "s1", "site_name": "A"})
    any_store.replace("siteSettings", {"id": "s2", "site_name": "B"})
    records = any_store.get("siteSettings")
    assert len(records) == 1
    assert records[0]["id"] == "s2"
    assert records[0]["site_name"] == "B"


def test_nested_values_survive_round_trip(any_store):
    any_store.insert("products", product("p1", images=["a.png", "b.png"], is_new=True))
    any_store.insert("categories", {"id": "c1", "name": "Coiffure", "order": 7})
    assert normalize_product(any_store.find_by_id("products", "p1"))["images"] == ["a.png", "b.png"]
    assert normalize_product(any_store.find_by_id("products", "p1"))["is_new"] is True
    assert normalize_category(any_store.find_by_id("categories", "c1"))["order"] == 7


def test_sql_store_keeps_json_text_and_order_index(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'shop.db'}", seed=False)
    store.insert("products", product("p1", images=["a.png"], unknown_column="dropped"))
    store.insert("categories", {"id": "c1", "name": "Coiffure", "order": 2})
    row = store.find_by_id("products", "p1")
    assert row["images"] == '["a.png"]'
    assert "unknown_column" not in row
    assert store.find_by_id("categories", "c1")["order_index"] == 2


def test_sql_store_seeds_when_empty(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'shop.db'}")
    assert len(store.get("products")) == 4
    # a second open finds data and does not seed again
    again = SqlStore(f"sqlite:///{tmp_path / 'shop.db'}")
    assert len(again.get("products")) == 4


def test_json_store_creates_seeded_document(tmp_path):
    path = tmp_path / "db.json"
    store = JsonFileStore(path)
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert set(COLLECTIONS) <= set(on_disk)
    assert len(store.get("products")) == 4
    assert store.get("users")[0]["role"] == "admin"


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "db.json"
    JsonFileStore(path, seed=False).insert("orders", {"id": "o1", "total": 10})
    assert JsonFileStore(path, seed=False).find_by_id("orders", "o1") == {"id": "o1", "total": 10}


def test_json_store_returns_copies(store):
    store.insert("products", product("p1"))
    store.get("products")[0]["name"] = "mutated"
    assert store.find_by_id("products", "p1")["name"] == "Widget"


def test_settings_slot(store):
    slot = SettingsSlot(store)
    assert slot.get() is None
    slot.replace({"id": "s1", "delivery_fee": 1000})
    slot.replace({"id": "s2", "delivery_fee": 2000})
    assert slot.get()["id"] == "s2"
    assert slot.patch("s1", {"delivery_fee": 5}) is None
    assert slot.patch("s2", {"delivery_fee": 5})["delivery_fee"] == 5


def test_any_store_lists_in_insertion_order(any_store):
    # ids out of order, creation stamps in order
    for day, record_id in enumerate(("p3", "p1", "p2"), start=1):
        any_store.insert("products", product(record_id, created_date=f"2024-01-0{day}T00:00:00+00:00"))
    assert [p["id"] for p in any_store.get("products")] == ["p3", "p1", "p2"]


def test_sql_store_ties_on_created_date_follow_id(tmp_path):
    store = SqlStore(f"sqlite:///{tmp_path / 'shop.db'}", seed=False)
    stamp = "2024-01-01T00:00:00+00:00"
    for record_id in ("665f00000000000000000003", "665f00000000000000000001", "665f00000000000000000002"):
        store.insert("products", product(record_id, created_date=stamp))
    assert [p["id"][-1] for p in store.get("products")] == ["1", "2", "3"]


def test_records_carry_no_internal_ids(any_store):
    any_store.insert("orders", {"id": "o1", "items": [{"price": 5, "quantity": 1}]})
    assert "_id" not in any_store.find_by_id("orders", "o1")
    assert all("_id" not in o for o in any_store.get("orders"))
    assert "_id" not in any_store.update_by_id("orders", "o1", {"status": "shipped"})


def test_failed_write_leaves_json_store_unchanged(store, monkeypatch):
    store.insert("products", product("p1"))
    store.insert("siteSettings", {"id": "s1"})

    def disk_full(data):
        raise OSError("No space left on device")

    monkeypatch.setattr(store, "_write", disk_full)
    with pytest.raises(OSError):
        store.insert("products", product("p2"))
    with pytest.raises(OSError):
        store.update_by_id("products", "p1", {"name": "Renamed"})
    with pytest.raises(OSError):
        store.delete_by_id("products", "p1")
    with pytest.raises(OSError):
        store.replace("siteSettings", {"id": "s2"})

    assert [p["id"] for p in store.get("products")] == ["p1"]
    assert store.find_by_id("products", "p1")["name"] == "Widget"
    assert store.get("siteSettings") == [{"id": "s1"}]
