from __future__ import annotations

import copy
import os
import tempfile
from datetime import date

import pytest

# app.py loads its config at import time
os.environ.setdefault("SHOPIFY_STORE_URL", "test-shop.myshopify.com")
os.environ.setdefault("SHOPIFY_ACCESS_TOKEN", "shpat_test")
os.environ.setdefault("API_KEY", "secret-key")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="product-cycle-"))
os.environ.setdefault("LOG_TO_STDOUT", "0")
os.environ.setdefault("MUTATION_SLEEP_SEC", "0")

from cycle_config import load_config  # noqa: E402
from shopify_catalog import CatalogItem  # noqa: E402

BASE_ENV = {
    "SHOPIFY_STORE_URL": "test-shop.myshopify.com",
    "SHOPIFY_ACCESS_TOKEN": "shpat_test",
    "API_KEY": "secret-key",
    "MUTATION_SLEEP_SEC": "0",
    "LOG_TO_STDOUT": "0",
}


def make_config(**overrides):
    env = dict(BASE_ENV)
    env.update({k: str(v) for k, v in overrides.items()})
    return load_config(env)


def make_item(pid: int, ref: date | None, stored: str | None = None, tags=None, title: str = "") -> CatalogItem:
    return CatalogItem(
        id=f"gid://shopify/Product/{pid}",
        title=title or f"Product {pid}",
        reference_date=ref,
        stored_phase=stored,
        tags=list(tags or []),
        inventory_item_ids=[f"gid://shopify/InventoryItem/{pid}01"],
    )


class FakeCatalog:
    """In-memory catalog recording every write."""

    def __init__(self, items, fail_status_for=(), fail_fetch=False):
        self.items = {i.id: i for i in items}
        self.fail_status_for = set(fail_status_for)
        self.fail_fetch = fail_fetch
        self.writes = []
        self.shop_metafields = {}

    def fetch_catalog_snapshot(self):
        if self.fail_fetch:
            raise RuntimeError("GraphQL HTTP 401: invalid token")
        return [copy.deepcopy(i) for i in self.items.values()]

    def update_item_status_and_tags(self, item_id, status, tags, listed):
        if item_id in self.fail_status_for:
            raise RuntimeError("REST PUT 422")
        self.writes.append(("status", item_id, status, list(tags), listed))
        self.items[item_id].tags = list(tags)
        self.items[item_id].listed = listed

    def set_inventory_to_zero(self, inventory_item_ids):
        self.writes.append(("inventory", list(inventory_item_ids)))
        return len(inventory_item_ids)

    def upsert_item_metafield(self, item_id, key, value, mf_type="single_line_text_field"):
        self.writes.append(("metafield", item_id, key, value, mf_type))
        self.items[item_id].stored_phase = value

    def upsert_shop_metafield(self, key, value, mf_type="product_reference"):
        self.writes.append(("shop_metafield", key, value, mf_type))
        self.shop_metafields[key] = value

    def delete_shop_metafield(self, key):
        self.writes.append(("shop_metafield_delete", key))
        self.shop_metafields.pop(key, None)

    def item_writes(self):
        return [w for w in self.writes if w[0] in ("status", "inventory", "metafield")]


@pytest.fixture
def config():
    return make_config()
