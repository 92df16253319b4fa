#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Shopify Admin API access for the product-cycle job.

Everything the cycle needs from the store goes through ShopifyCatalog:
- fetch_catalog_snapshot()          : all products, with tags, publish state,
                                      variant inventory items and the reference /
                                      phase metafields in the same paginated query
- update_item_status_and_tags()     : status, tags and online-store listing (REST)
- set_inventory_to_zero()           : available = 0 at one location (REST)
- upsert_item_metafield()           : metafieldsSet on a product
- upsert_shop_metafield()           : metafieldsSet on the shop
- delete_shop_metafield()           : metafieldsDelete on the shop

GraphQL and REST calls retry on 429, 5xx, THROTTLED and network errors with
jittered exponential backoff. Anything else raises ShopifyError.
"""

from __future__ import annotations
import random
import time
import typing as t
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import requests

from clock import parse_calendar_date


class ShopifyError(RuntimeError):
    pass


class ShopifyUserError(ShopifyError):
    def __init__(self, mutation: str, errors: list[dict]):
        self.mutation = mutation
        self.errors = errors
        super().__init__(f"{mutation} userErrors: {errors}")


@dataclass
class CatalogItem:
    id: str
    title: str
    reference_date: t.Optional[date]
    stored_phase: t.Optional[str]
    tags: list[str] = field(default_factory=list)
    listed: bool = False
    status: str = ""
    inventory_item_ids: list[str] = field(default_factory=list)
    reference_raw: t.Optional[str] = None


# ----------------------------
# GraphQL documents
# ----------------------------
Q_PRODUCTS_PAGE = """
query ($cursor: String, $ns: String!, $refKey: String!, $phaseKey: String!) {
  products(first: 100, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    nodes {
      id
      title
      status
      tags
      publishedAt
      reference: metafield(namespace: $ns, key: $refKey) { id value type }
      salePhase: metafield(namespace: $ns, key: $phaseKey) { id value type }
      variants(first: 100) {
        nodes {
          id
          inventoryItem { id }
        }
      }
    }
  }
}
"""

Q_SHOP_ID = "query { shop { id } }"

M_METAFIELDS_SET = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id key namespace value }
    userErrors { field message code }
  }
}
"""

M_METAFIELDS_DELETE = """
mutation metafieldsDelete($metafields: [MetafieldIdentifierInput!]!) {
  metafieldsDelete(metafields: $metafields) {
    deletedMetafields { key namespace ownerId }
    userErrors { field message }
  }
}
"""


def _backoff_delay(attempt: int, base: float = 0.4, mx: float = 10.0) -> float:
    return min(mx, base * (2 ** (attempt - 1))) + random.uniform(0, 0.25)


def gid_num(gid: str) -> str:
    return (gid or "").split("/")[-1]


def build_item(node: dict) -> CatalogItem:
    ref_raw = (((node.get("reference") or {}).get("value")) or "").strip() or None
    ref_date = None
    if ref_raw:
        try:
            ref_date = parse_calendar_date(ref_raw)
        except ValueError:
            ref_date = None
    stored = (((node.get("salePhase") or {}).get("value")) or "").strip() or None
    variants = ((node.get("variants") or {}).get("nodes") or [])
    inv_ids = [((v.get("inventoryItem") or {}).get("id")) for v in variants]
    return CatalogItem(
        id=node["id"],
        title=node.get("title") or "",
        reference_date=ref_date,
        stored_phase=stored,
        tags=list(node.get("tags") or []),
        listed=bool(node.get("publishedAt")),
        status=(node.get("status") or "").upper(),
        inventory_item_ids=[i for i in inv_ids if i],
        reference_raw=ref_raw,
    )


class ShopifyCatalog:
    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        namespace: str = "custom",
        reference_key: str = "data_referencia",
        phase_key: str = "sale_phase",
        location_id: t.Optional[str] = None,
        request_timeout_sec: int = 30,
        page_sleep_sec: float = 0.4,
        max_attempts: int = 6,
        session: t.Optional[requests.Session] = None,
    ):
        self.shop_domain = shop_domain
        self.api_version = api_version
        self.namespace = namespace
        self.reference_key = reference_key
        self.phase_key = phase_key
        self.location_id = location_id
        self.timeout = request_timeout_sec
        self.page_sleep_sec = page_sleep_sec
        self.max_attempts = max_attempts
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self._shop_gid: t.Optional[str] = None

    @classmethod
    def from_config(cls, cfg) -> "ShopifyCatalog":
        return cls(
            shop_domain=cfg.shop_domain,
            access_token=cfg.access_token,
            api_version=cfg.api_version,
            namespace=cfg.mf_namespace,
            reference_key=cfg.mf_reference_key,
            phase_key=cfg.mf_phase_key,
            location_id=cfg.location_id,
            request_timeout_sec=cfg.request_timeout_sec,
        )

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    # ----------------------------
    # Transport
    # ----------------------------
    def gql(self, query: str, variables: dict | None = None) -> dict:
        url = f"{self.base_url}/graphql.json"
        payload = {"query": query, "variables": variables or {}}
        last_err = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                r = self.session.post(url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                last_err = e
                time.sleep(_backoff_delay(attempt))
                continue
            if r.status_code == 429 or r.status_code >= 500:
                last_err = ShopifyError(f"GraphQL HTTP {r.status_code}")
                time.sleep(_backoff_delay(attempt))
                continue
            if r.status_code != 200:
                raise ShopifyError(f"GraphQL HTTP {r.status_code}: {r.text[:500]}")
            data = r.json()
            if data.get("errors"):
                if any((e.get("extensions") or {}).get("code", "").upper() == "THROTTLED" for e in data["errors"]):
                    last_err = ShopifyError("GraphQL THROTTLED")
                    time.sleep(_backoff_delay(attempt))
                    continue
                raise ShopifyError(f"GQL errors: {data['errors']}")
            return data["data"]
        raise ShopifyError(f"GraphQL failed after {self.max_attempts} attempts: {last_err}")

    def rest(self, method: str, path: str, payload: dict | None = None) -> dict:
        url = f"{self.base_url}/{path}"
        last_err = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                r = self.session.request(method, url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                last_err = e
                time.sleep(_backoff_delay(attempt, base=0.3, mx=8.0))
                continue
            if r.status_code == 429:
                time.sleep(float(r.headers.get("Retry-After", "1")))
                last_err = ShopifyError(f"REST {method} {path} 429")
                continue
            if r.status_code >= 500:
                last_err = ShopifyError(f"REST {method} {path} {r.status_code}")
                time.sleep(_backoff_delay(attempt, base=0.3, mx=8.0))
                continue
            if r.status_code >= 400:
                raise ShopifyError(f"REST {method} {path} {r.status_code}: {r.text[:500]}")
            return r.json() if r.content else {}
        raise ShopifyError(f"REST {method} {path} failed after {self.max_attempts} attempts: {last_err}")

    # ----------------------------
    # Reads
    # ----------------------------
    def fetch_catalog_snapshot(self) -> list[CatalogItem]:
        items: list[CatalogItem] = []
        cursor = None
        while True:
            data = self.gql(Q_PRODUCTS_PAGE, {
                "cursor": cursor,
                "ns": self.namespace,
                "refKey": self.reference_key,
                "phaseKey": self.phase_key,
            })
            page = data.get("products")
            if page is None:
                raise ShopifyError("products query returned no data")
            items.extend(build_item(n) for n in (page.get("nodes") or []))
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage"):
                break
            cursor = info.get("endCursor")
            time.sleep(self.page_sleep_sec)
        return items

    def shop_gid(self) -> str:
        if self._shop_gid is None:
            data = self.gql(Q_SHOP_ID)
            self._shop_gid = ((data.get("shop") or {}).get("id")) or ""
            if not self._shop_gid:
                raise ShopifyError("could not resolve shop id")
        return self._shop_gid

    def resolve_location_id(self) -> str:
        if not self.location_id:
            data = self.rest("GET", "locations.json")
            locations = data.get("locations") or []
            if not locations:
                raise ShopifyError("no inventory location found")
            self.location_id = str(locations[0]["id"])
        return gid_num(str(self.location_id))

    # ----------------------------
    # Writes
    # ----------------------------
    def update_item_status_and_tags(self, item_id: str, status: str, tags: list[str], listed: bool) -> None:
        product = {
            "id": int(gid_num(item_id)),
            "status": status,
            "tags": ", ".join(tags),
            "published_scope": "web",
            "published_at": datetime.now(timezone.utc).isoformat() if listed else None,
        }
        self.rest("PUT", f"products/{gid_num(item_id)}.json", {"product": product})

    def set_inventory_to_zero(self, inventory_item_ids: list[str]) -> int:
        if not inventory_item_ids:
            return 0
        location_id = int(self.resolve_location_id())
        for inv_id in inventory_item_ids:
            self.rest("POST", "inventory_levels/set.json", {
                "location_id": location_id,
                "inventory_item_id": int(gid_num(inv_id)),
                "available": 0,
            })
        return len(inventory_item_ids)

    def _metafields_set(self, owner_id: str, key: str, value: str, mf_type: str) -> None:
        metas = [{
            "ownerId": owner_id,
            "namespace": self.namespace,
            "key": key,
            "type": mf_type,
            "value": value,
        }]
        data = self.gql(M_METAFIELDS_SET, {"metafields": metas})
        errs = ((data.get("metafieldsSet") or {}).get("userErrors") or [])
        if errs:
            raise ShopifyUserError("metafieldsSet", errs)

    def upsert_item_metafield(self, item_id: str, key: str, value: str, mf_type: str = "single_line_text_field") -> None:
        self._metafields_set(item_id, key, value, mf_type)

    def upsert_shop_metafield(self, key: str, value: str, mf_type: str = "product_reference") -> None:
        self._metafields_set(self.shop_gid(), key, value, mf_type)

    def delete_shop_metafield(self, key: str) -> None:
        data = self.gql(M_METAFIELDS_DELETE, {"metafields": [
            {"ownerId": self.shop_gid(), "namespace": self.namespace, "key": key},
        ]})
        errs = ((data.get("metafieldsDelete") or {}).get("userErrors") or [])
        if errs:
            raise ShopifyUserError("metafieldsDelete", errs)
