#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Product cycle — sales phase per product from its reference date.

Phases (by month distance between the product's reference month and today):
- 2+ months ahead              -> upcoming
- next month                   -> preorder from PREORDER_START_DAY, else upcoming
- current month                -> public on days PUBLIC_START_DAY..PUBLIC_END_DAY,
                                  archived after PUBLIC_END_DAY, upcoming before
- any earlier month            -> archived
The reference day-of-month is never looked at.

Per product, when the freshly computed phase differs from custom.sale_phase:
- tags: drop UPCOMING / PRE-ORDER / PUBLIC-SALE / ARCHIVED, add the one for the new phase
- listing: preorder/public listed on the online store, upcoming/archived unlisted
- archived: available inventory set to 0
- custom.sale_phase set to the new phase (written last)
A product whose writes fail half-way still mismatches on the next run and is
retried there; nothing is rolled back.

After the sweep, the public/preorder products ordered by reference date fill the
shop's active / next / following product references.
"""

from __future__ import annotations
import time
import typing as t
from dataclasses import dataclass, field
from datetime import date

from audit import log_row
from clock import BusinessClock, parse_calendar_date
from cycle_config import CycleConfig, PhaseSettings
from shopify_catalog import CatalogItem

PHASE_UPCOMING = "upcoming"
PHASE_PREORDER = "preorder"
PHASE_PUBLIC = "public"
PHASE_ARCHIVED = "archived"
PHASES = (PHASE_UPCOMING, PHASE_PREORDER, PHASE_PUBLIC, PHASE_ARCHIVED)

PHASE_TAGS = {
    PHASE_UPCOMING: "UPCOMING",
    PHASE_PREORDER: "PRE-ORDER",
    PHASE_PUBLIC: "PUBLIC-SALE",
    PHASE_ARCHIVED: "ARCHIVED",
}
MANAGED_TAGS = {tag.upper() for tag in PHASE_TAGS.values()}
LISTED_PHASES = {PHASE_PREORDER, PHASE_PUBLIC}
SLOT_PHASES = {PHASE_PUBLIC, PHASE_PREORDER}
SLOT_NAMES = ("active", "next", "following")

PRODUCT_STATUS = "active"
PHASE_MF_TYPE = "single_line_text_field"
SLOT_MF_TYPE = "product_reference"

PHASE_EMOJI = {
    PHASE_UPCOMING: "🕒",
    PHASE_PREORDER: "📝",
    PHASE_PUBLIC: "🛒",
    PHASE_ARCHIVED: "📦",
}


# ----------------------------
# Classifier
# ----------------------------
def month_diff(reference_date: date, today: date) -> int:
    return (reference_date.year - today.year) * 12 + (reference_date.month - today.month)


def classify(reference_date: date, today: date, settings: PhaseSettings) -> str:
    diff = month_diff(reference_date, today)
    day = today.day
    if diff > 1:
        return PHASE_UPCOMING
    if diff == 1:
        return PHASE_PREORDER if day >= settings.preorder_start_day else PHASE_UPCOMING
    if diff == 0:
        if settings.public_start_day <= day <= settings.public_end_day:
            return PHASE_PUBLIC
        if day > settings.public_end_day:
            return PHASE_ARCHIVED
        return PHASE_UPCOMING
    return PHASE_ARCHIVED


# ----------------------------
# Reconciler
# ----------------------------
def reconcile_item(item: CatalogItem, today: date, settings: PhaseSettings) -> t.Optional[str]:
    """
    Target phase when the item needs a transition, None otherwise.
    Items without a reference date never need one.
    """
    if item.reference_date is None:
        return None
    target = classify(item.reference_date, today, settings)
    stored = (item.stored_phase or "").strip() or None
    return target if target != stored else None


# ----------------------------
# Effector
# ----------------------------
@dataclass
class Transition:
    item_id: str
    title: str
    before: t.Optional[str]
    phase: str
    status: str
    tags: list[str]
    listed: bool
    zero_inventory: bool
    inventory_item_ids: list[str] = field(default_factory=list)


def phase_tags(current_tags: t.Iterable[str], phase: str) -> list[str]:
    kept = [tag for tag in current_tags if tag and tag.strip().upper() not in MANAGED_TAGS]
    kept.append(PHASE_TAGS[phase])
    return kept


def plan_transition(item: CatalogItem, target_phase: str) -> Transition:
    if target_phase not in PHASE_TAGS:
        raise ValueError(f"unknown phase {target_phase!r}")
    return Transition(
        item_id=item.id,
        title=item.title,
        before=item.stored_phase,
        phase=target_phase,
        status=PRODUCT_STATUS,
        tags=phase_tags(item.tags, target_phase),
        listed=target_phase in LISTED_PHASES,
        zero_inventory=target_phase == PHASE_ARCHIVED,
        inventory_item_ids=list(item.inventory_item_ids) if target_phase == PHASE_ARCHIVED else [],
    )


def listing_change(item: CatalogItem, tr: Transition) -> str:
    status_before = (item.status or "?").lower()
    return f"status={status_before}->{tr.status} listed={item.listed}->{tr.listed}"


def apply_transition(catalog, tr: Transition, phase_key: str, mutation_sleep_sec: float = 0.0) -> None:
    """
    Writes in order: status/tags, inventory (archived only), phase metafield.
    The first failing write raises and leaves the rest unwritten.
    """
    catalog.update_item_status_and_tags(tr.item_id, tr.status, tr.tags, tr.listed)
    time.sleep(mutation_sleep_sec)
    if tr.zero_inventory and tr.inventory_item_ids:
        catalog.set_inventory_to_zero(tr.inventory_item_ids)
        time.sleep(mutation_sleep_sec)
    catalog.upsert_item_metafield(tr.item_id, phase_key, tr.phase, PHASE_MF_TYPE)
    time.sleep(mutation_sleep_sec)


# ----------------------------
# Slots
# ----------------------------
def compute_slots(phased: list[tuple[CatalogItem, str]]) -> dict[str, t.Optional[str]]:
    candidates = [item for item, phase in phased if phase in SLOT_PHASES]
    candidates.sort(key=lambda i: (i.reference_date, i.id))
    slots: dict[str, t.Optional[str]] = {}
    for idx, name in enumerate(SLOT_NAMES):
        slots[name] = candidates[idx].id if idx < len(candidates) else None
    return slots


def publish_slots(catalog, slots: dict[str, t.Optional[str]], cfg: CycleConfig) -> list[str]:
    """Returns the names of slots that failed to publish."""
    keys = {
        "active": cfg.mf_active_key,
        "next": cfg.mf_next_key,
        "following": cfg.mf_following_key,
    }
    failed = []
    for name in SLOT_NAMES:
        key = keys[name]
        ref = slots.get(name)
        if cfg.dry_run:
            log_row("🧪", "SLOT_DRY_RUN", product_id=ref or "", message=f"{cfg.mf_namespace}.{key}")
            continue
        try:
            if ref:
                catalog.upsert_shop_metafield(key, ref, SLOT_MF_TYPE)
            else:
                catalog.delete_shop_metafield(key)
            log_row("🎯", "SLOT_SET" if ref else "SLOT_CLEARED", product_id=ref or "",
                    message=f"{name} -> {cfg.mf_namespace}.{key}")
        except Exception as e:
            failed.append(name)
            log_row("⚠️", "SLOT_ERR", product_id=ref or "", message=f"{name}: {e}")
        time.sleep(cfg.mutation_sleep_sec)
    return failed


# ----------------------------
# Orchestrator
# ----------------------------
def process_product_cycles(catalog, cfg: CycleConfig, clock: BusinessClock) -> dict:
    """
    One full run. Fetch errors propagate; per-product write errors are logged,
    counted and skipped.
    """
    start = time.time()
    settings = cfg.phase
    today = clock.today()
    log_row("🔄", "CYCLE_START", message=f"today={clock.describe()} settings={settings.as_dict()} dry_run={cfg.dry_run}")

    items = catalog.fetch_catalog_snapshot()
    log_row("📥", "CATALOG_FETCHED", message=f"{len(items)} product(s)")

    processed = updated = failed = skipped = 0
    phased: list[tuple[CatalogItem, str]] = []

    for item in items:
        if item.reference_date is None:
            skipped += 1
            if item.reference_raw:
                log_row("⚠️", "BAD_REFERENCE", product_id=item.id, title=item.title,
                        message=f"unparseable {cfg.mf_reference_key}={item.reference_raw!r}")
            else:
                log_row("⏭️", "NO_REFERENCE", product_id=item.id, title=item.title)
            continue

        processed += 1
        target = classify(item.reference_date, today, settings)
        phased.append((item, target))

        if cfg.test_mode:
            log_row("🔍", "PHASE_DECISION", product_id=item.id, title=item.title,
                    before=item.stored_phase or "", after=target,
                    message=f"ref={item.reference_date.isoformat()} month_diff={month_diff(item.reference_date, today)} day={today.day}")

        if reconcile_item(item, today, settings) is None:
            continue

        tr = plan_transition(item, target)
        if cfg.dry_run:
            updated += 1
            log_row("🧪", "DRY_RUN", product_id=item.id, title=item.title, before=tr.before or "", after=tr.phase,
                    message=f"tags={tr.tags} {listing_change(item, tr)} zero_inventory={tr.zero_inventory}")
            continue
        try:
            apply_transition(catalog, tr, cfg.mf_phase_key, cfg.mutation_sleep_sec)
        except Exception as e:
            failed += 1
            log_row("⚠️", "TRANSITION_ERR", product_id=item.id, title=item.title,
                    before=tr.before or "", after=tr.phase, message=str(e))
            continue
        updated += 1
        log_row(PHASE_EMOJI[tr.phase], "PHASE_SET", product_id=item.id, title=item.title,
                before=tr.before or "", after=tr.phase,
                message=f"{listing_change(item, tr)} zero_inventory={tr.zero_inventory}")

    slots = compute_slots(phased)
    slot_failures = publish_slots(catalog, slots, cfg)

    summary = {
        "success": True,
        "today": today.isoformat(),
        "dry_run": cfg.dry_run,
        "products_seen": len(items),
        "processed": processed,
        "updated": updated,
        "failed": failed,
        "skipped": skipped,
        "slots": slots,
        "slot_failures": slot_failures,
        "duration_sec": round(time.time() - start, 2),
    }
    log_row("✅", "CYCLE_DONE", message=f"processed={processed} updated={updated} failed={failed} skipped={skipped}")
    return summary


def check_product_phase(reference: str, cfg: CycleConfig, clock: BusinessClock) -> dict:
    """Phase for a single reference date; ValueError when the date is malformed."""
    ref = parse_calendar_date(reference)
    today = clock.today()
    return {
        "dataReferencia": reference,
        "currentPhase": classify(ref, today, cfg.phase),
        "today": today.isoformat(),
        "settings": cfg.phase.as_dict(),
    }
