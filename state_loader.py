"""StoreState loading, derived views and summaries.

The StoreState is the only document the agent is shown. It is rebuilt from the
merchant record, the product list and the homepage sections, and it never
carries raw storage URLs or persistence columns beyond opaque ids.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List
from urllib.parse import urlparse

from store_backend import DataAccessError, StoreBackend, TEMPLATE_COLUMN
from storekit.section_catalog import (
    PAGE_HOME,
    SECTION_CATALOG,
    ZONE_HOME_MAIN,
    is_storage_url,
    simplify_settings,
    storage_label,
)


StoreState = Dict[str, Any]

logger = logging.getLogger("storefront.state")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def default_hero() -> dict:
    return {
        "headline": "",
        "subheadline": "",
        "cta_text": "Shop Now",
        "cta_link": "/products",
        "image": "",
        "layout": "centered",
    }


def create_empty_state(merchant_id: str = "") -> StoreState:
    return {
        "brand": {"name": "", "category": "", "tone": "minimal", "tagline": ""},
        "products": [],
        "homepage": {
            "hero": default_hero(),
            "sections": [],
            "template": "default",
        },
        "assets": [],
        "meta": {"merchant_id": merchant_id, "last_updated": _now()},
    }


def display_image(value: Any) -> str:
    """Reduce object-storage URLs to their file label; pass anything else through."""
    if not isinstance(value, str):
        return ""
    if is_storage_url(value):
        return storage_label(value) or "image"
    return value


def extract_image_labels(images: Any) -> List[str]:
    if not isinstance(images, list):
        return []
    labels: List[str] = []
    for idx, img in enumerate(images, start=1):
        label = None
        if isinstance(img, str):
            label = storage_label(img)
        elif isinstance(img, dict):
            label = img.get("label") or img.get("name")
            if not label and isinstance(img.get("url"), str):
                label = storage_label(img["url"])
        labels.append(label if isinstance(label, str) and label else f"image-{idx}")
    return labels


def decode_settings(raw: Any, section_id: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("section_settings_invalid section_id=%s", section_id)
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _product_from_row(row: dict) -> dict:
    return {
        "id": str(row.get("id")),
        "title": row.get("title") or "",
        "price": int(row.get("price") or 0),
        "description": row.get("description") or "",
        "category": row.get("category") or "",
        "inventory": int(row.get("inventory") or 0),
        "images": extract_image_labels(row.get("images")),
        "tags": [t for t in (row.get("tags") or []) if isinstance(t, str)],
        "is_active": row.get("is_active") is not False,
    }


def hero_from_settings(settings: dict) -> dict:
    return {
        "headline": settings.get("title") or "",
        "subheadline": settings.get("subtitle") or "",
        "cta_text": settings.get("button_text") or "Shop Now",
        "cta_link": settings.get("button_link") or "/products",
        "image": display_image(settings.get("background_image")),
        "layout": settings.get("layout") or "centered",
    }


def section_from_row(row: dict, index: int = 0) -> dict:
    section_type = row.get("section_type") or row.get("type") or ""
    settings = decode_settings(row.get("settings"), row.get("id"))
    position = row.get("position")
    return {
        "id": str(row.get("id")),
        "type": section_type,
        "position": position if isinstance(position, int) and not isinstance(position, bool) else index,
        "zone": row.get("zone") or ZONE_HOME_MAIN,
        "visible": row.get("is_visible") is not False,
        "settings": simplify_settings(section_type, settings),
    }


def _unique_by_id(items: List[dict], kind: str) -> List[dict]:
    seen: set[str] = set()
    out: List[dict] = []
    for item in items:
        if item["id"] in seen:
            logger.warning("duplicate_%s_dropped id=%s", kind, item["id"])
            continue
        seen.add(item["id"])
        out.append(item)
    return out


def build_asset_list(state: StoreState) -> List[dict]:
    """Derive the read-only asset list from the hero image and product images."""
    assets: List[dict] = []
    hero_image = state["homepage"]["hero"].get("image")
    if hero_image:
        asset = {
            "id": "asset_hero",
            "label": storage_label(hero_image) or "hero-image",
            "description": "Homepage hero background",
        }
        if urlparse(hero_image).scheme in ("http", "https") and not is_storage_url(hero_image):
            asset["url"] = hero_image
        assets.append(asset)
    counter = 1
    for product in state["products"]:
        for img_idx, label in enumerate(product.get("images") or [], start=1):
            assets.append(
                {
                    "id": f"asset_{counter}",
                    "label": label,
                    "description": f"{product.get('title')} - Image {img_idx}",
                }
            )
            counter += 1
    return assets


def load_state(backend: StoreBackend, merchant_id: str) -> StoreState:
    """Build a fresh StoreState for ``merchant_id``.

    Raises ``DataAccessError`` if any of the merchant, product or section
    reads fail. Callers substitute ``create_empty_state`` in that case.
    """
    state = create_empty_state(merchant_id)
    try:
        merchant = backend.get_merchant(merchant_id)
        product_rows = backend.list_products(merchant_id)
        section_rows = backend.list_sections(merchant_id, PAGE_HOME)
    except DataAccessError:
        logger.exception("state_load_failed merchant_id=%s", merchant_id)
        raise
    except Exception as exc:
        logger.exception("state_load_failed merchant_id=%s", merchant_id)
        raise DataAccessError(f"Failed to load store state: {exc}") from exc

    if merchant:
        state["brand"] = {
            "name": merchant.get("store_name") or merchant.get("business_name") or "",
            "category": merchant.get("category") or "",
            "tone": merchant.get("brand_tone") or "minimal",
            "tagline": merchant.get("tagline") or "",
        }
        state["homepage"]["template"] = merchant.get(TEMPLATE_COLUMN) or "default"

    products = [_product_from_row(row) for row in product_rows or [] if isinstance(row, dict)]
    state["products"] = _unique_by_id(products, "product")

    rows = [row for row in section_rows or [] if isinstance(row, dict)]
    hero_row = next((row for row in rows if row.get("section_type") == "hero"), None)
    if hero_row is not None:
        state["homepage"]["hero"] = hero_from_settings(decode_settings(hero_row.get("settings"), hero_row.get("id")))

    sections = [section_from_row(row, idx) for idx, row in enumerate(rows)]
    sections = _unique_by_id(sections, "section")
    state["homepage"]["sections"] = sorted(sections, key=lambda s: s["position"])

    state["assets"] = build_asset_list(state)
    state["meta"]["last_updated"] = _now()
    logger.info(
        "state_loaded merchant_id=%s products=%s sections=%s",
        merchant_id,
        len(state["products"]),
        len(state["homepage"]["sections"]),
    )
    return state


def serialize_state(state: StoreState) -> str:
    return json.dumps(state, indent=2, ensure_ascii=False)


def summarize_state(state: StoreState) -> str:
    brand = state["brand"]
    hero = state["homepage"]["hero"]
    lines = [
        f"STORE: {brand.get('name') or 'Unnamed Store'}",
        f"CATEGORY: {brand.get('category') or 'Not set'}",
        f"TONE: {brand.get('tone') or 'minimal'}",
        f"PRODUCTS: {len(state['products'])} items",
        f"HERO: \"{hero.get('headline') or 'No headline'}\"",
        f"SECTIONS: {len(state['homepage']['sections'])} sections on homepage",
        f"ASSETS: {len(state['assets'])} images available",
    ]
    return "\n".join(lines)


def available_section_types() -> List[dict]:
    return [
        {"type": key, "name": entry["name"], "description": entry["description"]}
        for key, entry in SECTION_CATALOG.items()
    ]
