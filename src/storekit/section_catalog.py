"""Section component catalog: defaults, zones and agent-facing key maps.

The storefront renderer owns the full settings surface of every section type.
The agent only ever sees a narrowed view of those settings; ``AGENT_KEYS``
declares, per section type, which agent-facing key maps to which internal key
and what the agent sees when the internal key is unset.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Tuple


PAGE_HOME = "home"
PAGE_CATALOG = "catalog"
PAGE_PRODUCT = "product"
PAGE_TYPES = (PAGE_HOME, PAGE_CATALOG, PAGE_PRODUCT)

ZONE_HOME_MAIN = "home.main"


SECTION_CATALOG: Dict[str, dict] = {
    "hero": {
        "name": "Hero Banner",
        "description": "Full-width hero with headline, CTA, and background image",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "background_image": "",
            "badge_text": "",
            "title": "Elevate Your\nEveryday Style",
            "subtitle": "Discover premium essentials crafted for modern living.",
            "button_text": "Shop the Collection",
            "button_link": "/products",
            "button_style": "solid",
            "layout": "centered",
            "height": "full",
            "overlay_enabled": True,
            "overlay_color": "#000000",
            "overlay_opacity": 50,
            "text_color": "#ffffff",
        },
    },
    "featured_products": {
        "name": "Featured Products",
        "description": "Grid of highlighted products",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "Trending Now",
            "subtitle": "Our best-selling pieces this week.",
            "product_count": 4,
            "show_view_all": True,
            "view_all_text": "View All",
            "collection": "all",
            "layout": "grid-4",
        },
    },
    "newsletter": {
        "name": "Newsletter Signup",
        "description": "Email capture section",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "Join the Movement",
            "subtitle": "Sign up for our newsletter and get early access to new drops.",
            "button_text": "Sign Up",
            "placeholder_text": "Enter your email",
            "background_color": "#000000",
            "text_color": "#ffffff",
            "success_message": "Thanks for subscribing!",
        },
    },
    "trust_badges": {
        "name": "Trust Badges",
        "description": "Social proof and trust indicators",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "badges": [
                {"icon": "Truck", "title": "Free Shipping", "subtitle": "On all orders over R 1,500"},
                {"icon": "RefreshCw", "title": "Free Returns", "subtitle": "30 days money-back guarantee"},
                {"icon": "ShieldCheck", "title": "Secure Payment", "subtitle": "Protected by 256-bit SSL encryption"},
            ],
            "layout": "horizontal",
            "show_border": True,
            "columns": 3,
        },
    },
    "rich_text": {
        "name": "Rich Text",
        "description": "Custom text content block",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "",
            "content": "Add your content here...",
            "text_alignment": "center",
            "background_color": "#ffffff",
            "text_color": "#111827",
            "padding_y": "medium",
        },
    },
    "image_banner": {
        "name": "Image Banner",
        "description": "Full-width promotional image",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "image_url": "",
            "title": "",
            "subtitle": "",
            "button_text": "",
            "button_link": "",
            "height": "medium",
            "overlay_enabled": True,
            "overlay_opacity": 40,
            "text_position": "center",
            "full_width": True,
        },
    },
    "faq": {
        "name": "FAQ Section",
        "description": "Frequently asked questions accordion",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "Frequently Asked Questions",
            "subtitle": "Find answers to common questions about our products and services",
            "faqs": [
                {"question": "How long does shipping take?", "answer": "Standard shipping typically takes 3-5 business days."},
                {"question": "What is your return policy?", "answer": "We offer a 30-day money-back guarantee on all orders."},
            ],
            "layout": "centered",
            "style": "modern",
        },
    },
    "announcement_bar": {
        "name": "Announcement Bar",
        "description": "Top banner for promotions",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "text": "Free shipping on orders over R1,500!",
            "link": "",
            "background_color": "#111827",
            "text_color": "#ffffff",
            "auto_rotate": True,
            "sticky": False,
        },
    },
    "collection_carousel": {
        "name": "Collection Carousel",
        "description": "Scrollable row of products from one collection",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "Shop the Collection",
            "subtitle": "",
            "collection_id": None,
            "show_prices": True,
            "items_per_view": 4,
        },
    },
    "us_vs_them": {
        "name": "Us vs Them",
        "description": "Comparison table against competitors",
        "zone": ZONE_HOME_MAIN,
        "defaults": {
            "title": "Why Choose Us?",
            "subtitle": "See how we compare to the competition",
            "us_label": "Us",
            "them_label": "Others",
        },
    },
    "catalog_header": {
        "name": "Catalog Header",
        "description": "Title block for the product listing page",
        "zone": "catalog.top",
        "defaults": {
            "title": "Shop All Products",
            "subtitle": "Browse our complete collection",
            "background_color": "#f9fafb",
            "text_color": "#111827",
            "show_breadcrumb": True,
        },
    },
    "product_trust": {
        "name": "Product Trust",
        "description": "Trust signals below add-to-cart",
        "zone": "product.info.trust",
        "defaults": {
            "badges": [
                {"icon": "Truck", "title": "Free Shipping", "subtitle": "On orders over R 1,500"},
                {"icon": "ShieldCheck", "title": "Secure Payment", "subtitle": "Protected checkout & 30-day returns"},
            ],
            "layout": "vertical",
        },
    },
    "related_products": {
        "name": "Related Products",
        "description": "Products similar to the one being viewed",
        "zone": "product.bottom",
        "defaults": {
            "title": "You May Also Like",
            "subtitle": "",
            "product_count": 4,
            "show_view_all": True,
            "layout": "grid-4",
        },
    },
    "product_tabs": {
        "name": "Product Tabs",
        "description": "Tabbed product details (description, shipping, returns)",
        "zone": "product.info.inline",
        "defaults": {
            "title": "Product description",
            "subtitle": "",
            "style": "minimal",
            "allow_multiple_open": False,
        },
    },
}


# agent key -> (internal key, value shown when unset)
AGENT_KEYS: Dict[str, Dict[str, Tuple[str, Any]]] = {
    "hero": {
        "headline": ("title", ""),
        "subheadline": ("subtitle", ""),
        "cta_text": ("button_text", ""),
        "cta_link": ("button_link", ""),
        "layout": ("layout", "centered"),
    },
    "featured_products": {
        "title": ("title", ""),
        "subtitle": ("subtitle", ""),
        "product_count": ("product_count", 4),
    },
    "newsletter": {
        "title": ("title", ""),
        "subtitle": ("subtitle", ""),
        "button_text": ("button_text", ""),
    },
    "rich_text": {
        "content": ("content", ""),
        "alignment": ("text_alignment", "center"),
    },
    "announcement_bar": {
        "message": ("text", ""),
        "link": ("link", ""),
    },
}

# StoreState hero attribute -> internal hero setting
HERO_FIELDS = {
    "headline": "title",
    "subheadline": "subtitle",
    "cta_text": "button_text",
    "cta_link": "button_link",
    "image": "background_image",
    "layout": "layout",
}


STORAGE_PATH_MARKER = "/storage/v1/"


def is_storage_url(value: Any) -> bool:
    return isinstance(value, str) and STORAGE_PATH_MARKER in value


def storage_label(value: str) -> str:
    """File label of an object-storage URL (query and fragment stripped)."""
    path = value.split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/").split("/")[-1]


def _agent_value(value: Any) -> Any:
    # storage URLs never reach the agent, only their labels
    if is_storage_url(value):
        return storage_label(value) or "image"
    return value


def known_section_types() -> List[str]:
    return list(SECTION_CATALOG.keys())


def section_defaults(section_type: str) -> dict:
    entry = SECTION_CATALOG.get(section_type)
    if not entry:
        return {}
    return copy.deepcopy(entry.get("defaults") or {})


def zone_for(section_type: str, page_type: str = PAGE_HOME) -> str:
    entry = SECTION_CATALOG.get(section_type)
    if page_type == PAGE_HOME:
        return ZONE_HOME_MAIN
    if entry and isinstance(entry.get("zone"), str) and entry["zone"].startswith(f"{page_type}."):
        return entry["zone"]
    return f"{page_type}.bottom"


def simplify_settings(section_type: str, settings: dict | None) -> dict:
    """Project full internal settings onto the agent-facing key set."""
    settings = settings if isinstance(settings, dict) else {}
    keys = AGENT_KEYS.get(section_type)
    if keys is None:
        # unknown shape: expose scalars only
        return {
            key: _agent_value(value)
            for key, value in settings.items()
            if isinstance(value, (str, int, float, bool))
        }
    simplified = {}
    for agent_key, (internal_key, fallback) in keys.items():
        value = settings.get(internal_key)
        simplified[agent_key] = _agent_value(value) if value not in (None, "") else fallback
    return simplified


def expand_settings(section_type: str, simplified: dict | None) -> dict:
    """Translate agent-facing keys back to internal keys; unmapped keys pass through."""
    if not isinstance(simplified, dict):
        return {}
    keys = AGENT_KEYS.get(section_type, {})
    expanded = {}
    for key, value in simplified.items():
        internal = keys.get(key, (key, None))[0]
        expanded[internal] = value
    return expanded


def default_sections_for_page(page_type: str) -> List[dict]:
    if page_type == PAGE_HOME:
        layout = ["hero", "featured_products", "newsletter", "trust_badges"]
    elif page_type == PAGE_CATALOG:
        layout = ["catalog_header", "newsletter"]
    elif page_type == PAGE_PRODUCT:
        layout = ["product_trust", "related_products"]
    else:
        return []
    return [
        {
            "type": section_type,
            "position": idx,
            "zone": zone_for(section_type, page_type),
            "visible": True,
            "settings": section_defaults(section_type),
        }
        for idx, section_type in enumerate(layout)
    ]
