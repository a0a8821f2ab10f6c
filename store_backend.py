"""External store contract for the storefront agent.

The engine never talks to a database directly. Everything it reads or writes
goes through an object implementing ``StoreBackend``: one merchant (brand)
record, the merchant's products, and the merchant's page sections. Every call
is scoped by ``merchant_id`` and is assumed atomic on its own; nothing is
assumed across calls.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol


class DataAccessError(RuntimeError):
    """A read against the external store failed."""


class ExternalWriteError(RuntimeError):
    """A write against the external store failed or was rejected."""


# StoreState brand field -> merchant column
BRAND_COLUMNS: Dict[str, str] = {
    "name": "store_name",
    "category": "category",
    "tone": "brand_tone",
    "tagline": "tagline",
}

TEMPLATE_COLUMN = "storefront_template"

PRODUCT_COLUMNS = (
    "title",
    "price",
    "description",
    "category",
    "inventory",
    "images",
    "tags",
    "is_active",
)


class StoreBackend(Protocol):
    def get_merchant(self, merchant_id: str) -> dict | None: ...

    def update_merchant(self, merchant_id: str, changes: dict) -> None: ...

    def list_products(self, merchant_id: str) -> List[dict]: ...

    def insert_product(self, merchant_id: str, product: dict) -> dict: ...

    def update_product(self, merchant_id: str, product_id: str, changes: dict) -> None: ...

    def delete_product(self, merchant_id: str, product_id: str) -> None: ...

    def list_sections(self, merchant_id: str, page_type: str = "home") -> List[dict]: ...

    def get_section(self, merchant_id: str, section_id: str) -> dict | None: ...

    def find_section(self, merchant_id: str, page_type: str, section_type: str) -> dict | None: ...

    def insert_section(self, merchant_id: str, section: dict) -> dict: ...

    def update_section(self, merchant_id: str, section_id: str, changes: dict) -> None: ...

    def delete_section(self, merchant_id: str, section_id: str) -> None: ...


def section_record(
    section_id: str,
    section_type: str,
    position: int,
    settings: dict,
    page_type: str = "home",
    zone: str | None = None,
    visible: bool = True,
) -> Dict[str, Any]:
    """Shape of a ``storefront_sections`` row as handed to ``insert_section``."""
    return {
        "id": section_id,
        "page_type": page_type,
        "section_type": section_type,
        "position": position,
        "zone": zone,
        "is_visible": visible,
        "settings": settings,
    }
