"""In-memory store backend (USE_DB off, demos and tests)."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Dict, List

from store_backend import ExternalWriteError


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryStoreBackend:
    def __init__(self) -> None:
        self._merchants: Dict[str, dict] = {}
        self._products: Dict[str, Dict[str, dict]] = {}
        self._sections: Dict[str, Dict[str, dict]] = {}

    # seeding

    def seed_merchant(self, merchant_id: str, **values) -> dict:
        record = {"id": merchant_id, "created_at": _now(), **copy.deepcopy(values)}
        self._merchants[merchant_id] = record
        return copy.deepcopy(record)

    def seed_product(self, merchant_id: str, **values) -> dict:
        record = copy.deepcopy(values)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", _now())
        record["merchant_id"] = merchant_id
        self._products.setdefault(merchant_id, {})[record["id"]] = record
        return copy.deepcopy(record)

    def seed_section(self, merchant_id: str, **values) -> dict:
        record = copy.deepcopy(values)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("page_type", "home")
        record.setdefault("is_visible", True)
        record.setdefault("settings", {})
        record["merchant_id"] = merchant_id
        self._sections.setdefault(merchant_id, {})[record["id"]] = record
        return copy.deepcopy(record)

    # merchant

    def get_merchant(self, merchant_id: str) -> dict | None:
        rec = self._merchants.get(merchant_id)
        return copy.deepcopy(rec) if rec else None

    def update_merchant(self, merchant_id: str, changes: dict) -> None:
        record = self._merchants.setdefault(merchant_id, {"id": merchant_id, "created_at": _now()})
        record.update(copy.deepcopy(changes))
        record["updated_at"] = _now()

    # products

    def list_products(self, merchant_id: str) -> List[dict]:
        items = [copy.deepcopy(v) for v in self._products.get(merchant_id, {}).values()]
        items.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return items

    def insert_product(self, merchant_id: str, product: dict) -> dict:
        record = copy.deepcopy(product)
        record.setdefault("id", str(uuid.uuid4()))
        record["merchant_id"] = merchant_id
        record["created_at"] = _now()
        self._products.setdefault(merchant_id, {})[record["id"]] = record
        return copy.deepcopy(record)

    def update_product(self, merchant_id: str, product_id: str, changes: dict) -> None:
        record = self._products.get(merchant_id, {}).get(product_id)
        if record is None:
            raise ExternalWriteError(f"product not found: {product_id}")
        record.update(copy.deepcopy(changes))
        record["updated_at"] = _now()

    def delete_product(self, merchant_id: str, product_id: str) -> None:
        self._products.get(merchant_id, {}).pop(product_id, None)

    # sections

    def list_sections(self, merchant_id: str, page_type: str = "home") -> List[dict]:
        items = [
            copy.deepcopy(v)
            for v in self._sections.get(merchant_id, {}).values()
            if v.get("page_type") == page_type
        ]
        items.sort(key=lambda r: r.get("position") or 0)
        return items

    def get_section(self, merchant_id: str, section_id: str) -> dict | None:
        rec = self._sections.get(merchant_id, {}).get(section_id)
        return copy.deepcopy(rec) if rec else None

    def find_section(self, merchant_id: str, page_type: str, section_type: str) -> dict | None:
        for rec in self.list_sections(merchant_id, page_type):
            if rec.get("section_type") == section_type:
                return rec
        return None

    def insert_section(self, merchant_id: str, section: dict) -> dict:
        record = copy.deepcopy(section)
        record.setdefault("id", str(uuid.uuid4()))
        record["merchant_id"] = merchant_id
        self._sections.setdefault(merchant_id, {})[record["id"]] = record
        return copy.deepcopy(record)

    def update_section(self, merchant_id: str, section_id: str, changes: dict) -> None:
        record = self._sections.get(merchant_id, {}).get(section_id)
        if record is None:
            raise ExternalWriteError(f"section not found: {section_id}")
        record.update(copy.deepcopy(changes))

    def delete_section(self, merchant_id: str, section_id: str) -> None:
        self._sections.get(merchant_id, {}).pop(section_id, None)
