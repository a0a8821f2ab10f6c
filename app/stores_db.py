"""Postgres-backed store backend (tables merchants, products, storefront_sections)."""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from typing import Any, List

import psycopg2
import psycopg2.extras

from app.db import execute, fetch_all, fetch_one, get_conn
from store_backend import BRAND_COLUMNS, PRODUCT_COLUMNS, TEMPLATE_COLUMN, DataAccessError, ExternalWriteError

logger = logging.getLogger("storefront.db")

_MERCHANT_COLUMNS = frozenset(BRAND_COLUMNS.values()) | {TEMPLATE_COLUMN}
_PRODUCT_COLUMNS = frozenset(PRODUCT_COLUMNS)
_SECTION_COLUMNS = frozenset({"position", "settings", "is_visible", "zone"})
_JSON_COLUMNS = frozenset({"images", "settings"})


def _json_dumps(value: object) -> str:
    return json.dumps(value, default=str)


def _ensure_json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value


def _adapt(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return psycopg2.extras.Json(value, dumps=_json_dumps)
    return value


def _row_out(row: dict | None) -> dict | None:
    if row is None:
        return None
    out = dict(row)
    for key in ("id", "merchant_id"):
        if out.get(key) is not None:
            out[key] = str(out[key])
    for key in ("created_at", "updated_at"):
        if key in out:
            out[key] = _to_iso(out[key])
    if "settings" in out:
        out["settings"] = _ensure_json(out["settings"]) or {}
    if "images" in out:
        out["images"] = _ensure_json(out["images"]) or []
    if out.get("price") is not None:
        out["price"] = int(out["price"])
    return out


def _set_clause(changes: dict, allowed: frozenset) -> tuple[str, list]:
    columns = [c for c in changes if c in allowed]
    unknown = sorted(set(changes) - set(columns))
    if unknown:
        raise ExternalWriteError(f"Unknown columns: {unknown}")
    assignments = ", ".join(f"{c}=%s" for c in columns)
    return assignments, [_adapt(c, changes[c]) for c in columns]


@contextmanager
def _reading(what: str):
    try:
        yield
    except psycopg2.Error as exc:
        logger.warning("db_read_failed what=%s error=%s", what, exc)
        raise DataAccessError(f"{what} failed: {exc}") from exc


@contextmanager
def _writing(what: str):
    try:
        yield
    except psycopg2.Error as exc:
        logger.warning("db_write_failed what=%s error=%s", what, exc)
        raise ExternalWriteError(f"{what} failed: {exc}") from exc


class DbStoreBackend:
    # merchant

    def get_merchant(self, merchant_id: str) -> dict | None:
        with _reading("merchant read"), get_conn() as conn:
            row = fetch_one(conn, "select * from merchants where id=%s", [merchant_id], query_name="merchants.get")
        return _row_out(row)

    def update_merchant(self, merchant_id: str, changes: dict) -> None:
        assignments, params = _set_clause(changes, _MERCHANT_COLUMNS)
        if not assignments:
            return
        with _writing("merchant update"), get_conn() as conn:
            count = execute(
                conn,
                f"update merchants set {assignments}, updated_at=now() where id=%s",
                params + [merchant_id],
                query_name="merchants.update",
            )
        if count == 0:
            raise ExternalWriteError(f"Merchant not found: {merchant_id}")

    # products

    def list_products(self, merchant_id: str) -> List[dict]:
        with _reading("product list"), get_conn() as conn:
            rows = fetch_all(
                conn,
                """
                select * from products
                where merchant_id=%s
                order by created_at desc
                """,
                [merchant_id],
                query_name="products.list",
            )
        return [_row_out(r) for r in rows]

    def insert_product(self, merchant_id: str, product: dict) -> dict:
        values = {c: product[c] for c in PRODUCT_COLUMNS if c in product}
        product_id = product.get("id") or str(uuid.uuid4())
        columns = ["id", "merchant_id"] + list(values)
        params = [product_id, merchant_id] + [_adapt(c, v) for c, v in values.items()]
        with _writing("product insert"), get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                insert into products ({", ".join(columns)}, created_at, updated_at)
                values ({", ".join(["%s"] * len(columns))}, now(), now())
                returning *
                """,
                params,
                query_name="products.insert",
            )
        return _row_out(row) or {"id": product_id}

    def update_product(self, merchant_id: str, product_id: str, changes: dict) -> None:
        assignments, params = _set_clause(changes, _PRODUCT_COLUMNS)
        if not assignments:
            return
        with _writing("product update"), get_conn() as conn:
            count = execute(
                conn,
                f"update products set {assignments}, updated_at=now() where id=%s and merchant_id=%s",
                params + [product_id, merchant_id],
                query_name="products.update",
            )
        if count == 0:
            raise ExternalWriteError(f"Product not found: {product_id}")

    def delete_product(self, merchant_id: str, product_id: str) -> None:
        with _writing("product delete"), get_conn() as conn:
            execute(
                conn,
                "delete from products where id=%s and merchant_id=%s",
                [product_id, merchant_id],
                query_name="products.delete",
            )

    # sections

    def list_sections(self, merchant_id: str, page_type: str = "home") -> List[dict]:
        with _reading("section list"), get_conn() as conn:
            rows = fetch_all(
                conn,
                """
                select * from storefront_sections
                where merchant_id=%s and page_type=%s
                order by position asc
                """,
                [merchant_id, page_type],
                query_name="storefront_sections.list",
            )
        return [_row_out(r) for r in rows]

    def get_section(self, merchant_id: str, section_id: str) -> dict | None:
        with _reading("section read"), get_conn() as conn:
            row = fetch_one(
                conn,
                "select * from storefront_sections where id=%s and merchant_id=%s",
                [section_id, merchant_id],
                query_name="storefront_sections.get",
            )
        return _row_out(row)

    def find_section(self, merchant_id: str, page_type: str, section_type: str) -> dict | None:
        with _reading("section lookup"), get_conn() as conn:
            row = fetch_one(
                conn,
                """
                select * from storefront_sections
                where merchant_id=%s and page_type=%s and section_type=%s
                order by position asc
                limit 1
                """,
                [merchant_id, page_type, section_type],
                query_name="storefront_sections.find",
            )
        return _row_out(row)

    def insert_section(self, merchant_id: str, section: dict) -> dict:
        section_id = section.get("id") or str(uuid.uuid4())
        with _writing("section insert"), get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into storefront_sections
                  (id, merchant_id, page_type, section_type, position, zone, is_visible, settings)
                values (%s, %s, %s, %s, %s, %s, %s, %s)
                returning *
                """,
                [
                    section_id,
                    merchant_id,
                    section.get("page_type") or "home",
                    section.get("section_type"),
                    section.get("position") or 0,
                    section.get("zone"),
                    section.get("is_visible") is not False,
                    _adapt("settings", section.get("settings") or {}),
                ],
                query_name="storefront_sections.insert",
            )
        return _row_out(row) or {"id": section_id}

    def update_section(self, merchant_id: str, section_id: str, changes: dict) -> None:
        assignments, params = _set_clause(changes, _SECTION_COLUMNS)
        if not assignments:
            return
        with _writing("section update"), get_conn() as conn:
            count = execute(
                conn,
                f"update storefront_sections set {assignments} where id=%s and merchant_id=%s",
                params + [section_id, merchant_id],
                query_name="storefront_sections.update",
            )
        if count == 0:
            raise ExternalWriteError(f"Section not found: {section_id}")

    def delete_section(self, merchant_id: str, section_id: str) -> None:
        with _writing("section delete"), get_conn() as conn:
            execute(
                conn,
                "delete from storefront_sections where id=%s and merchant_id=%s",
                [section_id, merchant_id],
                query_name="storefront_sections.delete",
            )
