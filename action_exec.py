"""Action execution engine (sequential, fail-stop, per-action atomicity).

Every action runs against a deep copy of the current StoreState. External
writes happen inside the handler before the copy is handed back, so a failing
action returns the caller's state untouched together with a failed mutation
record. Handlers that issue several writes register an undo step for each one
that succeeded; a failure later in the same action replays those steps so the
store matches the state the caller keeps. Batches stop at the first failure;
earlier actions stay applied.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from action_schema import ACTION_SCHEMAS, ACTION_TYPE_VALUES, ActionType, RegistryDriftError
from state_loader import (
    build_asset_list,
    decode_settings,
    display_image,
    hero_from_settings,
    is_storage_url,
)
from store_backend import (
    BRAND_COLUMNS,
    PRODUCT_COLUMNS,
    TEMPLATE_COLUMN,
    ExternalWriteError,
    StoreBackend,
    section_record,
)
from storekit.section_catalog import (
    HERO_FIELDS,
    PAGE_HOME,
    ZONE_HOME_MAIN,
    expand_settings,
    section_defaults,
    simplify_settings,
    zone_for,
)


StoreState = Dict[str, Any]
Mutation = Dict[str, Any]

logger = logging.getLogger("storefront.actions")


class DomainError(Exception):
    """An action referenced something that does not exist or is not allowed."""


@dataclass
class _ActionCtx:
    state: StoreState
    payload: dict
    store: StoreBackend
    merchant_id: str
    undo: List[Callable[[], Any]] = field(default_factory=list)


Handler = Callable[[_ActionCtx], Any]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_id() -> str:
    return str(uuid.uuid4())


def _write(fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except ExternalWriteError:
        raise
    except Exception as exc:
        raise ExternalWriteError(str(exc)) from exc


def _rollback(ctx: _ActionCtx) -> None:
    """Replay registered undo steps newest first; failures are logged and skipped."""
    while ctx.undo:
        step = ctx.undo.pop()
        try:
            step()
        except Exception:
            logger.exception("action_rollback_failed merchant_id=%s", ctx.merchant_id)


def _find_index(items: List[dict], item_id: Any) -> int:
    for idx, item in enumerate(items):
        if item.get("id") == item_id:
            return idx
    return -1


# ---------------------------------------------------------------------------
# positions
# ---------------------------------------------------------------------------


def _positions(sections: List[dict]) -> Dict[str, int]:
    return {s["id"]: s.get("position") for s in sections}


def renumber_sections(sections: List[dict]) -> None:
    """Assign dense zero-based positions per zone, following list order."""
    counters: Dict[str, int] = {}
    for section in sections:
        zone = section.get("zone") or ZONE_HOME_MAIN
        section["position"] = counters.get(zone, 0)
        counters[zone] = section["position"] + 1


def _sort_sections(state: StoreState) -> None:
    state["homepage"]["sections"].sort(key=lambda s: s.get("position", 0))


def _persist_positions(ctx: _ActionCtx, before: Dict[str, int], always: set[str] | None = None) -> None:
    for section in ctx.state["homepage"]["sections"]:
        sid = section["id"]
        if sid not in before:
            continue
        if before[sid] != section["position"] or (always and sid in always):
            _write(ctx.store.update_section, ctx.merchant_id, sid, {"position": section["position"]})
            ctx.undo.append(
                lambda sid=sid, pos=before[sid]: ctx.store.update_section(ctx.merchant_id, sid, {"position": pos})
            )


# ---------------------------------------------------------------------------
# products
# ---------------------------------------------------------------------------


def _create_product(ctx: _ActionCtx) -> dict:
    p = ctx.payload
    product = {
        "id": _new_id(),
        "title": p["title"],
        "price": p.get("price", 0),
        "description": p.get("description", ""),
        "category": p.get("category", ""),
        "inventory": p.get("inventory", 0),
        "images": list(p.get("images") or []),
        "tags": list(p.get("tags") or []),
        "is_active": p.get("is_active") is not False,
    }
    _write(ctx.store.insert_product, ctx.merchant_id, copy.deepcopy(product))
    ctx.state["products"].insert(0, product)
    return {"product_id": product["id"]}


def _update_product(ctx: _ActionCtx) -> dict:
    product_id = ctx.payload["product_id"]
    idx = _find_index(ctx.state["products"], product_id)
    if idx == -1:
        raise DomainError(f"Product not found: {product_id}")
    changes = {key: ctx.payload[key] for key in PRODUCT_COLUMNS if key in ctx.payload}
    if changes:
        _write(ctx.store.update_product, ctx.merchant_id, product_id, copy.deepcopy(changes))
        ctx.state["products"][idx].update(changes)
    return {"product_id": product_id, "updated_fields": sorted(changes)}


def _delete_product(ctx: _ActionCtx) -> dict:
    product_id = ctx.payload["product_id"]
    idx = _find_index(ctx.state["products"], product_id)
    if idx == -1:
        raise DomainError(f"Product not found: {product_id}")
    _write(ctx.store.delete_product, ctx.merchant_id, product_id)
    del ctx.state["products"][idx]
    return {"product_id": product_id}


def _generate_product_descriptions(ctx: _ActionCtx) -> dict:
    descriptions = ctx.payload.get("descriptions") or {}
    allowed = ctx.payload.get("product_ids")
    updated: List[str] = []
    skipped: List[str] = []
    for product_id, text in descriptions.items():
        if allowed is not None and product_id not in allowed:
            skipped.append(product_id)
            continue
        idx = _find_index(ctx.state["products"], product_id)
        if idx == -1 or not isinstance(text, str):
            skipped.append(product_id)
            continue
        text = text.strip()
        previous = ctx.state["products"][idx].get("description", "")
        _write(ctx.store.update_product, ctx.merchant_id, product_id, {"description": text})
        ctx.undo.append(
            lambda pid=product_id, old=previous: ctx.store.update_product(ctx.merchant_id, pid, {"description": old})
        )
        ctx.state["products"][idx]["description"] = text
        updated.append(product_id)
    return {"updated": updated, "skipped": skipped}


# ---------------------------------------------------------------------------
# hero
# ---------------------------------------------------------------------------


def _hero_bundle(hero: dict, existing_settings: dict | None) -> dict:
    bundle = dict(existing_settings) if existing_settings else section_defaults("hero")
    for attr, key in HERO_FIELDS.items():
        value = hero.get(attr)
        # the StoreState only holds a label for storage-hosted images
        if attr == "image" and existing_settings and display_image(existing_settings.get(key)) == value:
            continue
        bundle[key] = value
    return bundle


def _persist_hero(ctx: _ActionCtx) -> None:
    """Re-persist the whole hero settings bundle, creating the record if needed."""
    hero = ctx.state["homepage"]["hero"]
    sections = ctx.state["homepage"]["sections"]
    try:
        existing = ctx.store.find_section(ctx.merchant_id, PAGE_HOME, "hero")
    except Exception as exc:
        raise ExternalWriteError(f"Hero lookup failed: {exc}") from exc

    if existing:
        bundle = _hero_bundle(hero, decode_settings(existing.get("settings"), existing.get("id")))
        _write(ctx.store.update_section, ctx.merchant_id, existing["id"], {"settings": bundle})
        idx = _find_index(sections, str(existing["id"]))
        if idx != -1:
            sections[idx]["settings"] = simplify_settings("hero", bundle)
        return

    bundle = _hero_bundle(hero, None)
    before = _positions(sections)
    section = {
        "id": _new_id(),
        "type": "hero",
        "position": 0,
        "zone": ZONE_HOME_MAIN,
        "visible": True,
        "settings": simplify_settings("hero", bundle),
    }
    _write(
        ctx.store.insert_section,
        ctx.merchant_id,
        section_record(section["id"], "hero", 0, bundle, zone=ZONE_HOME_MAIN),
    )
    ctx.undo.append(lambda: ctx.store.delete_section(ctx.merchant_id, section["id"]))
    sections.insert(0, section)
    renumber_sections(sections)
    _persist_positions(ctx, before)
    _sort_sections(ctx.state)


def _set_hero_headline(ctx: _ActionCtx) -> None:
    ctx.state["homepage"]["hero"]["headline"] = ctx.payload["headline"]
    _persist_hero(ctx)


def _set_hero_subheadline(ctx: _ActionCtx) -> None:
    ctx.state["homepage"]["hero"]["subheadline"] = ctx.payload["subheadline"]
    _persist_hero(ctx)


def _set_hero_cta(ctx: _ActionCtx) -> None:
    hero = ctx.state["homepage"]["hero"]
    hero["cta_text"] = ctx.payload["text"]
    if ctx.payload.get("link"):
        hero["cta_link"] = ctx.payload["link"]
    _persist_hero(ctx)


def _set_hero_image(ctx: _ActionCtx) -> dict:
    image_id = ctx.payload["image_id"]
    asset = next((a for a in ctx.state["assets"] if a.get("id") == image_id), None)
    resolved = bool(asset and asset.get("url"))
    ctx.state["homepage"]["hero"]["image"] = asset["url"] if resolved else image_id
    _persist_hero(ctx)
    return {"image": ctx.state["homepage"]["hero"]["image"], "resolved": resolved}


def _set_hero_layout(ctx: _ActionCtx) -> None:
    ctx.state["homepage"]["hero"]["layout"] = ctx.payload["layout"]
    _persist_hero(ctx)


# ---------------------------------------------------------------------------
# sections
# ---------------------------------------------------------------------------


def _add_section(ctx: _ActionCtx) -> dict:
    section_type = ctx.payload["section_type"]
    sections = ctx.state["homepage"]["sections"]
    zone = zone_for(section_type, PAGE_HOME)
    settings = section_defaults(section_type)
    settings.update(expand_settings(section_type, ctx.payload.get("settings")))

    before = _positions(sections)
    section = {
        "id": _new_id(),
        "type": section_type,
        "position": 0,
        "zone": zone,
        "visible": True,
        "settings": simplify_settings(section_type, settings),
    }
    members = [s for s in sections if (s.get("zone") or ZONE_HOME_MAIN) == zone]
    requested = ctx.payload.get("position")
    if requested is None or requested >= len(members):
        sections.append(section)
    else:
        sections.insert(sections.index(members[requested]), section)
    renumber_sections(sections)

    _write(
        ctx.store.insert_section,
        ctx.merchant_id,
        section_record(section["id"], section_type, section["position"], settings, zone=zone),
    )
    ctx.undo.append(lambda: ctx.store.delete_section(ctx.merchant_id, section["id"]))
    _persist_positions(ctx, before)
    _sort_sections(ctx.state)
    return {"section_id": section["id"], "position": section["position"]}


def _remove_section(ctx: _ActionCtx) -> dict:
    section_id = ctx.payload["section_id"]
    sections = ctx.state["homepage"]["sections"]
    idx = _find_index(sections, section_id)
    if idx == -1:
        raise DomainError(f"Section not found: {section_id}")
    before = _positions(sections)
    del sections[idx]
    renumber_sections(sections)
    # deletes have no undo step and run last
    _persist_positions(ctx, before)
    _write(ctx.store.delete_section, ctx.merchant_id, section_id)
    _sort_sections(ctx.state)
    return {"section_id": section_id}


def _update_section(ctx: _ActionCtx) -> dict:
    section_id = ctx.payload["section_id"]
    sections = ctx.state["homepage"]["sections"]
    idx = _find_index(sections, section_id)
    if idx == -1:
        raise DomainError(f"Section not found: {section_id}")
    section = sections[idx]
    try:
        record = ctx.store.get_section(ctx.merchant_id, section_id)
    except Exception as exc:
        raise ExternalWriteError(f"Section lookup failed: {exc}") from exc
    if record is None:
        raise ExternalWriteError(f"Section record missing in store: {section_id}")

    changes = expand_settings(section["type"], ctx.payload.get("settings"))
    merged = decode_settings(record.get("settings"), section_id)
    for key, value in list(changes.items()):
        # a label echoed back for a storage-hosted value keeps the stored URL
        if is_storage_url(merged.get(key)) and display_image(merged[key]) == value:
            del changes[key]
    merged.update(changes)
    _write(ctx.store.update_section, ctx.merchant_id, section_id, {"settings": merged})

    section["settings"] = simplify_settings(section["type"], merged)
    if section["type"] == "hero":
        ctx.state["homepage"]["hero"] = hero_from_settings(merged)
    return {"section_id": section_id, "updated_keys": sorted(changes)}


def _reorder_sections(ctx: _ActionCtx) -> dict:
    sections = ctx.state["homepage"]["sections"]
    by_id = {s["id"]: s for s in sections}
    ordered: List[dict] = []
    dropped: List[str] = []
    for section_id in ctx.payload["section_ids"]:
        section = by_id.get(section_id)
        if section is None or section in ordered:
            dropped.append(section_id)
            continue
        ordered.append(section)
    listed = {s["id"] for s in ordered}
    rest = [s for s in sections if s["id"] not in listed]

    before = _positions(sections)
    sections[:] = ordered + rest
    renumber_sections(sections)
    _persist_positions(ctx, before, always=listed)
    _sort_sections(ctx.state)
    if dropped:
        logger.info("reorder_ids_dropped ids=%s", dropped)
    return {"order": [s["id"] for s in sections], "dropped": dropped}


# ---------------------------------------------------------------------------
# brand / template
# ---------------------------------------------------------------------------


def _set_brand_info(ctx: _ActionCtx) -> dict:
    provided = {field: ctx.payload[field] for field in BRAND_COLUMNS if field in ctx.payload}
    if provided:
        updates = {BRAND_COLUMNS[field]: value for field, value in provided.items()}
        _write(ctx.store.update_merchant, ctx.merchant_id, updates)
        ctx.state["brand"].update(provided)
    return {"updated_fields": sorted(provided)}


def _select_template(ctx: _ActionCtx) -> dict:
    template_id = ctx.payload["template_id"]
    _write(ctx.store.update_merchant, ctx.merchant_id, {TEMPLATE_COLUMN: template_id})
    ctx.state["homepage"]["template"] = template_id
    return {"template_id": template_id}


_HANDLERS: Dict[str, Handler] = {
    ActionType.CREATE_PRODUCT.value: _create_product,
    ActionType.UPDATE_PRODUCT.value: _update_product,
    ActionType.DELETE_PRODUCT.value: _delete_product,
    ActionType.SET_HERO_HEADLINE.value: _set_hero_headline,
    ActionType.SET_HERO_SUBHEADLINE.value: _set_hero_subheadline,
    ActionType.SET_HERO_CTA.value: _set_hero_cta,
    ActionType.SET_HERO_IMAGE.value: _set_hero_image,
    ActionType.SET_HERO_LAYOUT.value: _set_hero_layout,
    ActionType.ADD_SECTION.value: _add_section,
    ActionType.REMOVE_SECTION.value: _remove_section,
    ActionType.UPDATE_SECTION.value: _update_section,
    ActionType.REORDER_SECTIONS.value: _reorder_sections,
    ActionType.SELECT_TEMPLATE.value: _select_template,
    ActionType.SET_BRAND_INFO.value: _set_brand_info,
    ActionType.GENERATE_PRODUCT_DESCRIPTIONS.value: _generate_product_descriptions,
}


def handled_action_types() -> frozenset[str]:
    return frozenset(_HANDLERS)


def check_registry_parity() -> None:
    missing_handlers = sorted(set(ACTION_SCHEMAS) - set(_HANDLERS))
    missing_schemas = sorted(set(_HANDLERS) - set(ACTION_SCHEMAS))
    if missing_handlers or missing_schemas:
        raise RegistryDriftError(
            f"Registry drift: no handler for {missing_handlers}, no schema for {missing_schemas}"
        )


check_registry_parity()


def _mutation(action_type: Any, payload: Any) -> Mutation:
    return {
        "type": action_type,
        "payload": copy.deepcopy(payload),
        "success": False,
        "error": None,
        "result": None,
    }


def execute_action(state: StoreState, action: dict, store: StoreBackend) -> dict:
    """Apply one validated action; never mutates ``state``.

    Returns ``{"state": next_state, "mutation": record}``. Domain and external
    write failures come back as a failed mutation with the original state.
    """
    action_type = action.get("type") if isinstance(action, dict) else None
    payload = (action.get("payload") if isinstance(action, dict) else None) or {}
    mutation = _mutation(action_type, payload)

    if action_type not in ACTION_TYPE_VALUES:
        mutation["error"] = f"Unknown action type: {action_type}"
        logger.warning("action_failed type=%s error=%s", action_type, mutation["error"])
        return {"state": state, "mutation": mutation}
    handler = _HANDLERS.get(action_type)
    if handler is None:
        raise RegistryDriftError(f"No handler for action type: {action_type}")

    next_state = copy.deepcopy(state)
    ctx = _ActionCtx(
        state=next_state,
        payload=copy.deepcopy(payload),
        store=store,
        merchant_id=next_state["meta"]["merchant_id"],
    )
    try:
        result = handler(ctx)
    except (DomainError, ExternalWriteError) as exc:
        _rollback(ctx)
        mutation["error"] = str(exc)
        logger.warning("action_failed type=%s error=%s", action_type, exc)
        return {"state": state, "mutation": mutation}
    except Exception as exc:
        _rollback(ctx)
        mutation["error"] = str(exc) or exc.__class__.__name__
        logger.exception("action_error type=%s", action_type)
        return {"state": state, "mutation": mutation}

    next_state["assets"] = build_asset_list(next_state)
    next_state["meta"]["last_updated"] = _now()
    mutation["success"] = True
    mutation["result"] = result
    logger.info("action_applied type=%s merchant_id=%s", action_type, ctx.merchant_id)
    return {"state": next_state, "mutation": mutation}


def execute_actions(state: StoreState, actions: List[dict], store: StoreBackend) -> dict:
    """Apply actions in order, stopping after the first failed mutation."""
    current = state
    mutations: List[Mutation] = []
    for action in actions:
        outcome = execute_action(current, action, store)
        current = outcome["state"]
        mutations.append(outcome["mutation"])
        if not outcome["mutation"]["success"]:
            break
    return {"state": current, "mutations": mutations}
