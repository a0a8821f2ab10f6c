"""Action schema registry: the only commands the agent may emit."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from storekit.section_catalog import known_section_types


class RegistryDriftError(RuntimeError):
    """The schema registry and the executor disagree about an action type."""


class ActionType(str, Enum):
    CREATE_PRODUCT = "CreateProduct"
    UPDATE_PRODUCT = "UpdateProduct"
    DELETE_PRODUCT = "DeleteProduct"

    SET_HERO_HEADLINE = "SetHeroHeadline"
    SET_HERO_SUBHEADLINE = "SetHeroSubheadline"
    SET_HERO_CTA = "SetHeroCTA"
    SET_HERO_IMAGE = "SetHeroImage"
    SET_HERO_LAYOUT = "SetHeroLayout"

    ADD_SECTION = "AddSection"
    REMOVE_SECTION = "RemoveSection"
    UPDATE_SECTION = "UpdateSection"
    REORDER_SECTIONS = "ReorderSections"

    SELECT_TEMPLATE = "SelectTemplate"

    SET_BRAND_INFO = "SetBrandInfo"

    GENERATE_PRODUCT_DESCRIPTIONS = "GenerateProductDescriptions"


ACTION_TYPE_VALUES = frozenset(t.value for t in ActionType)

HERO_LAYOUTS = ["centered", "left", "split"]

DESCRIPTION_STYLES = ["short", "detailed", "persuasive", "minimal"]

BRAND_TONES: Dict[str, Dict[str, str]] = {
    "premium": {
        "description": "Sophisticated, luxurious, exclusive",
        "copy_style": "Elegant and refined language, emphasizes quality and craftsmanship",
    },
    "playful": {
        "description": "Fun, energetic, youthful",
        "copy_style": "Casual tone, friendly and approachable",
    },
    "minimal": {
        "description": "Clean, simple, focused",
        "copy_style": "Concise and direct, lets products speak for themselves",
    },
    "bold": {
        "description": "Confident, impactful, striking",
        "copy_style": "Strong statements, action-oriented, memorable",
    },
    "warm": {
        "description": "Friendly, caring, personal",
        "copy_style": "Conversational, empathetic, community-focused",
    },
    "professional": {
        "description": "Trustworthy, expert, reliable",
        "copy_style": "Clear and authoritative, fact-based, credibility-focused",
    },
}

STORE_CATEGORIES = [
    "skincare",
    "fashion",
    "electronics",
    "home_decor",
    "food_beverage",
    "jewelry",
    "sports",
    "books",
    "art",
    "wellness",
    "beauty",
    "accessories",
    "kids",
    "pets",
    "outdoor",
    "vintage",
    "handmade",
    "subscription",
]


def _product_fields() -> Dict[str, dict]:
    return {
        "title": {"type": "string", "minLength": 1, "maxLength": 200},
        "price": {"type": "number", "min": 0, "integer": True},
        "description": {"type": "string", "maxLength": 2000},
        "category": {"type": "string", "maxLength": 100},
        "inventory": {"type": "number", "min": 0, "integer": True},
        "images": {"type": "array", "items": {"type": "string"}},
        "tags": {"type": "array", "items": {"type": "string"}},
        "is_active": {"type": "boolean"},
    }


ACTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    ActionType.CREATE_PRODUCT.value: {
        "required": ["title", "price"],
        "properties": _product_fields(),
    },
    ActionType.UPDATE_PRODUCT.value: {
        "required": ["product_id"],
        "properties": {"product_id": {"type": "string", "minLength": 1}, **_product_fields()},
    },
    ActionType.DELETE_PRODUCT.value: {
        "required": ["product_id"],
        "properties": {"product_id": {"type": "string", "minLength": 1}},
    },
    ActionType.SET_HERO_HEADLINE.value: {
        "required": ["headline"],
        "properties": {"headline": {"type": "string", "minLength": 1, "maxLength": 200}},
    },
    ActionType.SET_HERO_SUBHEADLINE.value: {
        "required": ["subheadline"],
        "properties": {"subheadline": {"type": "string", "maxLength": 500}},
    },
    ActionType.SET_HERO_CTA.value: {
        "required": ["text"],
        "properties": {
            "text": {"type": "string", "minLength": 1, "maxLength": 50},
            "link": {"type": "string", "maxLength": 200},
        },
    },
    ActionType.SET_HERO_IMAGE.value: {
        "required": ["image_id"],
        "properties": {"image_id": {"type": "string", "minLength": 1}},
    },
    ActionType.SET_HERO_LAYOUT.value: {
        "required": ["layout"],
        "properties": {"layout": {"type": "string", "enum": HERO_LAYOUTS}},
    },
    ActionType.ADD_SECTION.value: {
        "required": ["section_type"],
        "properties": {
            "section_type": {"type": "string", "enum": known_section_types()},
            "position": {"type": "number", "min": 0, "integer": True},
            "settings": {"type": "object"},
        },
    },
    ActionType.REMOVE_SECTION.value: {
        "required": ["section_id"],
        "properties": {"section_id": {"type": "string", "minLength": 1}},
    },
    ActionType.UPDATE_SECTION.value: {
        "required": ["section_id", "settings"],
        "properties": {
            "section_id": {"type": "string", "minLength": 1},
            "settings": {"type": "object"},
        },
    },
    ActionType.REORDER_SECTIONS.value: {
        "required": ["section_ids"],
        "properties": {"section_ids": {"type": "array", "items": {"type": "string"}}},
    },
    ActionType.SELECT_TEMPLATE.value: {
        "required": ["template_id"],
        "properties": {"template_id": {"type": "string", "minLength": 1, "maxLength": 100}},
    },
    ActionType.SET_BRAND_INFO.value: {
        "required": [],
        "properties": {
            "name": {"type": "string", "maxLength": 100},
            "category": {"type": "string", "maxLength": 50},
            "tone": {"type": "string", "enum": list(BRAND_TONES.keys())},
            "tagline": {"type": "string", "maxLength": 200},
        },
    },
    ActionType.GENERATE_PRODUCT_DESCRIPTIONS.value: {
        "required": ["descriptions"],
        "properties": {
            "descriptions": {"type": "object"},
            "product_ids": {"type": "array", "items": {"type": "string"}},
            "style": {"type": "string", "enum": DESCRIPTION_STYLES},
        },
    },
}


def schema_for(action_type: str) -> Dict[str, Any]:
    """Return the schema of a registered action type.

    Raises ``RegistryDriftError`` for a type that is declared in ``ActionType``
    but has no schema; callers are expected to reject unknown types first.
    """
    schema = ACTION_SCHEMAS.get(action_type)
    if schema is None:
        raise RegistryDriftError(f"No schema defined for action type: {action_type}")
    return schema


def optional_fields(action_type: str) -> list[str]:
    schema = schema_for(action_type)
    required = set(schema.get("required") or [])
    return [name for name in schema.get("properties", {}) if name not in required]
