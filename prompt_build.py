"""System prompt and user message text for the storefront agent."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from action_schema import (
    ACTION_SCHEMAS,
    BRAND_TONES,
    HERO_LAYOUTS,
    STORE_CATEGORIES,
    ActionType,
    optional_fields,
)
from state_loader import StoreState, available_section_types, summarize_state


ACTION_DOCS: Dict[str, Dict[str, Any]] = {
    ActionType.CREATE_PRODUCT.value: {
        "description": "Create a new product (price in cents)",
        "example": {
            "title": "Hydrating Serum",
            "price": 4999,
            "description": "A luxurious hydrating serum for all skin types",
            "category": "serums",
            "inventory": 100,
            "tags": ["hydrating", "bestseller"],
        },
    },
    ActionType.UPDATE_PRODUCT.value: {
        "description": "Update an existing product; only the given fields change",
        "example": {"product_id": "prod_123", "description": "Updated product description"},
    },
    ActionType.DELETE_PRODUCT.value: {
        "description": "Delete a product",
        "example": {"product_id": "prod_123"},
    },
    ActionType.SET_HERO_HEADLINE.value: {
        "description": "Set the hero section headline",
        "example": {"headline": "Elevate Your Skincare\nRoutine"},
    },
    ActionType.SET_HERO_SUBHEADLINE.value: {
        "description": "Set the hero section subheadline",
        "example": {"subheadline": "Premium formulas for radiant, healthy skin"},
    },
    ActionType.SET_HERO_CTA.value: {
        "description": "Set the hero call-to-action button",
        "example": {"text": "Shop Collection", "link": "/products"},
    },
    ActionType.SET_HERO_IMAGE.value: {
        "description": "Set the hero background image by asset id",
        "example": {"image_id": "asset_1"},
    },
    ActionType.SET_HERO_LAYOUT.value: {
        "description": "Set the hero layout style",
        "values": HERO_LAYOUTS,
        "example": {"layout": "centered"},
    },
    ActionType.ADD_SECTION.value: {
        "description": "Add a new section to the homepage",
        "example": {"section_type": "newsletter", "position": 3, "settings": {"title": "Join Our Newsletter"}},
    },
    ActionType.REMOVE_SECTION.value: {
        "description": "Remove a section from the homepage",
        "example": {"section_id": "section_123"},
    },
    ActionType.UPDATE_SECTION.value: {
        "description": "Update a section's settings",
        "example": {"section_id": "section_123", "settings": {"title": "New Title"}},
    },
    ActionType.REORDER_SECTIONS.value: {
        "description": "Reorder homepage sections; ids listed first, in order",
        "example": {"section_ids": ["section_2", "section_1"]},
    },
    ActionType.SELECT_TEMPLATE.value: {
        "description": "Switch the storefront template",
        "example": {"template_id": "default"},
    },
    ActionType.SET_BRAND_INFO.value: {
        "description": "Update brand information",
        "example": {"name": "Glow Skincare", "category": "skincare", "tone": "premium", "tagline": "Radiance Redefined"},
    },
    ActionType.GENERATE_PRODUCT_DESCRIPTIONS.value: {
        "description": "Write descriptions for several products at once (product id -> text)",
        "example": {"descriptions": {"prod_123": "Lightweight daily moisturizer."}, "style": "short"},
    },
}

_RESPONSE_EXAMPLE = {
    "thinking": "User wants to update the hero headline to something more compelling",
    "actions": [{"type": "SetHeroHeadline", "payload": {"headline": "Premium Skincare\nFor Radiant Skin"}}],
    "explanation": "I've updated the hero headline to emphasize the premium skincare positioning.",
}


def _action_doc(action_type: str) -> str:
    doc = ACTION_DOCS.get(action_type) or {}
    schema = ACTION_SCHEMAS[action_type]
    lines = [f"### {action_type}", doc.get("description") or action_type]
    if schema.get("required"):
        lines.append(f"Required: {', '.join(schema['required'])}")
    optional = optional_fields(action_type)
    if optional:
        lines.append(f"Optional: {', '.join(optional)}")
    if doc.get("values"):
        lines.append(f"Values: {', '.join(doc['values'])}")
    if doc.get("example"):
        example = {"type": action_type, "payload": doc["example"]}
        lines.append(f"Example: {json.dumps(example, ensure_ascii=False)}")
    return "\n".join(lines)


def build_action_docs() -> str:
    return "\n\n".join(_action_doc(action_type) for action_type in ACTION_SCHEMAS)


def build_section_docs() -> str:
    return "\n".join(
        f'- "{entry["type"]}": {entry["name"]} - {entry["description"]}' for entry in available_section_types()
    )


def build_system_prompt(state: StoreState) -> str:
    tones = "\n".join(f'- "{key}": {info["description"]}' for key, info in BRAND_TONES.items())
    tone = state["brand"].get("tone") or "minimal"
    copy_style = (BRAND_TONES.get(tone) or BRAND_TONES["minimal"])["copy_style"]
    parts: List[str] = [
        "You are a storefront builder assistant. You help merchants create and customize "
        "their online store by emitting structured actions.",
        "## YOUR ROLE\n"
        "1. Read the current store state (JSON)\n"
        "2. Read the merchant's instruction\n"
        "3. Emit JSON actions that modify the store\n"
        "4. Never claim to have done anything an action did not do",
        "## CONSTRAINTS\n"
        "- Only emit actions listed below\n"
        "- Only reference ids that appear in the store state\n"
        "- You cannot browse the web, call external APIs, or generate images\n"
        "- If a request cannot be done with the available actions, explain why and emit no actions",
        "## AVAILABLE ACTIONS\n\n" + build_action_docs(),
        "## SECTION TYPES\n\nAvailable section types for AddSection:\n" + build_section_docs(),
        "## BRAND TONES\n\nAvailable tones for SetBrandInfo:\n" + tones,
        "## STORE CATEGORIES\n\nCommon categories: " + ", ".join(STORE_CATEGORIES[:12]),
        "## RESPONSE FORMAT\n\n"
        'Always respond with a JSON object containing "thinking" (1-2 sentences), '
        '"actions" (array of action objects) and "explanation" (what the actions do).\n\n'
        "```json\n" + json.dumps(_RESPONSE_EXAMPLE, indent=2, ensure_ascii=False) + "\n```",
        "## CURRENT STORE STATE\n\n" + summarize_state(state),
        "## FULL STATE JSON\n\n```json\n" + json.dumps(state, indent=2, ensure_ascii=False) + "\n```",
        "## GUIDELINES FOR COPY\n\n"
        f"- Match the brand tone: {tone} ({copy_style})\n"
        "- Keep headlines punchy (under 10 words); use \\n for line breaks\n"
        "- CTAs should be action-oriented (e.g. \"Shop Now\", \"Discover More\")\n"
        "- Product descriptions should cover features and benefits",
        "## GUIDELINES FOR STORE STRUCTURE\n\n"
        "- Every store needs a hero (headline, subheadline, CTA)\n"
        "- Featured products showcase the best items; trust badges build credibility\n"
        "- Keep the homepage focused: 4-6 sections",
        "Respond to the merchant's instruction with valid JSON only.",
    ]
    return "\n\n".join(parts)


def build_user_message(instruction: str, context: dict | None = None) -> str:
    message = instruction or ""
    context = context or {}
    selected = context.get("selected_products") or []
    if selected:
        lines = [f"- {p.get('title')} ({p.get('id')})" for p in selected if isinstance(p, dict)]
        message += "\n\nContext: The following products are selected:\n" + "\n".join(lines)
    current = context.get("current_section")
    if isinstance(current, dict) and current.get("id"):
        message += f"\n\nContext: Currently editing section {current['id']} ({current.get('type')})"
    return message
