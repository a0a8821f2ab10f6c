"""LLM transport for the storefront agent.

``OpenAIChatClient`` talks to an OpenAI-compatible chat completions endpoint.
``MockLLM`` answers a few recognizable instructions with canned JSON so the
service is usable without an API key.
"""

from __future__ import annotations

import json
import logging
import os
import time

import httpx

from action_schema import ActionType
from store_agent import AgentConfig

logger = logging.getLogger("storefront.llm")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "").strip() or "https://api.openai.com"
OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", "120"))

_RETRY_STATUS = (429, 500, 502, 503, 504)


class LLMError(RuntimeError):
    pass


def _openai_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        return f"{base}{path}"
    return f"{base}/v1{path}"


class OpenAIChatClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = OPENAI_TIMEOUT,
        attempts: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.attempts = attempts
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _post(self, payload: dict) -> dict:
        url = _openai_url(self.base_url, "/chat/completions")
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        last_exc: Exception | None = None
        for attempt in range(self.attempts):
            try:
                resp = self._client.post(url, json=payload, headers=headers)
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning("llm_transport_error attempt=%s error=%s", attempt + 1, exc)
            else:
                if resp.status_code < 400:
                    return resp.json()
                if resp.status_code not in _RETRY_STATUS:
                    raise LLMError(f"LLM request failed: {resp.status_code} {resp.text[:500]}")
                last_exc = LLMError(f"LLM request failed: {resp.status_code}")
                logger.warning("llm_retry attempt=%s status=%s", attempt + 1, resp.status_code)
            if attempt + 1 < self.attempts:
                time.sleep(0.6 * (attempt + 1))
        if last_exc:
            raise LLMError(str(last_exc)) from last_exc
        raise LLMError("LLM request failed")

    def complete(self, system_prompt: str, user_message: str, config: AgentConfig) -> str:
        payload = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        data = self._post(payload)
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("LLM returned no choices")
        content = (choices[0].get("message") or {}).get("content")
        return content if isinstance(content, str) else ""

    def close(self) -> None:
        self._client.close()


class MockLLM:
    """Keyword-driven stand-in used when no API key is configured."""

    def complete(self, system_prompt: str, user_message: str, config: AgentConfig) -> str:
        text = user_message.lower()
        if "headline" in text or "hero" in text:
            return json.dumps(
                {
                    "thinking": "User wants to update the hero headline",
                    "actions": [
                        {
                            "type": ActionType.SET_HERO_HEADLINE.value,
                            "payload": {"headline": "Welcome to Our Store\nDiscover Amazing Products"},
                        }
                    ],
                    "explanation": "I've updated the hero headline with a compelling message.",
                }
            )
        if "product" in text and "add" in text:
            return json.dumps(
                {
                    "thinking": "User wants to add a new product",
                    "actions": [
                        {
                            "type": ActionType.CREATE_PRODUCT.value,
                            "payload": {
                                "title": "Sample Product",
                                "price": 2999,
                                "description": "A wonderful product for your needs.",
                                "category": "general",
                                "inventory": 50,
                            },
                        }
                    ],
                    "explanation": "I've added a new sample product to your store.",
                }
            )
        if "section" in text and "add" in text:
            return json.dumps(
                {
                    "thinking": "User wants to add a new section",
                    "actions": [
                        {
                            "type": ActionType.ADD_SECTION.value,
                            "payload": {
                                "section_type": "newsletter",
                                "settings": {
                                    "title": "Stay Updated",
                                    "subtitle": "Subscribe to our newsletter for exclusive offers",
                                },
                            },
                        }
                    ],
                    "explanation": "I've added a newsletter section to capture email signups.",
                }
            )
        return json.dumps(
            {
                "thinking": "Understanding the request",
                "actions": [],
                "explanation": (
                    "Demo mode has no model configured. Try \"update the hero headline\", "
                    "\"add a new product\" or \"add a section\"."
                ),
            }
        )


def build_llm():
    if OPENAI_API_KEY:
        return OpenAIChatClient(OPENAI_API_KEY)
    logger.warning("llm_mock_mode reason=OPENAI_API_KEY not set")
    return MockLLM()
