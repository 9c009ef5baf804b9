"""
AI Completion Adapter

Single-turn chat completion against OpenAI or Anthropic.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_MODELS = {
    "openai": "gpt-3.5-turbo",
    "anthropic": "claude-3-sonnet-20240229",
}


class AiCompletionAdapter:
    def __init__(
        self,
        client: httpx.AsyncClient,
        openai_api_key: str = "",
        anthropic_api_key: str = "",
        timeout: float = 60.0,
    ):
        self._client = client
        self.openai_api_key = openai_api_key
        self.anthropic_api_key = anthropic_api_key
        self.timeout = timeout

    async def complete(
        self,
        provider: str,
        prompt: str,
        model: str = "",
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> dict[str, Any]:
        """
        Returns:
            {"success", "response", "tokens_used", "provider", "model", "error", "duration_ms"}
        """
        provider = (provider or "openai").lower()
        model = model or DEFAULT_MODELS.get(provider, "")

        if not prompt:
            return {"success": False, "error": "Prompt is required", "duration_ms": 0}

        if provider == "openai":
            if not self.openai_api_key:
                return {"success": False, "error": "OpenAI API key not configured", "duration_ms": 0}
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})
            url = OPENAI_CHAT_URL
            headers = {"Authorization": f"Bearer {self.openai_api_key}"}
            payload: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        elif provider == "anthropic":
            if not self.anthropic_api_key:
                return {"success": False, "error": "Anthropic API key not configured", "duration_ms": 0}
            url = ANTHROPIC_MESSAGES_URL
            headers = {"x-api-key": self.anthropic_api_key, "anthropic-version": ANTHROPIC_VERSION}
            payload = {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system_prompt:
                payload["system"] = system_prompt
        else:
            return {
                "success": False,
                "error": f'Invalid provider "{provider}". Use "openai" or "anthropic"',
                "duration_ms": 0,
            }

        logger.info(f"[AI Completion] Calling {provider} ({model})")
        start_time = time.time()
        try:
            response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            duration_ms = int((time.time() - start_time) * 1000)
            data = response.json()
            if response.status_code >= 400:
                message = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
                return {
                    "success": False,
                    "error": message or f"{provider} API returned HTTP {response.status_code}",
                    "duration_ms": duration_ms,
                }

            if provider == "openai":
                choices = data.get("choices") or [{}]
                text = ((choices[0] or {}).get("message") or {}).get("content") or ""
                tokens = (data.get("usage") or {}).get("total_tokens") or 0
            else:
                content = data.get("content") or [{}]
                text = (content[0] or {}).get("text") or ""
                usage = data.get("usage") or {}
                tokens = (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)

            logger.info(f"[AI Completion] {provider} completed ({tokens} tokens, {duration_ms}ms)")
            return {
                "success": True,
                "response": text,
                "tokens_used": tokens,
                "provider": provider,
                "model": model,
                "error": None,
                "duration_ms": duration_ms,
            }

        except (httpx.HTTPError, ValueError) as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[AI Completion] {provider} request failed: {e}")
            return {"success": False, "error": str(e), "duration_ms": duration_ms}
