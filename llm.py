"""
llm.py: the two LLM providers behind the analysis orchestrator.

  AnthropicProvider  primary, official SDK (AsyncAnthropic) on the shared httpx client
  TogetherProvider   fallback, OpenAI-compatible chat completions via ProviderClient

Both expose the same three calls: list_models(), select_model(), complete().
Neither retries; RetryPolicy in the orchestrator owns that.
"""

import logging
from typing import Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from errors import (
    ProviderError,
    ProviderFormatError,
    ProviderHttpError,
    ProviderNetworkError,
    ProviderTimeoutError,
    QuotaError,
    is_quota_failure,
)
from http_client import ProviderClient, RateLimitInfo

logger = logging.getLogger("seo-analyzer.llm")

TOGETHER_BASE = "https://api.together.xyz/v1"

CLAUDE_MODEL_CANDIDATES = [
    "claude-sonnet-4-5",
    "claude-3-7-sonnet-latest",
    "claude-3-5-haiku-latest",
]

TOGETHER_MODEL_CANDIDATES = [
    "mistralai/Mixtral-8x7B-Instruct-v0.1",
    "meta-llama/Llama-2-70b-chat-hf",
    "meta-llama/Llama-2-13b-chat-hf",
    "togethercomputer/llama-2-70b",
    "togethercomputer/llama-2-13b",
]


class LLMProvider:
    name = "llm"

    def __init__(self, preferred_models: list[str]):
        # dict.fromkeys keeps order and drops duplicates / blanks
        self.preferred_models = [m for m in dict.fromkeys(preferred_models) if m]

    async def list_models(self) -> list[str]:
        raise NotImplementedError

    async def complete(self, model: str, prompt: str, system: Optional[str] = None) -> str:
        raise NotImplementedError

    async def select_model(self) -> str:
        """
        First preferred model the provider actually lists. If the probe fails
        or nothing matches, fall back to the first preference instead of aborting.
        """
        default = self.preferred_models[0]
        try:
            available = await self.list_models()
        except ProviderError as e:
            logger.warning(f"{self.name}: model probe failed ({e}) - using {default}")
            return default

        if not available:
            logger.warning(f"{self.name}: model list empty - using {default}")
            return default

        for model in self.preferred_models:
            if model in available:
                logger.info(f"{self.name}: selected model {model}")
                return model
        logger.warning(f"{self.name}: no preferred model listed - using {default}")
        return default


# =============================================================================
# Anthropic (primary)
# =============================================================================

class AnthropicProvider(LLMProvider):
    name = "anthropic"
    max_tokens = 4000

    def __init__(self, api_key: str, http: httpx.AsyncClient, model: str, timeout: float = 60.0):
        super().__init__([model, *CLAUDE_MODEL_CANDIDATES])
        self.client = AsyncAnthropic(
            api_key=api_key,
            http_client=http,
            max_retries=0,
            timeout=timeout,
        )

    def _translate(self, e: Exception) -> ProviderError:
        if isinstance(e, anthropic.APIStatusError):
            body = e.response.text if e.response is not None else str(e)
            rate_limit = RateLimitInfo.from_headers(e.response.headers if e.response is not None else None)
            if is_quota_failure(e.status_code, body):
                return QuotaError(self.name, e.status_code, body, rate_limit)
            return ProviderHttpError(self.name, e.status_code, body, rate_limit)
        if isinstance(e, anthropic.APITimeoutError):
            return ProviderTimeoutError(self.name)
        if isinstance(e, anthropic.APIConnectionError):
            return ProviderNetworkError(self.name, str(e))
        return ProviderFormatError(self.name, f"{type(e).__name__}: {e}")

    async def list_models(self) -> list[str]:
        try:
            page = await self.client.models.list(limit=100)
        except anthropic.AnthropicError as e:
            raise self._translate(e) from e
        return [m.id for m in page.data]

    async def complete(self, model: str, prompt: str, system: Optional[str] = None) -> str:
        kwargs = {"system": system} if system else {}
        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except anthropic.AnthropicError as e:
            err = self._translate(e)
            logger.warning(f"Anthropic call failed: {err}")
            raise err from e

        text = "".join(
            block.text for block in (response.content or []) if getattr(block, "type", "") == "text"
        )
        if not text.strip():
            raise ProviderFormatError(self.name, "response has no text content")
        return text


# =============================================================================
# Together (fallback)
# =============================================================================

class TogetherProvider(LLMProvider):
    name = "together"
    max_tokens = 3000

    def __init__(self, api_key: str, client: ProviderClient):
        super().__init__(TOGETHER_MODEL_CANDIDATES)
        self.client = client
        self.headers = {"Authorization": f"Bearer {api_key}"}

    async def list_models(self) -> list[str]:
        data = await self.client.request_json(
            self.name, "GET", f"{TOGETHER_BASE}/models", headers=self.headers, expect=(list, dict)
        )
        models = data.get("data", []) if isinstance(data, dict) else data
        names = []
        for m in models:
            if isinstance(m, dict):
                name = m.get("id") or m.get("name")
                if isinstance(name, str):
                    names.append(name)
        return names

    async def complete(self, model: str, prompt: str, system: Optional[str] = None) -> str:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        data = await self.client.request_json(
            self.name,
            "POST",
            f"{TOGETHER_BASE}/chat/completions",
            headers=self.headers,
            json={
                "model": model,
                "messages": messages,
                "max_tokens": self.max_tokens,
                "temperature": 0.7,
                "top_p": 0.9,
                "repetition_penalty": 1.1,
                "stop": ["</s>"],
            },
            required=("choices",),
        )

        choices = data["choices"]
        if not isinstance(choices, list) or not choices:
            raise ProviderFormatError(self.name, "missing or empty choices array")
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") if isinstance(first.get("message"), dict) else {}
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderFormatError(self.name, "missing content in response")
        return content
