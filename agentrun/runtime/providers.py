"""LLM providers used by the step executor.

Providers take a system prompt plus chat messages and return the reply
text. Two are available:

    StubProvider       deterministic, no network; default mode and used in tests
    AnthropicProvider  Anthropic Messages API (or a compatible endpoint) via httpx

Usage:
    from agentrun.runtime.providers import get_provider

    provider = get_provider()  # honours AGENTRUN_PROVIDER / runtime.yaml
    text = await provider.generate(system, [{"role": "user", "content": "..."}])
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from ..config.runtime_config import (
    get_provider_base_url,
    get_provider_mode,
    get_provider_model,
    get_provider_required_env_keys,
    get_provider_timeout,
)

logger = logging.getLogger(__name__)

Message = Dict[str, str]

ANTHROPIC_VERSION = "2023-06-01"


class ProviderError(Exception):
    """The LLM call failed or returned an unusable reply."""


class LLMProvider(ABC):
    """Abstract base for LLM backends."""

    name: str = "provider"

    @abstractmethod
    async def generate(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> str:
        """Generate a reply.

        Args:
            system: System prompt; may be empty.
            messages: Chat messages, oldest first.
            max_tokens: Upper bound on reply length.
            temperature: Sampling temperature.

        Returns:
            Reply text.

        Raises:
            ProviderError: If the call fails.
        """


class StubProvider(LLMProvider):
    """Deterministic provider for local runs and tests.

    Replies are taken from ``responses`` in order while any remain; an
    Exception entry is raised instead of returned. Once exhausted, the
    ``responder`` callable (if given) produces the reply, otherwise the last
    user message is echoed back.

    Attributes:
        calls: Every call received, as dicts of its arguments.
    """

    name = "stub"

    def __init__(
        self,
        responses: Optional[Sequence[Union[str, Exception]]] = None,
        responder: Optional[Callable[[str, List[Message]], str]] = None,
    ):
        self._responses = list(responses or [])
        self._responder = responder
        self.calls: List[Dict[str, Any]] = []

    async def generate(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> str:
        self.calls.append(
            {
                "system": system,
                "messages": list(messages),
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self._responses:
            reply = self._responses.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        if self._responder is not None:
            return self._responder(system, messages)
        user_messages = [m.get("content", "") for m in messages if m.get("role") == "user"]
        return user_messages[-1] if user_messages else ""


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider.

    Works against any Anthropic-compatible endpoint; set ANTHROPIC_BASE_URL
    to point elsewhere.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model or get_provider_model()
        self.base_url = (base_url or get_provider_base_url()).rstrip("/")
        self.timeout = timeout if timeout is not None else get_provider_timeout()
        self._client = client

    async def generate(
        self,
        system: str,
        messages: List[Message],
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        url = f"{self.base_url}/v1/messages"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"LLM request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(f"LLM request failed ({response.status_code}): {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("LLM response is not valid JSON") from e

        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise ProviderError("LLM response has no content blocks")
        return "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )


def get_provider() -> LLMProvider:
    """Build the provider selected by configuration.

    Falls back to the stub provider (with a warning) when the configured
    provider's required environment variables are missing.
    """
    mode = get_provider_mode()
    if mode == "stub":
        return StubProvider()

    missing = [key for key in get_provider_required_env_keys() if not os.environ.get(key)]
    if missing:
        logger.warning(
            "Provider '%s' requires %s; falling back to stub provider",
            mode,
            ", ".join(missing),
        )
        return StubProvider()

    return AnthropicProvider(api_key=os.environ.get("ANTHROPIC_API_KEY", ""))
