"""
Async chat-completion client for OpenAI-compatible APIs (OpenAI, Z.AI/GLM, DeepSeek, etc.).
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar

import openai
from dotenv import load_dotenv
from openai import AsyncOpenAI

from .errors import ServiceError, ServiceTimeout, ServiceUnavailable

# Load .env file if it exists
project_root = Path(__file__).resolve().parents[2]
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)


LLM_BASE_URL = os.getenv("LLM_BASE_URL")
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
# Model used for analysis, reflection and reranking prompts
LLM_AUX_MODEL = os.getenv("LLM_AUX_MODEL", "gpt-4o-mini")
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S")) if os.getenv("LLM_TIMEOUT_S") else None

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


@dataclass
class Completion:
    """Text returned by a completion call plus token accounting when the API reports it."""

    text: str
    usage: Optional[TokenUsage] = None


class CompletionService(Protocol):
    """Anything that can complete a chat conversation."""

    async def complete(
        self,
        system_prompt: Optional[str],
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        ...


async def call_with_retries(
    call: Callable[[], Awaitable[T]],
    *,
    service: str,
    max_retries: int = LLM_MAX_RETRIES,
    backoff_base: float = 1.0,
) -> T:
    """
    Await call(), retrying connection errors, timeouts, 429 and 5xx with exponential
    backoff and jitter. Everything else, and the final failure, raises ServiceError.
    """
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except openai.APITimeoutError as e:
            error: ServiceError = ServiceTimeout(f"{service} request timed out: {e}")
        except openai.APIConnectionError as e:
            error = ServiceUnavailable(f"{service} unreachable: {e}")
        except (openai.RateLimitError, openai.InternalServerError) as e:
            error = ServiceUnavailable(f"{service} returned {e.status_code}: {e}")
        except openai.APIStatusError as e:
            raise ServiceUnavailable(f"{service} returned {e.status_code}: {e}") from e

        if attempt >= attempts:
            logger.error("%s failed after %s attempts: %s", service, attempts, error)
            raise error
        backoff = backoff_base * (2 ** (attempt - 1)) + random.uniform(0, backoff_base)
        logger.warning(
            "%s call failed (%s). Retrying in %s s (attempt %s/%s)",
            service,
            error,
            round(backoff, 2),
            attempt,
            attempts,
        )
        await asyncio.sleep(backoff)
    raise AssertionError("unreachable")


def _resolve_client_params(
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> tuple[str, str, Optional[str]]:
    """Resolve model, api_key, base_url from args or env."""
    model = model_name or LLM_MODEL
    key = api_key or LLM_API_KEY or ""
    base = base_url or LLM_BASE_URL
    return model, key, base


class CompletionClient:
    """OpenAI-compatible async chat client with bounded retry."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = LLM_TIMEOUT_S,
        max_retries: int = LLM_MAX_RETRIES,
        backoff_base: float = 1.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model_name, key, self.base_url = _resolve_client_params(model_name, api_key, base_url)
        if client is None:
            if not key:
                raise ValueError("API key required. Set LLM_API_KEY or OPENAI_API_KEY.")
            # Retries are handled by call_with_retries, not by the SDK.
            client = AsyncOpenAI(base_url=self.base_url, api_key=key, max_retries=0)
        self.client = client
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def complete(
        self,
        system_prompt: Optional[str],
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        """Run one chat completion. Raises ServiceError subclasses on failure."""
        chat: List[dict] = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend({"role": m["role"], "content": m["content"]} for m in messages)

        create_kw: dict = {
            "model": self.model_name,
            "messages": chat,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.timeout is not None:
            create_kw["timeout"] = self.timeout
        # Z.AI: disable thinking so the model returns directly in content
        if self.base_url and "z.ai" in self.base_url.lower():
            create_kw["extra_body"] = {"thinking": {"type": "disabled"}}

        response = await call_with_retries(
            lambda: self.client.chat.completions.create(**create_kw),
            service="completion",
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
        )

        text = ""
        if response.choices:
            msg = response.choices[0].message
            text = msg.content or ""
            if not text.strip():
                logger.warning(
                    "Empty content in completion (finish_reason=%s)",
                    getattr(response.choices[0], "finish_reason", "?"),
                )
        else:
            logger.warning("Completion response had no choices")

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return Completion(text=text.strip(), usage=usage)


def create_client(
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    **kwargs,
) -> CompletionClient:
    """Create an OpenAI-compatible completion client."""
    return CompletionClient(model_name=model_name, api_key=api_key, base_url=base_url, **kwargs)
