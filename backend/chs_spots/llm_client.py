"""Chat-completions client for the LLM review step."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .json_utils import extract_json_payload
from .logging_config import get_logger
from .settings import LLMCredentials, settings

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_RETRY_DELAY_SECONDS = 2.0

# pooled connections belong to the loop that opened them
_client: httpx.AsyncClient | None = None
_client_loop: asyncio.AbstractEventLoop | None = None


class LLMUnavailable(RuntimeError):
    """One chat attempt failed (transport error, non-2xx, undecodable body)."""


class LLMRateLimited(LLMUnavailable):
    """The endpoint answered 429; the caller backs off, this client does not retry."""


class LLMNotConfigured(LLMUnavailable):
    """No api key; retrying cannot help."""


@dataclass(frozen=True, slots=True)
class ChatResult:
    content: str
    parsed: Any = None


def _headers(credentials: LLMCredentials) -> dict[str, str]:
    if not credentials.api_key:
        raise LLMNotConfigured("LLM api key not configured")
    return {
        "Authorization": f"Bearer {credentials.api_key}",
        "Content-Type": "application/json",
    }


async def _get_client() -> httpx.AsyncClient:
    global _client, _client_loop
    loop = asyncio.get_running_loop()
    if _client is not None and _client_loop is not loop:
        # opened under an earlier asyncio.run; its loop is gone, so drop it unclosed
        logger.debug("llm_client_rebound")
        _client = None
    if _client is None:
        timeout = httpx.Timeout(
            settings.LLM_REVIEW_TIMEOUT_SECONDS,
            connect=settings.LLM_CONNECT_TIMEOUT_SECONDS,
        )
        _client = httpx.AsyncClient(timeout=timeout)
        _client_loop = loop
    return _client


async def close_client() -> None:
    global _client, _client_loop
    client, loop = _client, _client_loop
    _client = None
    _client_loop = None
    if client is not None and loop is asyncio.get_running_loop():
        await client.aclose()


async def _post_chat(
    client: httpx.AsyncClient,
    credentials: LLMCredentials,
    payload: dict[str, Any],
    timeout: float,
) -> str:
    url = f"{credentials.base_url.rstrip('/')}/chat/completions"
    headers = _headers(credentials)
    try:
        response = await client.post(url, json=payload, headers=headers, timeout=timeout)
    except (httpx.HTTPError, RuntimeError) as exc:
        # RuntimeError: a transport torn down with its event loop
        raise LLMUnavailable(f"Request failed: {exc!r}") from exc
    if response.status_code == 429:
        raise LLMRateLimited("Rate limited (429)")
    if response.status_code >= 400:
        raise LLMUnavailable(f"LLM API {response.status_code}: {response.text[:200]}")
    try:
        data = response.json()
    except ValueError as exc:
        raise LLMUnavailable("Invalid JSON from LLM API") from exc
    choices = data.get("choices") or []
    message = choices[0].get("message") if choices else None
    return (message or {}).get("content") or ""


def _retryable(exc: BaseException) -> bool:
    return isinstance(exc, LLMUnavailable) and not isinstance(
        exc, (LLMRateLimited, LLMNotConfigured)
    )


async def chat(
    messages: list[dict[str, str]],
    credentials: LLMCredentials,
    *,
    model: str | None = None,
    temperature: float | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    retries: int = 0,
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    client: httpx.AsyncClient | None = None,
    log: Any = None,
) -> ChatResult | None:
    """
    Send one chat completion request.

    Retries up to ``retries`` extra times with exponential backoff starting at
    ``retry_delay`` seconds. A 429 gives up immediately. Every failure is
    absorbed here: the caller gets ``None`` instead of an exception.
    """
    log = log or logger
    if not credentials.api_key:
        log.error("llm_chat_failed", error="LLM api key not configured")
        return None
    http = client or await _get_client()
    payload = {
        "model": model or credentials.model,
        "messages": messages,
        "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
    }

    def _before_sleep(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "llm_chat_retry",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(0, retries) + 1),
        wait=wait_exponential(multiplier=retry_delay),
        retry=retry_if_exception(_retryable),
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        content = await retrying(_post_chat, http, credentials, payload, timeout)
    except (LLMUnavailable, RetryError) as exc:
        log.error("llm_chat_failed", error=str(exc), model=payload["model"])
        return None

    parsed = extract_json_payload(content)
    return ChatResult(content=content, parsed=parsed.value if parsed.ok else None)


__all__ = [
    "ChatResult",
    "LLMNotConfigured",
    "LLMRateLimited",
    "LLMUnavailable",
    "chat",
    "close_client",
]
