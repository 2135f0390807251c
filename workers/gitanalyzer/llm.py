"""LiteLLM Proxy client (OpenAI-compatible chat completions)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from gitanalyzer.constants import HTTP_TIMEOUT_SECONDS
from gitanalyzer.errors import AuthenticationError, MalformedResponseError, RateLimitedError, TransientError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"


class LLMError(MalformedResponseError):
    """The proxy rejected one request (4xx other than auth/rate limit).

    Treated like a malformed response: the batch is degraded, the run goes on.
    """

    def __init__(self, status_code: int, model: str, body: str) -> None:
        self.status_code = status_code
        self.model = model
        self.body = body
        # Truncate body for the message but keep it accessible via .body
        short = body[:500] if len(body) > 500 else body
        super().__init__(f"LiteLLM {status_code} for model={model}: {short}")


@dataclass(frozen=True)
class CompletionResponse:
    """Parsed response from an LLM completion call."""

    content: str
    tokens_in: int
    tokens_out: int
    model: str
    cost_usd: float = 0.0


def _retry_after(resp: httpx.Response) -> datetime | None:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return datetime.now(UTC) + timedelta(seconds=max(0.0, seconds))


def _raise_for_status(resp: httpx.Response, model: str) -> None:
    """Map an error response onto the analyzer error taxonomy."""
    status = resp.status_code
    if status < 400:
        return
    body = resp.text
    logger.error("LiteLLM error status=%d model=%s body=%s", status, model, body[:1000])
    if status == 429:
        raise RateLimitedError(f"LiteLLM rate limited model={model}", reset_at=_retry_after(resp))
    if status in (401, 403):
        msg = f"LiteLLM rejected credentials ({status}) for model={model}"
        raise AuthenticationError(msg)
    if status >= 500:
        msg = f"LiteLLM {status} for model={model}"
        raise TransientError(msg)
    raise LLMError(status, model, body)


class LiteLLMClient:
    """HTTP client for the LiteLLM Proxy (OpenAI-compatible API)."""

    def __init__(
        self,
        base_url: str = "http://localhost:4000",
        api_key: str = "",
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def completion(
        self,
        prompt: str,
        model: str = DEFAULT_MODEL,
        system: str = "",
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> CompletionResponse:
        """Send a chat completion request to LiteLLM.

        Raises:
            RateLimitedError: 429, with ``reset_at`` from ``retry-after``.
            AuthenticationError: 401/403.
            TransientError: 5xx or a transport failure.
            LLMError: Any other 4xx.
            MalformedResponseError: The body is not JSON.
        """
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: dict[str, object] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        logger.debug(
            "llm_completion_request model=%s temperature=%.2f prompt_len=%d",
            model,
            temperature,
            len(prompt),
        )

        try:
            resp = await self._client.post("/v1/chat/completions", json=payload)
        except httpx.TransportError as exc:
            msg = f"LiteLLM request failed: {exc}"
            raise TransientError(msg) from exc
        _raise_for_status(resp, model)

        try:
            data = resp.json()
        except ValueError as exc:
            msg = f"LiteLLM returned non-JSON body for model={model}"
            raise MalformedResponseError(msg) from exc

        # Extract cost from LiteLLM response header (if available).
        try:
            litellm_cost = float(resp.headers.get("x-litellm-response-cost", "0"))
        except (ValueError, TypeError):
            litellm_cost = 0.0

        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not isinstance(choices, list) or len(choices) == 0:
            return CompletionResponse(content="", tokens_in=0, tokens_out=0, model=model, cost_usd=litellm_cost)

        message = choices[0].get("message", {}) if isinstance(choices[0], dict) else {}
        content = message.get("content", "") or "" if isinstance(message, dict) else ""

        usage = data.get("usage", {})
        tokens_in = usage.get("prompt_tokens", 0) if isinstance(usage, dict) else 0
        tokens_out = usage.get("completion_tokens", 0) if isinstance(usage, dict) else 0

        return CompletionResponse(
            content=str(content),
            tokens_in=int(tokens_in),
            tokens_out=int(tokens_out),
            model=model,
            cost_usd=litellm_cost,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
