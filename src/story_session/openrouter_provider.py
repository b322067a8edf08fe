"""OpenRouter provider — OpenAI-compatible chat completions over HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from functools import partial
from typing import Any

import requests

from .config import LlmConfig
from .errors import CredentialError, TransportError
from .provider import ChatRequest, ChatResponse, LLMProvider, StreamCallback

logger = logging.getLogger(__name__)

_API_KEY_ENV = "OPENROUTER_API_KEY"
_DONE = "[DONE]"


class OpenRouterProvider(LLMProvider):
    """LLM provider for OpenRouter (or any OpenAI-compatible endpoint).

    The blocking ``requests`` call runs in a worker thread. Stream fragments
    are handed back to the event loop, so ``on_chunk`` always runs on the
    loop thread, in order, before :meth:`chat` returns.

    Configuration:
        - ``OPENROUTER_API_KEY``: API key, unless passed explicitly
    """

    def __init__(self, config: LlmConfig | None = None, api_key: str | None = None) -> None:
        self._config = config or LlmConfig()
        self._api_key = api_key if api_key is not None else os.environ.get(_API_KEY_ENV, "")

    def name(self) -> str:
        return "openrouter"

    @property
    def model(self) -> str:
        """Return the configured model name."""
        return self._config.model

    async def chat(
        self,
        request: ChatRequest,
        on_chunk: StreamCallback | None = None,
        abort: threading.Event | None = None,
    ) -> ChatResponse:
        """Send a chat request; stream when *on_chunk* is given."""
        relay: StreamCallback | None = None
        if on_chunk is not None:
            loop = asyncio.get_running_loop()
            relay = partial(loop.call_soon_threadsafe, on_chunk)

        return await asyncio.to_thread(self._chat_blocking, request, relay, abort)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def build_body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        """Build the JSON body; request-level settings override config."""
        cfg = self._config
        return {
            "model": request.model or cfg.model,
            "messages": [m.model_dump(mode="json") for m in request.messages],
            "temperature": request.temperature if request.temperature is not None else cfg.temperature,
            "max_tokens": request.max_tokens if request.max_tokens is not None else cfg.max_tokens,
            "stream": stream,
        }

    def build_headers(self) -> dict[str, str]:
        api_key = (self._api_key or "").strip()
        if not api_key:
            msg = f"API key is not set. Set {_API_KEY_ENV} to continue."
            raise CredentialError(msg)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self._config.http_referer:
            headers["HTTP-Referer"] = self._config.http_referer
        if self._config.x_title:
            headers["X-Title"] = self._config.x_title
        return headers

    def _chat_blocking(
        self,
        request: ChatRequest,
        on_chunk: StreamCallback | None,
        abort: threading.Event | None,
    ) -> ChatResponse:
        headers = self.build_headers()
        stream = on_chunk is not None
        body = self.build_body(request, stream=stream)

        try:
            resp = requests.post(
                self._config.endpoint,
                json=body,
                headers=headers,
                timeout=self._config.timeout,
                stream=stream,
            )
        except requests.RequestException as exc:
            msg = f"Failed to reach OpenRouter: {exc}"
            raise TransportError(msg) from exc

        try:
            if resp.status_code == 401:
                msg = "API key is not set or invalid (401 Unauthorized). Please set it."
                raise CredentialError(msg, status_code=401)
            if resp.status_code >= 400:
                detail = self._error_message(resp)
                logger.error("OpenRouter API error %s: %s", resp.status_code, detail)
                raise TransportError(f"OpenRouter API Error: {detail}", status_code=resp.status_code)

            if stream:
                return self._read_stream(resp, on_chunk, abort)

            try:
                data = resp.json()
            except ValueError as exc:
                raise TransportError("OpenRouter returned a non-JSON response") from exc
            choice = (data.get("choices") or [{}])[0]
            content = (choice.get("message") or {}).get("content") or ""
            return ChatResponse(content=content, raw=data, finish_reason=choice.get("finish_reason"))
        finally:
            resp.close()

    @staticmethod
    def _read_stream(
        resp: requests.Response,
        on_chunk: StreamCallback | None,
        abort: threading.Event | None,
    ) -> ChatResponse:
        """Consume a server-sent-events body of ``data: {...}`` lines."""
        parts: list[str] = []
        finish_reason: str | None = None
        try:
            for line in resp.iter_lines(decode_unicode=True):
                if abort is not None and abort.is_set():
                    raise TransportError("Request aborted")
                if not line or not line.startswith("data: "):
                    continue
                data = line[len("data: ") :].strip()
                if data == _DONE:
                    break
                try:
                    parsed = json.loads(data)
                    choice = parsed["choices"][0]
                except (json.JSONDecodeError, KeyError, IndexError, TypeError):
                    logger.warning("Skipping unparsable stream chunk: %r", data)
                    continue
                finish_reason = choice.get("finish_reason") or finish_reason
                text = (choice.get("delta") or {}).get("content") or ""
                if text:
                    parts.append(text)
                    if on_chunk is not None:
                        on_chunk(text)
        except requests.RequestException as exc:
            raise TransportError(f"Error processing stream from OpenRouter: {exc}") from exc
        return ChatResponse(content="".join(parts), finish_reason=finish_reason)

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return f"HTTP {resp.status_code}"
