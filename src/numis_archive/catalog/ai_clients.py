"""Transport clients for the hosted models behind the catalog's AI features.

Two backends are supported:

- OpenRouter (default): plain HTTPS via ``requests`` to the chat completions
  endpoint. Web search is the ``web`` plugin; image output is requested with
  ``modalities=["image", "text"]``.
- OpenAI: the official SDK over an ``httpx`` client. Web search uses the
  ``web_search_options`` of the search-preview models; image edits go through
  ``images.edit``.

Both expose ``chat(...) -> Completion`` and ``edit_image(...) -> data URL``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import requests
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, OpenAI

from ..config import BACKEND_OPENAI, AISettings
from ..logging import get_logger
from .images import ImageDataError, parse_data_url, to_data_url


LOG = get_logger("catalog-ai-client")


class AIServiceError(Exception):
    """The hosted model could not be reached or returned an unusable answer."""


class AIConfigurationError(AIServiceError):
    """No usable AI configuration (missing key, unknown backend)."""


@dataclass
class Completion:
    text: Optional[str]
    citations: List[Dict[str, str]] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    response_id: Optional[str] = None


def scavenge_json_block(s: str) -> Optional[Any]:
    """Best-effort JSON recovery from prose, fenced blocks or partial output."""
    if not s:
        return None

    candidates: List[str] = []

    fenced = re.search(r"```(?:json)?\s*(.*?)```", s, re.DOTALL)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    start_obj = s.find("{")
    end_obj = s.rfind("}")
    if start_obj != -1 and end_obj != -1 and end_obj > start_obj:
        candidates.append(s[start_obj : end_obj + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    return None


def parse_json_text(text: Optional[str]) -> Optional[Any]:
    if not text:
        return None
    try:
        return json.loads(text.strip())
    except json.JSONDecodeError:
        LOG.debug("JSON parse failed; attempting fallback (first 500 chars: %r)", text[:500])
        return scavenge_json_block(text)


def _citation(url: Any, title: Any) -> Optional[Dict[str, str]]:
    if not isinstance(url, str) or not url:
        return None
    return {"uri": url, "title": title if isinstance(title, str) and title else url}


def _dicts(value: Any) -> List[Dict[str, Any]]:
    """Dict items of a JSON list; anything else in the response is skipped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _dedupe(citations: List[Dict[str, str]]) -> List[Dict[str, str]]:
    seen = set()
    out: List[Dict[str, str]] = []
    for c in citations:
        if c["uri"] in seen:
            continue
        seen.add(c["uri"])
        out.append(c)
    return out


class OpenRouterClient:
    """Thin wrapper around OpenRouter API requests with helpful logging."""

    ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, api_key: str, *, timeout_seconds: int = 120, temperature: float = 0.0) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "X-Title": "NumisArchive",
            }
        )

    def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        json_schema: Optional[Dict[str, Any]] = None,
        web_search: bool = False,
        image_output: bool = False,
        max_tokens: Optional[int] = None,
        timeout: Optional[int] = None,
    ) -> Completion:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if json_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "banknote", "strict": False, "schema": json_schema},
            }
        if web_search:
            payload["plugins"] = [{"id": "web"}]
        if image_output:
            payload["modalities"] = ["image", "text"]

        t0 = time.perf_counter()
        try:
            resp = self.session.post(self.ENDPOINT, json=payload, timeout=timeout or self.timeout_seconds)
        except requests.RequestException as exc:
            LOG.error("OpenRouter request failed: %s", exc)
            raise AIServiceError(f"OpenRouter request failed: {exc}") from exc

        if resp.status_code >= 400:
            LOG.error("OpenRouter HTTP %s: %s", resp.status_code, resp.text[:500])
            raise AIServiceError(f"OpenRouter HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise AIServiceError("OpenRouter returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise AIServiceError("OpenRouter returned an unexpected body")
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            LOG.error("OpenRouter returned no choices: %s", str(body)[:500])
            raise AIServiceError("OpenRouter returned no choices")
        choice = choices[0]
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            LOG.error("OpenRouter choice has no message: %s", str(choice)[:500])
            raise AIServiceError("OpenRouter returned a malformed choice")

        citations: List[Dict[str, str]] = []
        for ann in _dicts(message.get("annotations")):
            if ann.get("type") != "url_citation":
                continue
            info = ann.get("url_citation")
            if not isinstance(info, dict):
                continue
            c = _citation(info.get("url"), info.get("title"))
            if c:
                citations.append(c)

        images: List[str] = []
        for img in _dicts(message.get("images")):
            image_url = img.get("image_url")
            url = image_url.get("url") if isinstance(image_url, dict) else None
            if isinstance(url, str) and url:
                images.append(url)

        LOG.info(
            "OpenRouter model=%s finished in %.2fs usage=%s (citations=%d images=%d)",
            model,
            time.perf_counter() - t0,
            body.get("usage"),
            len(citations),
            len(images),
        )
        content = message.get("content")
        if isinstance(content, list):
            content = "".join(str(part.get("text") or "") for part in content if isinstance(part, dict))
        elif not isinstance(content, str):
            content = None
        return Completion(
            text=content or None,
            citations=_dedupe(citations),
            images=images,
            response_id=body.get("id") if isinstance(body.get("id"), str) else None,
        )

    def edit_image(self, data_url: str, prompt: str, *, model: str) -> Optional[str]:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": data_url}},
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        completion = self.chat(messages, model=model, image_output=True)
        for url in completion.images:
            if url.startswith("data:"):
                try:
                    parse_data_url(url)
                except ImageDataError as exc:
                    raise AIServiceError(f"model returned an unreadable image: {exc}") from exc
                return url
            if url.startswith("http"):
                try:
                    resp = self.session.get(url, timeout=self.timeout_seconds)
                    resp.raise_for_status()
                except requests.RequestException as exc:
                    raise AIServiceError(f"could not download edited image: {exc}") from exc
                mime = (resp.headers.get("Content-Type") or "image/png").split(";", 1)[0]
                return to_data_url(resp.content, mime)
        return None

    def close(self) -> None:
        self.session.close()


class OpenAIClient:
    """OpenAI SDK backend (chat completions + images.edit)."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: int = 120,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(timeout_seconds), write=30.0, pool=10.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=self.http_client,
            max_retries=0,
        )
        if (os.environ.get("OPENAI_LOG") or "").lower() == "debug":
            logging.getLogger("httpx").setLevel(logging.DEBUG)
            logging.getLogger("httpcore").setLevel(logging.DEBUG)

    def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        json_schema: Optional[Dict[str, Any]] = None,
        web_search: bool = False,
        image_output: bool = False,
        max_tokens: Optional[int] = None,
        timeout: Optional[int] = None,
    ) -> Completion:
        if image_output:
            raise AIServiceError("image output is only available through edit_image on this backend")
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "timeout": float(timeout or self.timeout_seconds),
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if web_search and "search" not in model:
            LOG.debug("Model %s has no web search; answering from model knowledge", model)
            web_search = False
        if web_search:
            kwargs["web_search_options"] = {}
        elif json_schema is not None:
            # Search models reject response_format; the prompt asks for JSON instead.
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.perf_counter()
        try:
            completion = self.client.chat.completions.create(**kwargs)
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling OpenAI (Chat): %s", exc)
            raise AIServiceError(f"OpenAI request failed: {exc}") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error(
                "OpenAI API (Chat) returned %s. Body preview: %r",
                getattr(exc, "status_code", "?"),
                body[:300] if body else None,
            )
            raise AIServiceError(f"OpenAI HTTP {getattr(exc, 'status_code', '?')}") from exc
        except APIError as exc:
            LOG.error("OpenAI API (Chat) failed: %s", exc)
            raise AIServiceError(f"OpenAI request failed: {exc}") from exc

        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        message = choice.message if choice is not None else None
        text = message.content if message is not None else None

        citations: List[Dict[str, str]] = []
        for ann in (getattr(message, "annotations", None) or []) if message is not None else []:
            info = getattr(ann, "url_citation", None)
            if info is None:
                continue
            c = _citation(getattr(info, "url", None), getattr(info, "title", None))
            if c:
                citations.append(c)

        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "OpenAI model=%s finished in %.2fs id=%s usage=%s",
            model,
            time.perf_counter() - t0,
            getattr(completion, "id", None),
            usage_dict,
        )
        return Completion(text=text or None, citations=_dedupe(citations), response_id=getattr(completion, "id", None))

    def edit_image(self, data_url: str, prompt: str, *, model: str) -> Optional[str]:
        mime, raw = parse_data_url(data_url)
        ext = mime.split("/", 1)[-1] if "/" in mime else "png"
        try:
            result = self.client.images.edit(
                model=model,
                image=(f"banknote.{ext}", raw, mime),
                prompt=prompt,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling OpenAI (Images): %s", exc)
            raise AIServiceError(f"OpenAI request failed: {exc}") from exc
        except APIStatusError as exc:
            LOG.error("OpenAI API (Images) returned %s", getattr(exc, "status_code", "?"))
            raise AIServiceError(f"OpenAI HTTP {getattr(exc, 'status_code', '?')}") from exc
        except APIError as exc:
            LOG.error("OpenAI API (Images) failed: %s", exc)
            raise AIServiceError(f"OpenAI request failed: {exc}") from exc
        for item in result.data or []:
            b64 = getattr(item, "b64_json", None)
            if b64:
                return f"data:image/png;base64,{b64}"
        return None

    def close(self) -> None:
        self.http_client.close()


def build_client(settings: AISettings):
    """Create the transport client for the configured backend."""
    if not settings.api_key:
        key_name = "OPENAI_API_KEY" if settings.backend == BACKEND_OPENAI else "OPEN_ROUTER_API_KEY"
        raise AIConfigurationError(f"{key_name} missing in env/.env; AI features are unavailable")
    if settings.backend == BACKEND_OPENAI:
        LOG.info("Backend selected: OpenAI")
        return OpenAIClient(settings.api_key, base_url=settings.base_url, timeout_seconds=settings.timeout_seconds)
    LOG.info("Backend selected: OpenRouter")
    return OpenRouterClient(settings.api_key, timeout_seconds=settings.timeout_seconds)


__all__ = [
    "AIServiceError",
    "AIConfigurationError",
    "Completion",
    "OpenRouterClient",
    "OpenAIClient",
    "build_client",
    "parse_json_text",
    "scavenge_json_block",
]
