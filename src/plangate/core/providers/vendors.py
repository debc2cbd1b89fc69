"""Vendor wire formats expressed as data.

Every backend is one ``VendorSpec``: where to POST, how to authenticate, how
to shape the JSON body and where to find the text and token count in the
reply. ``HttpProviderAdapter`` is the only code that talks HTTP.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from plangate.core.providers.base import ProviderRequest


@dataclass(frozen=True, slots=True)
class VendorSpec:
    provider_id: str
    base_url: str
    path: str
    default_model: str
    build_body: Callable[[ProviderRequest], dict[str, Any]]
    extract_content: Callable[[dict[str, Any]], str]
    extract_tokens: Callable[[dict[str, Any]], int]
    auth_header: str | None = "Authorization"
    auth_prefix: str = "Bearer "
    extra_headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 60.0
    extra_retryable_statuses: frozenset[int] = frozenset()
    requires_api_key: bool = True
    health_method: str | None = None
    health_timeout_seconds: float = 2.0

    def url_for(self, base_url: str, model: str) -> str:
        return base_url.rstrip("/") + self.path.format(model=model)


def _text(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"response field {field_name!r} is not text")
    return value


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _chat_messages(request: ProviderRequest) -> list[dict[str, str]]:
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.prompt})
    return messages


# OpenAI-compatible chat completions


def openai_chat_body(request: ProviderRequest) -> dict[str, Any]:
    return {
        "model": request.model,
        "messages": _chat_messages(request),
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
    }


def openai_chat_content(body: dict[str, Any]) -> str:
    return _text(body["choices"][0]["message"]["content"], "choices[0].message.content")


def openai_chat_tokens(body: dict[str, Any]) -> int:
    usage = body.get("usage") or {}
    return _int(usage.get("total_tokens"))


# Anthropic messages


def anthropic_body(request: ProviderRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": request.model,
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
        "messages": [{"role": "user", "content": request.prompt}],
    }
    if request.system_prompt:
        body["system"] = request.system_prompt
    return body


def anthropic_content(body: dict[str, Any]) -> str:
    blocks = body["content"]
    if not blocks:
        raise ValueError("response missing 'content' blocks")
    first = blocks[0]
    if first.get("type") != "text":
        raise ValueError("first content block is not text")
    return _text(first["text"], "content[0].text")


def anthropic_tokens(body: dict[str, Any]) -> int:
    usage = body.get("usage") or {}
    return _int(usage.get("input_tokens")) + _int(usage.get("output_tokens"))


# Gemini generateContent


def gemini_body(request: ProviderRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
        "generationConfig": {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        },
    }
    if request.system_prompt:
        body["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}
    return body


def gemini_content(body: dict[str, Any]) -> str:
    parts = body["candidates"][0]["content"]["parts"]
    return "".join(_text(p["text"], "candidates[0].content.parts[].text") for p in parts)


def gemini_tokens(body: dict[str, Any]) -> int:
    usage = body.get("usageMetadata") or {}
    return _int(usage.get("totalTokenCount"))


# Ollama local chat


def ollama_body(request: ProviderRequest) -> dict[str, Any]:
    return {
        "model": request.model,
        "stream": False,
        "messages": _chat_messages(request),
        "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
    }


def ollama_content(body: dict[str, Any]) -> str:
    return _text(body["message"]["content"], "message.content")


def ollama_tokens(body: dict[str, Any]) -> int:
    return _int(body.get("eval_count"))


def _openai_compatible(provider_id: str, base_url: str, default_model: str) -> VendorSpec:
    return VendorSpec(
        provider_id=provider_id,
        base_url=base_url,
        path="/chat/completions",
        default_model=default_model,
        build_body=openai_chat_body,
        extract_content=openai_chat_content,
        extract_tokens=openai_chat_tokens,
    )


VENDOR_SPECS: dict[str, VendorSpec] = {
    "openai": _openai_compatible("openai", "https://api.openai.com/v1", "gpt-5-mini-2025-08-07"),
    "groq": _openai_compatible("groq", "https://api.groq.com/openai/v1", "llama-3.1-8b-instant"),
    "deepseek": _openai_compatible("deepseek", "https://api.deepseek.com/v1", "deepseek-chat"),
    "longcat": _openai_compatible("longcat", "https://api.longcat.chat/openai/v1", "LongCat-Flash-Chat"),
    "iflow": _openai_compatible("iflow", "https://apis.iflow.cn/v1", "qwen3-max"),
    "claude": VendorSpec(
        provider_id="claude",
        base_url="https://api.anthropic.com/v1",
        path="/messages",
        default_model="claude-sonnet-4-5",
        build_body=anthropic_body,
        extract_content=anthropic_content,
        extract_tokens=anthropic_tokens,
        auth_header="x-api-key",
        auth_prefix="",
        extra_headers={"anthropic-version": "2023-06-01"},
        extra_retryable_statuses=frozenset({529}),
    ),
    "gemini": VendorSpec(
        provider_id="gemini",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        path="/models/{model}:generateContent",
        default_model="gemini-3-flash-preview",
        build_body=gemini_body,
        extract_content=gemini_content,
        extract_tokens=gemini_tokens,
        auth_header="x-goog-api-key",
        auth_prefix="",
    ),
    "ollama": VendorSpec(
        provider_id="ollama",
        base_url="http://localhost:11434",
        path="/api/chat",
        default_model="llama3.1:8b",
        build_body=ollama_body,
        extract_content=ollama_content,
        extract_tokens=ollama_tokens,
        auth_header=None,
        auth_prefix="",
        timeout_seconds=120.0,
        requires_api_key=False,
        health_method="HEAD",
    ),
}


def get_vendor_spec(provider_id: str) -> VendorSpec:
    try:
        return VENDOR_SPECS[provider_id.lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown vendor: {provider_id}") from exc
