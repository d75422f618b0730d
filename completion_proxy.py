"""Builds and opens the streamed chat request to the selected backend."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any

import httpx
from openai import APIError, APIStatusError, AsyncOpenAI

import pdf_identifiers
from models import ModelSelection, Provider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"
DEFAULT_OLLAMA_MODEL = "llama3"
DEFAULT_SITE_URL = "http://localhost:3000"
APP_TITLE = "research"
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 300.0

PDF_CONTENT_TYPE = "application/pdf"
SYSTEM_PROMPT = (
    "You are an academic research assistant. "
    "You help summarize research papers clearly and concisely."
)
PAPER_SEPARATOR = "--- Research Paper Content ---"

LOGGER = logging.getLogger(__name__)

_PROVIDER_ALIASES: dict[str, Provider] = {
    "local": "local",
    "ollama": "local",
    "remote": "remote",
    "openrouter": "remote",
}
_HISTORY_ROLES = frozenset({"user", "assistant"})


class ProxyError(Exception):
    """Failure reported to the caller before any streaming starts."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputError(ProxyError):
    status_code = 400


class DocumentError(ProxyError):
    status_code = 422


class ConfigurationError(ProxyError):
    status_code = 500


class UpstreamError(ProxyError):
    status_code = 502


@dataclass(frozen=True, slots=True)
class Backend:
    """Where and how to send the completion request."""

    label: str
    base_url: str
    api_key: str
    model: str
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    backend: Backend
    messages: tuple[dict[str, str], ...]

    def payload(self) -> dict[str, Any]:
        return {"model": self.backend.model, "stream": True, "messages": list(self.messages)}


def normalize_provider(tag: str | None) -> Provider:
    if not tag:
        return "local"
    provider = _PROVIDER_ALIASES.get(tag.strip().lower())
    if provider is None:
        raise InputError(f"Unknown provider: {tag}")
    return provider


def build_prompt(prompt: str, selection: str | None = None) -> str:
    """Prefix the prompt with the passage the user highlighted, if any."""
    prompt = prompt.strip()
    if selection and selection.strip():
        return f'Regarding this selected text from the paper:\n\n"{selection.strip()}"\n\n{prompt}'
    return prompt


def parse_history(raw: str | None) -> list[dict[str, str]]:
    """Decode the serialized prior turns; unknown roles are dropped."""
    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InputError(f"Invalid history: {exc.msg}") from exc
    if not isinstance(data, list):
        raise InputError("Invalid history: expected a list of messages")

    turns: list[dict[str, str]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        role, content = item.get("role"), item.get("content")
        if role in _HISTORY_ROLES and isinstance(content, str):
            turns.append({"role": role, "content": content})
    return turns


def build_messages(
    prompt: str,
    paper_text: str,
    history: list[dict[str, str]] | None = None,
) -> tuple[dict[str, str], ...]:
    return (
        {"role": "system", "content": SYSTEM_PROMPT},
        *(history or []),
        {"role": "user", "content": f"{prompt}\n\n{PAPER_SEPARATOR}\n{paper_text}"},
    )


def resolve_backend(selection: ModelSelection) -> Backend:
    if selection.provider == "remote":
        api_key = os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise ConfigurationError("OpenRouter API key not configured on the server.")
        return Backend(
            label="OpenRouter",
            base_url=OPENROUTER_BASE_URL,
            api_key=api_key,
            model=selection.id,
            headers={
                "HTTP-Referer": os.getenv("SITE_URL", DEFAULT_SITE_URL),
                "X-Title": APP_TITLE,
            },
        )

    # The local server decides the model; the picker id is only a routing tag.
    return Backend(
        label="Ollama",
        base_url=os.getenv("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL).rstrip("/"),
        api_key="ollama",
        model=os.getenv("OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL),
    )


def validate_upload(file_name: str | None, content_type: str | None, data: bytes | None, prompt: str | None) -> None:
    if not file_name or data is None or not prompt or not prompt.strip():
        raise InputError("Both a PDF file and a prompt are required.")
    if content_type != PDF_CONTENT_TYPE:
        raise InputError("Only PDF files are accepted.")


def prepare_completion(
    *,
    file_name: str | None,
    content_type: str | None,
    data: bytes | None,
    prompt: str | None,
    provider: str | None,
    model_id: str | None,
    history: str | None = None,
    selection: str | None = None,
) -> CompletionRequest:
    """Validate the upload and assemble the request; no network I/O happens here."""
    validate_upload(file_name, content_type, data, prompt)
    chosen = ModelSelection(id=model_id or "ollama", provider=normalize_provider(provider))
    backend = resolve_backend(chosen)
    turns = parse_history(history)

    try:
        paper_text = pdf_identifiers.extract_full_text(data or b"")
    except Exception as exc:  # PyMuPDF raises several unrelated types on corrupt input
        LOGGER.warning("Text extraction failed for file=%s: %s", file_name, exc)
        raise DocumentError("Could not extract text from the PDF.") from exc
    if not paper_text.strip():
        raise DocumentError("Could not extract text from the PDF.")

    LOGGER.info(
        "Prepared completion: backend=%s model=%s chars=%s history_turns=%s",
        backend.label,
        backend.model,
        len(paper_text),
        len(turns),
    )
    return CompletionRequest(
        backend=backend,
        messages=build_messages(build_prompt(prompt or "", selection), paper_text, turns),
    )


class CompletionStream:
    """An open upstream response; ``aclose`` releases the connection."""

    def __init__(self, response: Any, stack: AsyncExitStack) -> None:
        self._response = response
        self._stack = stack

    def chunks(self) -> AsyncIterator[bytes]:
        return self._response.iter_bytes()

    async def aclose(self) -> None:
        await self._stack.aclose()


def _completion_timeout() -> float:
    return float(os.getenv("COMPLETION_TIMEOUT_SECONDS", DEFAULT_COMPLETION_TIMEOUT_SECONDS))


async def open_completion_stream(
    request: CompletionRequest,
    http_client: httpx.AsyncClient | None = None,
) -> CompletionStream:
    """Send the streamed request and return once the upstream headers arrive."""
    backend = request.backend
    client = AsyncOpenAI(
        api_key=backend.api_key,
        base_url=backend.base_url,
        default_headers=dict(backend.headers),
        max_retries=0,
        timeout=_completion_timeout(),
        http_client=http_client,
    )

    stack = AsyncExitStack()
    stack.push_async_callback(client.close)
    try:
        response = await stack.enter_async_context(
            client.chat.completions.with_streaming_response.create(
                model=backend.model,
                messages=list(request.messages),
                stream=True,
            )
        )
    except APIStatusError as exc:
        await stack.aclose()
        LOGGER.warning("%s returned status=%s", backend.label, exc.status_code)
        raise UpstreamError(f"{backend.label} error: {exc.response.text}") from exc
    except APIError as exc:
        await stack.aclose()
        LOGGER.warning("%s request failed: %s", backend.label, exc)
        raise UpstreamError(f"{backend.label} error: {exc}") from exc

    LOGGER.info("Streaming from %s model=%s", backend.label, backend.model)
    return CompletionStream(response, stack)
