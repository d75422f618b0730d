"""Model picker list: fixed local entries plus the cached remote catalog."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import requests

from models import ModelDescriptor

OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"
REQUEST_TIMEOUT_SECONDS = 10
CACHE_TTL_SECONDS = 60 * 60

LOGGER = logging.getLogger(__name__)

LOCAL_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(id="ollama", name="Ollama", provider="local"),
)
DEFAULT_MODEL = LOCAL_MODELS[0]


class ModelCatalogError(RuntimeError):
    """Raised when the remote model list cannot be fetched."""


def format_price(per_token: str | float) -> str:
    """Per-token USD price -> per-million label."""
    value = float(per_token) * 1_000_000
    if value == 0:
        return "free"
    if value < 0.01:
        return f"${value:.4f}/M"
    if value < 1:
        return f"${value:.2f}/M"
    return f"${value:.1f}/M"


def strip_org_prefix(name: str) -> str:
    """``"Anthropic: Claude Sonnet 4"`` -> ``"Claude Sonnet 4"``."""
    _, sep, rest = name.partition(":")
    return rest.strip() if sep else name


def is_text_model(entry: dict[str, Any]) -> bool:
    architecture = entry.get("architecture") if isinstance(entry.get("architecture"), dict) else {}
    modality = architecture.get("modality")
    return isinstance(modality, str) and "text" in modality and "->text" in modality


def describe(entry: dict[str, Any]) -> str:
    pricing = entry.get("pricing") or {}
    context_k = float(entry.get("context_length") or 0) / 1000
    return (
        f"{format_price(pricing.get('prompt', 0))} in · "
        f"{format_price(pricing.get('completion', 0))} out · "
        f"{context_k:.0f}k ctx"
    )


def fetch_remote_models() -> list[ModelDescriptor]:
    """Fetch the router's catalog and keep text-in/text-out models in its order."""
    try:
        response = requests.get(OPENROUTER_MODELS_URL, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise ModelCatalogError(f"Failed to fetch models: {exc}") from exc

    raw = body.get("data") if isinstance(body, dict) else None
    if not isinstance(raw, list):
        raise ModelCatalogError("Failed to fetch models: unexpected payload shape")

    models: list[ModelDescriptor] = []
    for entry in raw:
        if not isinstance(entry, dict) or not is_text_model(entry):
            continue
        try:
            description = describe(entry)
        except (TypeError, ValueError):
            description = None
        models.append(
            ModelDescriptor(
                id=str(entry.get("id", "")),
                name=strip_org_prefix(str(entry.get("name", entry.get("id", "")))),
                provider="remote",
                description=description,
            )
        )

    LOGGER.info("Model catalog: raw_count=%s text_models=%s", len(raw), len(models))
    return models


@dataclass(frozen=True, slots=True)
class _CacheEntry:
    models: tuple[ModelDescriptor, ...]
    fetched_at: float


class ModelCatalog:
    """Process-wide model list with a one-hour TTL.

    The cached entry is replaced as a whole. Only one caller refetches at a
    time; others get the stale list meanwhile, or wait if there is none yet.
    """

    def __init__(
        self,
        fetcher: Callable[[], Sequence[ModelDescriptor]] = fetch_remote_models,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: _CacheEntry | None = None
        self._lock = threading.Lock()

    def list_models(self) -> list[ModelDescriptor]:
        entry = self._entry
        if entry is not None and not self._expired(entry):
            return [*LOCAL_MODELS, *entry.models]

        if entry is not None and not self._lock.acquire(blocking=False):
            # Another caller is refetching; serve what we have.
            return [*LOCAL_MODELS, *entry.models]
        if entry is None:
            self._lock.acquire()

        try:
            entry = self._refresh()
        finally:
            self._lock.release()
        return [*LOCAL_MODELS, *entry.models]

    def _refresh(self) -> _CacheEntry:
        current = self._entry
        if current is not None and not self._expired(current):
            return current

        try:
            models = tuple(self._fetcher())
        except ModelCatalogError as exc:
            if current is None:
                raise
            LOGGER.warning("Model catalog refresh failed, serving stale list: %s", exc)
            return current

        fresh = _CacheEntry(models=models, fetched_at=self._clock())
        self._entry = fresh
        return fresh

    def _expired(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.fetched_at >= self._ttl


MODEL_CATALOG = ModelCatalog()
