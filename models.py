"""Shared typed models for metadata lookup and completion streaming."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

UNTITLED = "Untitled"

DeltaKind = Literal["reasoning", "text"]
Provider = Literal["local", "remote"]


@dataclass(frozen=True, slots=True)
class PaperMetadata:
    """Canonical paper record produced by every catalog adapter."""

    doi: str
    title: str = UNTITLED
    authors: tuple[str, ...] = field(default_factory=tuple)
    journal: str | None = None
    year: int | None = None
    abstract: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if not self.title:
            object.__setattr__(self, "title", UNTITLED)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "doi": self.doi,
            "title": self.title,
            "authors": list(self.authors),
        }
        for key in ("journal", "year", "abstract", "url"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass(frozen=True, slots=True)
class ExtractedIdentifiers:
    """Identifiers found in the first pages of an uploaded PDF."""

    doi: str | None = None
    arxiv_id: str | None = None
    first_page_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "doi": self.doi,
            "arxivId": self.arxiv_id,
            "firstPageText": self.first_page_text,
        }


@dataclass(frozen=True, slots=True)
class DeltaEvent:
    """One unit of the outbound line-delimited completion stream."""

    kind: DeltaKind
    text: str

    def to_line(self) -> bytes:
        return (json.dumps({"type": self.kind, "delta": self.text}) + "\n").encode("utf-8")


@dataclass(frozen=True, slots=True)
class ModelSelection:
    """Model chosen by the caller for one completion request."""

    id: str
    provider: Provider


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """Entry of the model picker list."""

    id: str
    name: str
    provider: Provider
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name, "provider": self.provider}
        if self.description is not None:
            payload["description"] = self.description
        return payload
