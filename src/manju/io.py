"""Input loading utilities for the manju adaptation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

__all__ = ["LoadedDocument", "load_input_resource", "infer_title"]

PLAIN_TEXT_SUFFIXES = {".txt"}
SUPPORTED_MARKDOWN_SUFFIXES = {".md", ".markdown"}


@dataclass(slots=True)
class LoadedDocument:
    """Container for source text and metadata."""

    content: str
    source: Path
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "source": str(self.source),
            "metadata": self.metadata,
        }


def load_input_resource(source: Path | str, *, encoding: str = "utf-8") -> LoadedDocument:
    """Load a plain-text or Markdown novel and return text with metadata."""

    source_path = Path(source).expanduser()
    if not source_path.exists():
        raise FileNotFoundError(f"资源不存在: {source_path}")

    suffix = source_path.suffix.lower()
    if suffix in PLAIN_TEXT_SUFFIXES or suffix in SUPPORTED_MARKDOWN_SUFFIXES:
        # Tolerate a UTF-8 BOM.
        text = source_path.read_text(encoding=encoding).lstrip("\ufeff")
        metadata = {
            "kind": "markdown" if suffix in SUPPORTED_MARKDOWN_SUFFIXES else "text",
            "length": len(text),
            "path": str(source_path),
            "title": infer_title(text, source_path.stem),
        }
        return LoadedDocument(content=text, source=source_path, metadata=metadata)

    raise ValueError(f"Unsupported input format for {source_path}")


def infer_title(text: str, fallback: str) -> str:
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate:
            continue
        if candidate.startswith("#"):
            return candidate.lstrip("#").strip()
        break
    return fallback
