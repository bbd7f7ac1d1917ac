"""
Document Chunking Module for the RAG ingestion pipeline.

Chunkers turn one parsed item into bounded-size text segments ready for
embedding. They are selected by ``priority`` (lower wins) among those whose
``supports()`` accepts the item.

Chunkers:
- XrmChunker: structured records (CRM/XRM entities). Flattens every field into
  one markdown document, keeps headings attached to their content, enforces
  a minimum chunk size and repeats key identity fields in every chunk.
- SemanticChunker: plain text, sentence- and paragraph-aware.
- NoChunker: last resort, the whole text as a single chunk.

Chunkers never raise on pathological input. Oversized lines are hard-split
at character offsets and undersized chunks are merged rather than dropped.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from models.rag import Chunk, ParsedContent

DEFAULT_MAX_LENGTH = 800
DEFAULT_MIN_LENGTH = 200
DEFAULT_OVERLAP = 50
DEFAULT_INLINE_META_FIELDS = ("name", "tags", "type")

# Preferred floor for body text when the overlap has to shrink
MIN_BODY_LENGTH = 50

_NEWLINES = re.compile(r"\r\n|\r|\x0b|\x0c|\x85|\u2028|\u2029")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_HEADING = re.compile(r"^#{1,6}\s+")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def normalize_newlines(text: str) -> str:
    return _NEWLINES.sub("\n", text)


def _positive_or_default(value: Any, default: int, allow_zero: bool = True) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < 0 or (parsed == 0 and not allow_zero):
        return default
    return parsed


def _ucfirst(key: Any) -> str:
    s = str(key)
    return s[:1].upper() + s[1:]


class BaseChunker:
    """Shared configuration and size post-processing for all chunkers."""

    priority: int = 100

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        min_length: int = DEFAULT_MIN_LENGTH,
        overlap: int = DEFAULT_OVERLAP,
    ):
        self.max_length = _positive_or_default(max_length, DEFAULT_MAX_LENGTH, allow_zero=False)
        self.min_length = _positive_or_default(min_length, DEFAULT_MIN_LENGTH)
        self.overlap = _positive_or_default(overlap, DEFAULT_OVERLAP)

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(
            max_length=settings.CHUNK_MAX_LENGTH,
            min_length=settings.CHUNK_MIN_LENGTH,
            overlap=settings.CHUNK_OVERLAP,
            **kwargs,
        )

    def get_options(self) -> Dict[str, Any]:
        return {
            "max_length": self.max_length,
            "min_length": self.min_length,
            "overlap": self.overlap,
        }

    def supports(self, parsed: ParsedContent) -> bool:
        raise NotImplementedError

    def chunk(self, parsed: ParsedContent) -> List[Chunk]:
        raise NotImplementedError

    def _limits(self, reserved: int) -> Tuple[int, int]:
        """Return ``(body_budget, overlap)`` so prefix + overlap + body fits ``max_length``.

        When space is tight the overlap shrinks first; the body only drops
        below ``MIN_BODY_LENGTH`` once there is no overlap left to give up.
        """
        room = max(1, self.max_length - reserved)
        overlap = self.overlap
        if overlap > 0 and room - overlap - 1 < MIN_BODY_LENGTH:
            overlap = max(0, room - MIN_BODY_LENGTH - 1)
        if overlap > 0:
            return room - overlap - 1, overlap
        return room, 0

    @staticmethod
    def hard_split(text: str, max_len: int) -> List[str]:
        """Split at fixed character offsets (code points, never bytes)."""
        text = text.strip()
        max_len = max(1, max_len)
        pieces = (text[i : i + max_len].strip() for i in range(0, len(text), max_len))
        return [p for p in pieces if p]

    def split_by_lines(self, text: str, max_len: int) -> List[str]:
        out: List[str] = []
        current = ""

        for line in normalize_newlines(text).split("\n"):
            line = line.rstrip()
            candidate = line if current == "" else f"{current}\n{line}"

            if len(candidate) <= max_len:
                current = candidate
                continue

            if current.strip():
                out.append(current.strip())
            current = ""

            if len(line) <= max_len:
                current = line
                continue

            out.extend(self.hard_split(line, max_len))

        if current.strip():
            out.append(current.strip())

        return out

    def enforce_min_size(self, chunks: Sequence[str], max_len: int) -> List[str]:
        """Merge undersized chunks forward into their successor.

        A merge only happens while the result stays within ``max_len``; a
        trailing undersized chunk is folded into its predecessor when it fits.
        """
        if len(chunks) < 2:
            return list(chunks)

        out: List[str] = []
        buffer = ""

        for c in chunks:
            if buffer:
                candidate = f"{buffer}\n\n{c}"
                if len(candidate) <= max_len:
                    buffer = candidate
                else:
                    out.append(buffer)
                    buffer = c
            else:
                buffer = c

            if len(buffer) >= self.min_length:
                out.append(buffer)
                buffer = ""

        if buffer:
            if out and len(out[-1]) + 2 + len(buffer) <= max_len:
                out[-1] = f"{out[-1]}\n\n{buffer}"
            else:
                out.append(buffer)

        return [c.strip() for c in out]

    def apply_overlap(self, chunks: Sequence[str], overlap: Optional[int] = None) -> List[str]:
        """Prepend the tail of each previous (pre-overlap) chunk."""
        if overlap is None:
            overlap = self.overlap
        if overlap <= 0 or len(chunks) < 2:
            return list(chunks)

        out = [chunks[0]]
        for i in range(1, len(chunks)):
            tail = chunks[i - 1][-overlap:]
            out.append(f"{tail}\n{chunks[i]}".strip())
        return out


class XrmChunker(BaseChunker):
    """RAG chunker for XRM entities: merge all fields, sticky headings, meta in every chunk.

    Accepts two record shapes in ``ParsedContent.structured``:

    - ``{"payload": {...}, "type": {"alias": ...}, "sysentry": {"id": ...}}``
    - ``{"id": ..., "data": {...}}``
    """

    priority = 40

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        min_length: int = DEFAULT_MIN_LENGTH,
        overlap: int = DEFAULT_OVERLAP,
        inline_meta_fields: Optional[Iterable[str]] = None,
    ):
        super().__init__(max_length, min_length, overlap)
        self.inline_meta_fields = self._resolve_inline_meta_fields(inline_meta_fields)

    @classmethod
    def from_settings(cls, settings, **kwargs):
        kwargs.setdefault("inline_meta_fields", settings.CHUNK_INLINE_META_FIELDS)
        return super().from_settings(settings, **kwargs)

    @staticmethod
    def _resolve_inline_meta_fields(value: Any) -> List[str]:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            items = [str(v).strip() for v in value]
            items = [v for v in items if v]
            if items:
                return items
        return list(DEFAULT_INLINE_META_FIELDS)

    def get_options(self) -> Dict[str, Any]:
        options = super().get_options()
        options["inline_meta_fields"] = list(self.inline_meta_fields)
        return options

    def supports(self, parsed: ParsedContent) -> bool:
        root = parsed.structured
        if not isinstance(root, dict):
            return False
        if isinstance(root.get("payload"), dict):
            return True
        return "id" in root and "data" in root

    def chunk(self, parsed: ParsedContent) -> List[Chunk]:
        root = parsed.structured or {}
        if isinstance(root.get("payload"), dict):
            return self.chunk_structured(root, root["payload"], parsed.metadata, is_new_shape=True)
        data = root.get("data") if isinstance(root.get("data"), dict) else {}
        return self.chunk_structured(root, data, parsed.metadata, is_new_shape=False)

    def chunk_structured(
        self,
        root: Dict[str, Any],
        data: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        is_new_shape: bool = False,
    ) -> List[Chunk]:
        inline_meta = self.build_inline_metadata(root, data)
        raw_chunks = self.split_fields(root, data, is_new_shape, reserved=len(inline_meta) + 1)

        chunks = [
            Chunk(text=f"{inline_meta}\n{raw.strip()}".strip(), metadata=dict(metadata or {}))
            for raw in raw_chunks
        ]
        logger.debug(
            "XrmChunker produced {} chunks (max_length={}, min_length={}, overlap={})",
            len(chunks),
            self.max_length,
            self.min_length,
            self.overlap,
        )
        return chunks

    def split_fields(
        self,
        root: Dict[str, Any],
        data: Dict[str, Any],
        is_new_shape: bool = False,
        reserved: int = 0,
    ) -> List[str]:
        """Return the chunk bodies (overlap applied, no inline meta prefix)."""
        meta_lines, text_sections = self.partition_fields(data)
        if not meta_lines and not text_sections:
            return []

        name = self.pick_name(root, data, is_new_shape)
        full_text = self.build_full_text(name, meta_lines, text_sections)
        return self.split_text(full_text, reserved=reserved)

    def split_text(self, text: str, reserved: int = 0) -> List[str]:
        text = normalize_newlines(text).strip()
        if not text:
            return []

        budget, overlap = self._limits(reserved)
        raw_chunks = self.chunk_text_max_fit(text, budget)
        return self.apply_overlap(raw_chunks, overlap)

    def partition_fields(self, data: Dict[str, Any]):
        """Split fields into short "Key: value" lines and long text sections."""
        # Short strings stay metadata lines so the first chunk is not a tiny "## Name" section
        short_text_threshold = max(100, self.min_length // 2)

        meta_lines: List[str] = []
        text_sections: Dict[str, str] = {}

        for key, value in data.items():
            if value is None or value == "" or value == "0":
                continue
            if value == 0 and not isinstance(value, bool):
                continue

            if isinstance(value, (bool, int, float)):
                meta_lines.append(f"{_ucfirst(key)}: {json.dumps(value)}")
                continue

            if isinstance(value, str):
                val = value.strip()
                if not val:
                    continue
                if len(val) <= short_text_threshold:
                    meta_lines.append(f"{_ucfirst(key)}: {val}")
                else:
                    text_sections[str(key)] = normalize_newlines(val)
                continue

            if isinstance(value, (dict, list, tuple)):
                blob = normalize_newlines(json.dumps(value, ensure_ascii=False, indent=4, default=str))
                if len(blob) <= 100:
                    meta_lines.append(f"{_ucfirst(key)}: {blob.strip()}")
                else:
                    text_sections[str(key)] = blob

        return meta_lines, text_sections

    @staticmethod
    def build_full_text(name: str, meta_lines: List[str], text_sections: Dict[str, str]) -> str:
        parts = [f"# {name}", "", "## Metadata"]
        if meta_lines:
            parts.append("\n".join(meta_lines))

        for key, content in text_sections.items():
            parts.extend(["", f"## {_ucfirst(key)}", "", content.strip()])

        return "\n".join(parts).strip()

    @staticmethod
    def pick_name(root: Dict[str, Any], data: Dict[str, Any], is_new_shape: bool) -> str:
        for source in (data, root):
            name = source.get("name")
            if isinstance(name, str) and name.strip():
                return name.strip()

        if is_new_shape:
            type_info = root.get("type")
            alias = type_info.get("alias") if isinstance(type_info, dict) else None
            if isinstance(alias, str) and alias:
                return f"Entity ({alias})"

            sysentry = root.get("sysentry")
            sys_id = sysentry.get("id") if isinstance(sysentry, dict) else None
            if _is_numeric(sys_id):
                return f"Entity #{int(float(sys_id))}"

        if _is_numeric(root.get("id")):
            return f"Entity #{int(float(root['id']))}"

        return "Entity"

    def build_inline_metadata(self, root: Dict[str, Any], data: Dict[str, Any]) -> str:
        pairs: List[str] = []

        for field in self.inline_meta_fields:
            if field == "type":
                type_info = root.get("type")
                val = type_info.get("alias") if isinstance(type_info, dict) else None
                if val is None:
                    val = data.get("type")
            else:
                val = root.get(field)
                if val is None:
                    val = data.get(field)

            if val is None:
                continue

            if isinstance(val, (list, tuple)):
                val = ",".join(str(v).strip() for v in val)
            elif isinstance(val, dict):
                val = json.dumps(val, ensure_ascii=False)
            elif isinstance(val, bool):
                val = "true" if val else "false"

            v = str(val).replace('"', "'")
            pairs.append(f'{field}="{v}"')

        if not pairs:
            return "<!-- meta: -->"
        return "<!-- meta: " + "; ".join(pairs) + " -->"

    def chunk_text_max_fit(self, text: str, max_len: int) -> List[str]:
        if len(text) <= max_len:
            return [text]

        paragraphs = self.merge_sticky_headings(self.split_paragraphs(text))

        out: List[str] = []
        current = ""

        for p in paragraphs:
            p = p.strip()
            if not p:
                continue

            candidate = p if current == "" else f"{current}\n\n{p}"
            if len(candidate) <= max_len:
                current = candidate
                continue

            if current:
                out.append(current.strip())
                current = ""

            if len(p) <= max_len:
                current = p
                continue

            out.extend(self.split_by_lines(p, max_len))

        if current:
            out.append(current.strip())

        return self.enforce_min_size(out, max_len)

    @staticmethod
    def split_paragraphs(text: str) -> List[str]:
        parts = [p.strip() for p in _PARAGRAPH_BREAK.split(text.strip())]
        return [p for p in parts if p]

    @staticmethod
    def is_heading_only(paragraph: str) -> bool:
        paragraph = paragraph.strip()
        return bool(paragraph) and bool(_HEADING.match(paragraph)) and "\n" not in paragraph

    def merge_sticky_headings(self, paragraphs: List[str]) -> List[str]:
        out: List[str] = []
        i = 0
        while i < len(paragraphs):
            p = paragraphs[i].strip()
            if p and self.is_heading_only(p) and i + 1 < len(paragraphs):
                nxt = paragraphs[i + 1].strip()
                if nxt:
                    out.append(f"{p}\n\n{nxt}")
                    i += 2
                    continue
            if p:
                out.append(p)
            i += 1
        return out


class SemanticChunker(BaseChunker):
    """Plain-text chunker splitting by paragraphs, then sentences."""

    priority = 100

    def supports(self, parsed: ParsedContent) -> bool:
        return isinstance(parsed.text, str)

    def chunk(self, parsed: ParsedContent) -> List[Chunk]:
        return [
            Chunk(text=body, metadata=dict(parsed.metadata))
            for body in self.split_text(parsed.text or "")
        ]

    def split_text(self, text: str) -> List[str]:
        text = normalize_newlines(text).strip()
        if not text:
            return []

        budget, overlap = self._limits(0)
        packed: List[str] = []
        for paragraph in XrmChunker.split_paragraphs(text):
            packed.extend(self._pack_sentences(self.split_sentences(paragraph), budget))

        return self.apply_overlap(self.enforce_min_size(packed, budget), overlap)

    @staticmethod
    def split_sentences(text: str) -> List[str]:
        """Split after . ! ? when the next sentence starts with an uppercase letter."""
        sentences: List[str] = []
        for piece in _SENTENCE_END.split(text):
            piece = piece.strip()
            if not piece:
                continue
            if sentences and not piece[0].isupper():
                sentences[-1] = f"{sentences[-1]} {piece}"
            else:
                sentences.append(piece)
        return sentences

    def _pack_sentences(self, sentences: List[str], max_len: int) -> List[str]:
        out: List[str] = []
        current = ""
        for sentence in sentences:
            if len(sentence) > max_len:
                if current:
                    out.append(current)
                    current = ""
                out.extend(self.split_by_lines(sentence, max_len))
                continue

            candidate = sentence if current == "" else f"{current} {sentence}"
            if len(candidate) <= max_len:
                current = candidate
            else:
                out.append(current)
                current = sentence

        if current:
            out.append(current)
        return out


class NoChunker(BaseChunker):
    """Fallback chunker: the whole text as one chunk."""

    priority = 1000

    def supports(self, parsed: ParsedContent) -> bool:
        return bool((parsed.text or "").strip()) or isinstance(parsed.structured, dict)

    def chunk(self, parsed: ParsedContent) -> List[Chunk]:
        text = parsed.text
        if text is None and parsed.structured is not None:
            text = json.dumps(parsed.structured, ensure_ascii=False, indent=4, default=str)
        text = (text or "").strip()
        if not text:
            return []
        return [Chunk(text=text, metadata=dict(parsed.metadata))]


def select_chunker(chunkers: Iterable[BaseChunker], parsed: ParsedContent) -> Optional[BaseChunker]:
    """Return the lowest-priority chunker that supports ``parsed``."""
    for chunker in sorted(chunkers, key=lambda c: c.priority):
        if chunker.supports(parsed):
            return chunker
    return None


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value))
    except ValueError:
        return False
    return True


__all__ = [
    "BaseChunker",
    "XrmChunker",
    "SemanticChunker",
    "NoChunker",
    "select_chunker",
    "normalize_newlines",
]
