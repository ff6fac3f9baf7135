"""Locate named function declarations and splice spans in source buffers."""

from __future__ import annotations

from dataclasses import dataclass

from .delimiters import match_brace

__all__ = [
    "ExtractedFunction",
    "Span",
    "declaration_token",
    "extract_function",
    "insert_text",
    "remove_span",
]


@dataclass(frozen=True, slots=True)
class Span:
    """Half-open ``[start, end)`` range into one specific buffer snapshot."""

    start: int
    end: int
    text: str

    def __post_init__(self) -> None:
        if self.start < 0 or self.start > self.end:
            raise ValueError(f"Invalid span bounds: [{self.start}, {self.end})")
        if len(self.text) != self.end - self.start:
            raise ValueError("Span text length does not match its bounds.")

    @classmethod
    def of(cls, source: str, start: int, end: int) -> "Span":
        return cls(start=start, end=end, text=source[start:end])

    def matches(self, source: str) -> bool:
        """Return ``True`` when slicing ``source`` still yields this span's text."""
        return source[self.start : self.end] == self.text


@dataclass(frozen=True, slots=True)
class ExtractedFunction:
    """Verbatim source of a located function together with its span."""

    name: str
    span: Span
    body_open: int

    @property
    def source(self) -> str:
        return self.span.text

    @property
    def start(self) -> int:
        return self.span.start

    @property
    def end(self) -> int:
        return self.span.end


def declaration_token(name: str, keyword: str = "async") -> str:
    """Return the literal token sequence that opens a declaration of ``name``."""
    prefix = f"{keyword} " if keyword else ""
    return f"{prefix}{name}("


def extract_function(source: str, name: str, *, keyword: str = "async") -> ExtractedFunction | None:
    """Find the first declaration of ``name`` and return its full text.

    The span starts at the declaration token and ends just past the brace
    closing the body.  ``None`` means the function is absent or its body
    could not be balanced, which callers treat as an incompatible bundle.
    """
    token = declaration_token(name, keyword)
    start = source.find(token)
    if start == -1:
        return None

    body_open = source.find("{", start)
    if body_open == -1:
        return None

    body_close = match_brace(source, body_open)
    if body_close is None:
        return None

    return ExtractedFunction(name=name, span=Span.of(source, start, body_close + 1), body_open=body_open)


def remove_span(source: str, span: Span) -> str:
    """Return a new buffer with ``span`` cut out."""
    if not span.matches(source):
        raise ValueError(f"Span [{span.start}, {span.end}) does not belong to this buffer.")
    return source[: span.start] + source[span.end :]


def insert_text(source: str, offset: int, text: str) -> str:
    """Return a new buffer with ``text`` inserted at ``offset``."""
    if offset < 0 or offset > len(source):
        raise ValueError(f"Insertion offset {offset} is outside the buffer.")
    return source[:offset] + text + source[offset:]
