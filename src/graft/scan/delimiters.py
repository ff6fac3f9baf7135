"""Balanced delimiter scanning over unparsed JavaScript source."""

from __future__ import annotations

from typing import Iterator

__all__ = ["iter_code_ranges", "match_brace", "match_delimiter", "match_paren"]

_QUOTES = frozenset("'\"`")


def match_delimiter(
    source: str,
    open_index: int,
    open_char: str = "(",
    close_char: str = ")",
) -> int | None:
    """Return the index of the delimiter closing the one at ``open_index``.

    Delimiters inside single-quoted, double-quoted, or template literals are
    ignored.  A backslash escapes exactly the next character in any context.
    ``None`` is returned when the buffer ends before the depth returns to
    zero, or when ``open_index`` does not point at ``open_char``.
    """
    if open_index < 0 or open_index >= len(source):
        return None
    if source[open_index] != open_char:
        return None

    depth = 0
    quote: str | None = None
    escaped = False

    for index in range(open_index, len(source)):
        char = source[index]

        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue

        if quote is not None:
            if char == quote:
                quote = None
            continue
        if char in _QUOTES:
            quote = char
            continue

        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return index

    return None


def iter_code_ranges(source: str) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` ranges of ``source`` lying outside string literals.

    Substitutions inside template literals (``${...}``) are code and are
    yielded too; nested templates inside a substitution are followed.
    """
    quote: str | None = None
    escaped = False
    start = 0
    depth = 0
    # Brace depth at which each open substitution hands back to its template.
    resume_depths: list[int] = []
    index = 0
    length = len(source)

    while index < length:
        char = source[index]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif quote is not None:
            if char == quote:
                quote = None
                start = index + 1
            elif quote == "`" and char == "$" and source.startswith("{", index + 1):
                quote = None
                resume_depths.append(depth)
                depth += 1
                index += 2
                start = index
                continue
        elif char in _QUOTES:
            if index > start:
                yield start, index
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if resume_depths and depth == resume_depths[-1]:
                resume_depths.pop()
                if index > start:
                    yield start, index
                quote = "`"
        index += 1

    if quote is None and start < length:
        yield start, length


def match_paren(source: str, open_index: int) -> int | None:
    return match_delimiter(source, open_index, "(", ")")


def match_brace(source: str, open_index: int) -> int | None:
    return match_delimiter(source, open_index, "{", "}")
