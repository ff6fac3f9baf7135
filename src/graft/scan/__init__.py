"""Text scanning primitives for minified bundles."""

from .delimiters import iter_code_ranges, match_brace, match_delimiter, match_paren
from .functions import ExtractedFunction, Span, declaration_token, extract_function, insert_text, remove_span

__all__ = [
    "ExtractedFunction",
    "Span",
    "declaration_token",
    "extract_function",
    "insert_text",
    "iter_code_ranges",
    "match_brace",
    "match_delimiter",
    "match_paren",
    "remove_span",
]
