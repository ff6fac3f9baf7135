"""Derive the grafted function from the host's own implementation.

Two strategies implement the same ``derive(source)`` contract:

* ``ExactStrategy`` looks for the verbatim source of a known host version and
  emits a hand-written replacement.  Deterministic, but any cosmetic change
  in the host bundle makes it miss.
* ``StructuralStrategy`` copies the live target function, renames it, and
  rewrites the delegated call-and-destructure statement so the credentials
  are read straight from the function's first parameter.

``derive_patch`` picks between them.  Neither strategy loosens its pattern
on a miss; a failed match is reported, never guessed around.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Protocol

from ..errors import FailureKind
from ..profiles import TargetProfile
from ..scan.delimiters import iter_code_ranges
from ..scan.functions import declaration_token, extract_function

__all__ = [
    "Derivation",
    "ExactStrategy",
    "PatchStrategy",
    "StructuralStrategy",
    "derive_patch",
    "inject_fingerprint",
    "mask_literals",
]

LOGGER = logging.getLogger(__name__)

_IDENTIFIER = r"[A-Za-z_$][\w$]*"
_GENERIC_CALLEE = r"(?:\(0,[\w$.]+\)|[A-Za-z_$][\w$.]*)"
_SIMPLE_PARAM = re.compile(rf"^\s*({_IDENTIFIER})\s*$")


@dataclass(frozen=True, slots=True)
class Derivation:
    """Outcome of deriving the grafted function from a buffer."""

    strategy: str
    ok: bool
    text: str = ""
    insert_at: int = -1
    failure: FailureKind | None = None
    reason: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, strategy: str, failure: FailureKind, reason: str, **details: Any) -> "Derivation":
        return cls(strategy=strategy, ok=False, failure=failure, reason=reason, details=details)


class PatchStrategy(Protocol):
    name: str

    def derive(self, source: str) -> Derivation:
        ...


def inject_fingerprint(function_text: str, fingerprint: str) -> str:
    """Insert ``fingerprint`` as the first token of the function body."""
    brace = function_text.find("{")
    if brace == -1:
        raise ValueError("Function text has no body.")
    if function_text.startswith(fingerprint, brace + 1):
        return function_text
    return function_text[: brace + 1] + fingerprint + function_text[brace + 1 :]


class ExactStrategy:
    """Match a known host version verbatim and splice a literal replacement."""

    name = "exact"

    def __init__(self, profile: TargetProfile, *, version: str | None = None) -> None:
        self.profile = profile
        self.version = version

    def derive(self, source: str) -> Derivation:
        for template in self.profile.templates_in_order(self.version):
            index = source.find(template.original)
            if index == -1:
                continue
            LOGGER.debug("Known template %s matched at offset %d.", template.version, index)
            return Derivation(
                strategy=self.name,
                ok=True,
                text=inject_fingerprint(template.replacement, self.profile.fingerprint),
                insert_at=index + len(template.original),
                details={"template": template.version},
            )
        return Derivation.failed(
            self.name,
            FailureKind.NOT_FOUND,
            "pattern not found: no known template matches the bundle",
            templates=[template.version for template in self.profile.templates],
        )


class StructuralStrategy:
    """Derive the grafted function from the live target function text."""

    name = "structural"

    def __init__(self, profile: TargetProfile) -> None:
        self.profile = profile
        self._pattern = _call_destructure_pattern(profile)

    def derive(self, source: str) -> Derivation:
        profile = self.profile
        extracted = extract_function(source, profile.target_function, keyword=profile.declaration_keyword)
        if extracted is None:
            return Derivation.failed(
                self.name,
                FailureKind.NOT_FOUND,
                f"function not found: {profile.target_function}",
            )
        LOGGER.debug("Extracted %s (%d chars).", profile.target_function, len(extracted.source))

        old_token = declaration_token(profile.target_function, profile.declaration_keyword)
        new_token = declaration_token(profile.derived_function, profile.declaration_keyword)
        func = extracted.source.replace(old_token, new_token, 1)

        param = _first_parameter(func, len(new_token))
        if param is None:
            return Derivation.failed(
                self.name,
                FailureKind.PATTERN_MISMATCH,
                "pattern not recognized: first parameter is not a plain identifier",
            )

        match = self._pattern.search(func)
        if match is None:
            return Derivation.failed(
                self.name,
                FailureKind.PATTERN_MISMATCH,
                "pattern not recognized: delegated call-and-destructure shape is missing",
                function=profile.target_function,
            )

        first_field, second_field = profile.destructured_fields
        result_var = match.group("result")
        replacement = (
            f"const{{{first_field}:{match.group('first')},{second_field}:{match.group('second')}}}={param}"
        )
        func = func[: match.start()] + replacement + func[match.end() :]

        if _rebinds(mask_literals(func), result_var):
            return Derivation.failed(
                self.name,
                FailureKind.PATTERN_MISMATCH,
                f"pattern not recognized: {result_var} is rebound inside the function",
                result_var=result_var,
            )

        func = _rewrite_member_access(func, result_var, param)
        if _references(mask_literals(func), result_var):
            return Derivation.failed(
                self.name,
                FailureKind.PATTERN_MISMATCH,
                f"pattern not recognized: {result_var} is still referenced after the rewrite",
                result_var=result_var,
            )

        LOGGER.debug("Rewrote %s -> %s in derived function.", result_var, param)
        return Derivation(
            strategy=self.name,
            ok=True,
            text=inject_fingerprint(func, profile.fingerprint),
            insert_at=extracted.end,
            details={"result_var": result_var, "param": param},
        )


def derive_patch(source: str, profile: TargetProfile, *, version: str | None = None) -> Derivation:
    """Try the exact strategy when templates exist, then the structural one."""
    if profile.templates:
        exact = ExactStrategy(profile, version=version).derive(source)
        if exact.ok:
            return exact
        LOGGER.info("No known template matched; deriving structurally.")
    return StructuralStrategy(profile).derive(source)


def _call_destructure_pattern(profile: TargetProfile) -> re.Pattern[str]:
    callee = profile.delegate_callee or _GENERIC_CALLEE
    first_field, second_field = (re.escape(name) for name in profile.destructured_fields)
    return re.compile(
        rf"const (?P<result>{_IDENTIFIER})=await\s*{callee}\((?P<arg>{_IDENTIFIER})\),"
        rf"\{{{first_field}:(?P<first>{_IDENTIFIER}),{second_field}:(?P<second>{_IDENTIFIER})\}}=(?P=result)"
        r"(?![\w$])"
    )


def mask_literals(text: str) -> str:
    """Blank out string literal contents, keeping every offset unchanged."""
    chars = [" "] * len(text)
    for start, end in iter_code_ranges(text):
        chars[start:end] = text[start:end]
    return "".join(chars)


def _identifier_positions(masked: str, name: str) -> Iterator[int]:
    """Yield offsets where ``name`` appears as a variable, not a property name."""
    for match in re.finditer(rf"(?<![\w$]){re.escape(name)}(?![\w$])", masked):
        index = match.start()
        if index > 0 and masked[index - 1] == "." and masked[max(index - 3, 0) : index] != "...":
            continue
        yield index


def _rebinds(masked: str, name: str) -> bool:
    """Return ``True`` when ``name`` gets a new binding inside ``masked``."""
    token = re.compile(rf"(?<![\w$]){re.escape(name)}(?![\w$])")
    escaped = re.escape(name)
    if re.search(rf"\bcatch\s*\(\s*{escaped}\s*\)", masked):
        return True
    if re.search(rf"(?<![\w$.]){escaped}\s*=>", masked):
        return True
    if re.search(rf"\b(?:const|let|var)\s+{escaped}(?![\w$])", masked):
        return True
    binding_lists = (
        r"\b(?:const|let|var)\s*([\[{][^=]*)=",
        r"\(([^()]*)\)\s*=>",
        r"\bfunction\b[^(]*\(([^()]*)\)",
    )
    for pattern in binding_lists:
        for match in re.finditer(pattern, masked):
            if token.search(match.group(1)):
                return True
    return False


def _rewrite_member_access(func: str, name: str, param: str) -> str:
    """Point ``name.x`` accesses (spreads included) at ``param`` outside literals."""
    masked = mask_literals(func)
    pieces: list[str] = []
    cursor = 0
    for index in _identifier_positions(masked, name):
        after = index + len(name)
        if not re.match(r"\.[A-Za-z_$]", masked[after : after + 2]):
            continue
        pieces.append(func[cursor:index])
        pieces.append(param)
        cursor = after
    pieces.append(func[cursor:])
    return "".join(pieces)


def _references(masked: str, name: str) -> bool:
    return next(_identifier_positions(masked, name), None) is not None


def _first_parameter(func: str, params_start: int) -> str | None:
    close = func.find(")", params_start)
    if close == -1:
        return None
    first = func[params_start:close].split(",", 1)[0]
    match = _SIMPLE_PARAM.match(first)
    return match.group(1) if match else None
