"""Append the grafted command to the host's command registration call."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..errors import FailureKind
from ..profiles import TargetProfile
from ..scan.delimiters import match_paren

__all__ = [
    "Injection",
    "RegistrationCall",
    "build_registration",
    "find_registration_call",
    "inject_registration",
]

LOGGER = logging.getLogger(__name__)

_IDENTIFIER = r"[A-Za-z_$][\w$]*"


@dataclass(frozen=True, slots=True)
class RegistrationCall:
    """A subscription call whose arguments register the target function."""

    open_paren: int
    close_paren: int
    args: str


@dataclass(frozen=True, slots=True)
class Injection:
    """Outcome of injecting the new registration argument."""

    ok: bool
    source: str
    method: str = ""
    failure: FailureKind | None = None
    reason: str = ""


def find_registration_call(source: str, profile: TargetProfile) -> RegistrationCall | None:
    """Scan subscription calls until one registers ``profile.target_function``."""
    marker = profile.subscription_marker
    search_from = 0
    while True:
        marker_index = source.find(marker, search_from)
        if marker_index == -1:
            return None

        open_paren = source.find("(", marker_index)
        if open_paren == -1:
            return None

        close_paren = match_paren(source, open_paren)
        if close_paren is None:
            LOGGER.debug("Unbalanced subscription call at offset %d.", open_paren)
            return None

        args = source[open_paren + 1 : close_paren]
        if profile.registration_api in args and profile.target_function in args:
            return RegistrationCall(open_paren=open_paren, close_paren=close_paren, args=args)

        search_from = close_paren + 1


def build_registration(api_var: str, owner_var: str, profile: TargetProfile) -> str:
    """Return the registration expression for the grafted command."""
    return (
        f'{api_var}{profile.registration_api}("{profile.command_name}",'
        f"async A=>await {owner_var}.{profile.derived_function}(A))"
    )


def inject_registration(source: str, profile: TargetProfile) -> Injection:
    """Register the grafted command inside the host's own subscription call.

    The structural scan runs first; known literal anchors are only used when
    no qualifying call site is found.
    """
    call = find_registration_call(source, profile)
    if call is not None:
        api_match = re.search(rf"(?<![\w$])({_IDENTIFIER}){re.escape(profile.registration_api)}(?![\w$])", call.args)
        owner_match = re.search(
            rf"(?<![\w$])({_IDENTIFIER})\.{re.escape(profile.target_function)}\(",
            call.args,
        )
        if api_match and owner_match:
            expression = build_registration(api_match.group(1), owner_match.group(1), profile)
            LOGGER.debug("Injecting registration before offset %d.", call.close_paren)
            updated = source[: call.close_paren] + "," + expression + source[call.close_paren :]
            return Injection(ok=True, source=updated, method="structural")
        LOGGER.debug("Registration call found but bindings could not be captured.")

    for template in profile.registration_templates:
        index = source.find(template.anchor)
        if index == -1:
            continue
        offset = index + len(template.anchor)
        LOGGER.debug("Registration anchor %s matched at offset %d.", template.version, index)
        return Injection(
            ok=True,
            source=source[:offset] + template.insertion + source[offset:],
            method="exact",
        )

    return Injection(
        ok=False,
        source=source,
        failure=FailureKind.NOT_FOUND,
        reason="registration site not found",
    )
