"""Target profiles describing which host function gets grafted and how."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ProfileError
from .markers import PatchMarkers

__all__ = [
    "KnownRegistration",
    "KnownTemplate",
    "ProfileModel",
    "TargetProfile",
    "WINDSURF_PROFILE",
    "load_profile",
]


class ProfileModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class KnownTemplate(ProfileModel):
    """Literal source of a known host version and its hand-written derivation."""

    version: str
    original: str
    replacement: str

    @field_validator("original", "replacement")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("template text must not be empty")
        return value


class KnownRegistration(ProfileModel):
    """Literal registration anchor; ``insertion`` is placed right after it."""

    version: str
    anchor: str
    insertion: str


class TargetProfile(ProfileModel):
    """Everything the patcher needs to know about one host bundle."""

    name: str
    target_function: str
    derived_function: str
    command_name: str
    fingerprint: str
    declaration_keyword: str = "async"
    # Regex fragment for the callee of the delegated call; None accepts
    # ``(0,a.b)`` or a dotted name.
    delegate_callee: Optional[str] = None
    destructured_fields: Tuple[str, str] = ("apiKey", "name")
    subscription_marker: str = ".subscriptions.push("
    registration_api: str = ".commands.registerCommand"
    templates: List[KnownTemplate] = Field(default_factory=list)
    registration_templates: List[KnownRegistration] = Field(default_factory=list)

    @field_validator("target_function", "derived_function", "command_name", "fingerprint")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @property
    def markers(self) -> PatchMarkers:
        return PatchMarkers(
            command=self.command_name,
            function=self.derived_function,
            fingerprint=self.fingerprint,
        )

    def template_for(self, version: str | None) -> KnownTemplate | None:
        if version is None:
            return None
        for template in self.templates:
            if template.version == version:
                return template
        return None

    def templates_in_order(self, version: str | None = None) -> list[KnownTemplate]:
        """Return templates with the one keyed by ``version`` first."""
        preferred = self.template_for(version)
        ordered = [preferred] if preferred is not None else []
        ordered.extend(template for template in self.templates if template is not preferred)
        return ordered


# No known-version templates ship with the built-in profile; the exact strategy
# and the exact registration fallback only run once configuration supplies
# ``profile.templates`` or ``profile.registration_templates``.
WINDSURF_PROFILE = TargetProfile(
    name="windsurf",
    target_function="handleAuthToken",
    derived_function="handleAuthTokenWithShit",
    command_name="windsurf.provideAuthTokenToAuthProviderWithShit",
    fingerprint="/*WSPATCH_V3*/",
    delegate_callee=r"\(0,[A-Za-z_$][\w$]*\.registerUser\)",
)


def load_profile(data: Mapping[str, Any] | None = None, *, base: TargetProfile = WINDSURF_PROFILE) -> TargetProfile:
    """Overlay ``data`` on ``base`` and validate the result."""
    if data is None:
        return base
    if not isinstance(data, Mapping):
        raise ProfileError("Profile configuration must be a mapping.")

    merged = base.model_dump()
    merged.update(dict(data))
    try:
        return TargetProfile.model_validate(merged)
    except ValidationError as error:
        raise ProfileError(
            f"Invalid profile configuration: {error.error_count()} error(s).",
            details={"errors": error.errors(include_url=False)},
        ) from error
