"""Payload accepted by the grafted command on the host's command bus."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .profiles import TargetProfile

DEFAULT_API_SERVER_URL = "https://server.self-serve.windsurf.com"

__all__ = ["AuthTokenArgs", "CommandInvocation", "DEFAULT_API_SERVER_URL", "build_invocation"]


class AuthTokenArgs(BaseModel):
    """Structured argument ``{apiKey, name, apiServerUrl}``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_key: str = Field(alias="apiKey")
    name: str
    api_server_url: str = Field(default=DEFAULT_API_SERVER_URL, alias="apiServerUrl")

    @field_validator("api_key", "name")
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("api_server_url")
    @classmethod
    def _default_when_blank(cls, value: str) -> str:
        return value.strip() or DEFAULT_API_SERVER_URL


@dataclass(frozen=True, slots=True)
class CommandInvocation:
    """Command name plus the JSON payload to send with it."""

    command: str
    payload: Dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "args": dict(self.payload)}


def build_invocation(
    profile: TargetProfile,
    *,
    api_key: str,
    name: str,
    api_server_url: str | None = None,
) -> CommandInvocation:
    """Validate the credentials and pair them with the grafted command name."""
    args = AuthTokenArgs(apiKey=api_key, name=name, apiServerUrl=api_server_url or DEFAULT_API_SERVER_URL)
    return CommandInvocation(command=profile.command_name, payload=args.model_dump(by_alias=True))
