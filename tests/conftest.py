from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from graft.profiles import TargetProfile  # noqa: E402

HANDLER = (
    "async handleAuthToken(A){const e=await(0,n.registerUser)(A),{apiKey:t,name:i}=e,"
    "o=(0,s.getApiServerUrl)(e.apiServerUrl);if(!t)throw new r.AuthMalformedLanguageServerResponseError"
    '("Auth login failure: empty api_key");if(!i)throw new r.AuthMalformedLanguageServerResponseError'
    '("Auth login failure: empty name");const a={id:(0,l.v4)(),accessToken:t,account:{label:i,id:i},'
    'scopes:[]},c=o===this.context.globalState.get("apiServerUrl")?"{":"}";'
    "return await this.context.secrets.store(d.sessionsSecretKey,JSON.stringify([a])),a}"
)

REGISTRATION = (
    "A.subscriptions.push(u.commands.registerCommand(\"windsurf.provideAuthTokenToAuthProvider\","
    "async A=>{try{return{session:await h.handleAuthToken(A),error:void 0}}catch(e){return{error:e}}}))"
)


def make_bundle(handler: str = HANDLER, registration: str = REGISTRATION) -> str:
    """Build a minified bundle resembling the host extension."""
    return (
        '"use strict";var n=require("./auth"),s=require("./urls");'
        "class p{constructor(A){this.context=A}" + handler + "async logout(){return this.context.secrets.delete(\"x\")}}"
        "function activate(A){const h=new p(A);"
        'A.subscriptions.push(u.window.registerUriHandler({handleUri:A=>h.handleUri(A)}));'
        + registration
        + ";return h}exports.activate=activate;"
    )


@pytest.fixture()
def bundle_text() -> str:
    return make_bundle()


@pytest.fixture()
def profile() -> TargetProfile:
    return TargetProfile(
        name="test-host",
        target_function="handleAuthToken",
        derived_function="handleAuthTokenWithShit",
        command_name="windsurf.provideAuthTokenToAuthProviderWithShit",
        fingerprint="/*WSPATCH_V3*/",
        delegate_callee=r"\(0,[A-Za-z_$][\w$]*\.registerUser\)",
    )


@dataclass
class FakeResolver:
    """In-memory path resolver recording which checks were made."""

    path: Path | None
    accessible: bool = True
    writable: bool = True
    calls: list[str] = field(default_factory=list)

    def get_extension_path(self) -> Path | None:
        self.calls.append("path")
        return self.path

    def is_file_accessible(self, path: Path) -> bool:
        self.calls.append("accessible")
        return self.accessible

    def is_file_writable(self, path: Path) -> bool:
        self.calls.append("writable")
        return self.writable

    def get_permission_fix_suggestion(self, path: Path) -> str:
        self.calls.append("suggestion")
        return f"chmod u+w {path}"


@pytest.fixture()
def bundle_file(tmp_path: Path, bundle_text: str) -> Path:
    target = tmp_path / "extensions" / "windsurf" / "dist" / "extension.js"
    target.parent.mkdir(parents=True)
    target.write_text(bundle_text, encoding="utf-8")
    return target


@pytest.fixture()
def bundle_factory():
    return make_bundle


@pytest.fixture()
def fake_resolver_factory():
    def _factory(path: Path | None, *, accessible: bool = True, writable: bool = True) -> FakeResolver:
        return FakeResolver(path=path, accessible=accessible, writable=writable)

    return _factory
