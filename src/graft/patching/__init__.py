"""Patch generation and registration injection."""

from .registration import Injection, RegistrationCall, build_registration, find_registration_call, inject_registration
from .strategies import Derivation, ExactStrategy, PatchStrategy, StructuralStrategy, derive_patch, inject_fingerprint

__all__ = [
    "Derivation",
    "ExactStrategy",
    "Injection",
    "PatchStrategy",
    "RegistrationCall",
    "StructuralStrategy",
    "build_registration",
    "derive_patch",
    "find_registration_call",
    "inject_fingerprint",
    "inject_registration",
]
