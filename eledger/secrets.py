"""
Secret references.

Credentials (the remote ledger API token) are configured as references such
as "env:ELEDGER_API_TOKEN", never as raw values, so config files and logs
only ever contain the reference.
"""

from __future__ import annotations

import os
from typing import Mapping, Protocol


class SecretsProvider(Protocol):
    def supports(self, ref: str) -> bool:
        ...

    def get(self, ref: str) -> str | None:
        ...


class EnvSecretsProvider:
    """Resolves "env:VAR_NAME" from the process environment (or a given mapping)."""

    PREFIX = "env:"

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        return self._environ.get(ref[len(self.PREFIX) :])


def is_secret_ref(value: str) -> bool:
    prefix, sep, key = value.partition(":")
    return bool(sep and key) and prefix in {"env"}


def resolve_secret(ref: str | None, provider: SecretsProvider | None = None) -> str | None:
    """
    Resolve one reference. None stays None.

    Raises:
        ValueError: the reference has an unknown scheme or is not set
    """
    if not ref:
        return None
    provider = provider or EnvSecretsProvider()
    if not provider.supports(ref):
        raise ValueError(f"unsupported secret reference {ref!r} (expected env:VAR_NAME)")
    value = provider.get(ref)
    if value is None:
        raise ValueError(f"secret reference {ref!r} is not set")
    return value


__all__ = ["SecretsProvider", "EnvSecretsProvider", "is_secret_ref", "resolve_secret"]
