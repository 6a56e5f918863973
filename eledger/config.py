"""
Deployment configuration.

Loaded from a TOML file (default: ./eledger.toml when present) with
ELEDGER_* environment overrides on top:

    [store]
    backend = "sqlite"            # local | sqlite | http
    data_dir = ".eledger"
    api_url = "https://ledger.example/api"
    api_token_ref = "env:ELEDGER_API_TOKEN"

    [retry]
    max_attempts = 3

    [[participants]]
    id = "0490001234567"
    role = "MANUFACTURER"
    org_name = "Royal Spirits Distillery"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import NotFoundError, ValidationError
from .ledger.models import Principal, Role
from .secrets import is_secret_ref

BACKENDS = ("local", "sqlite", "http")

DEFAULT_CONFIG_FILENAME = "eledger.toml"
DEFAULT_DATA_DIR = ".eledger"

ENV_PREFIX = "ELEDGER_"

# Directory used when the config declares no [[participants]]
DEFAULT_PARTICIPANTS: tuple[Principal, ...] = (
    Principal("0490001234567", Role.MANUFACTURER, "Royal Spirits Distillery", "Plant Manager"),
    Principal("0490001234568", Role.DISTRIBUTOR, "State Bonded Warehouse #4", "Logistics Head"),
    Principal("0490001234569", Role.RETAILER, "City Premium Wines", "Store Owner"),
    Principal("0490001234599", Role.REGULATOR, "State Excise Department", "Excise Inspector"),
)


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


@dataclass(frozen=True)
class LedgerConfig:
    store_backend: str = "local"
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    sqlite_path: Path | None = None
    api_url: str | None = None
    api_token_ref: str | None = None
    timeout_s: float = 10.0
    fallback_to_cache: bool = False

    retry_max_attempts: int = 3
    retry_backoff_s: float = 0.5
    retry_multiplier: float = 2.0
    retry_max_backoff_s: float = 8.0

    audit_enabled: bool = True
    audit_path: Path | None = None

    redact_commercial_fields: bool = False

    participants: tuple[Principal, ...] = DEFAULT_PARTICIPANTS

    @property
    def resolved_sqlite_path(self) -> Path:
        return self.sqlite_path or self.data_dir / "ledger.db"

    @property
    def resolved_audit_path(self) -> Path:
        return self.audit_path or self.data_dir / "audit.log"

    def validate(self) -> None:
        if self.store_backend not in BACKENDS:
            raise ValueError(f"store.backend must be one of {', '.join(BACKENDS)} (got {self.store_backend!r})")
        if self.store_backend == "http" and not self.api_url:
            raise ValueError("store.api_url is required for the http backend")
        if self.api_token_ref and not is_secret_ref(self.api_token_ref):
            raise ValueError("store.api_token_ref must be a secret reference such as env:VAR_NAME")
        if self.timeout_s <= 0:
            raise ValueError("store.timeout_s must be positive")
        if self.retry_max_attempts < 1:
            raise ValueError("retry.max_attempts must be >= 1")
        if self.retry_backoff_s < 0 or self.retry_max_backoff_s < 0:
            raise ValueError("retry backoff values must be >= 0")
        if self.retry_multiplier < 1:
            raise ValueError("retry.multiplier must be >= 1")
        ids = [p.id for p in self.participants]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate participant ids: {', '.join(dupes)}")

    def participant(self, participant_id: str) -> Principal:
        for principal in self.participants:
            if principal.id == participant_id:
                return principal
        raise NotFoundError(f"unknown participant: {participant_id}")


def _from_mapping(data: Mapping[str, Any], base_dir: Path) -> dict[str, Any]:
    store = _coerce_dict(data.get("store"))
    retry = _coerce_dict(data.get("retry"))
    audit = _coerce_dict(data.get("audit"))
    visibility = _coerce_dict(data.get("visibility"))

    def path_or_none(value: Any) -> Path | None:
        if value in (None, ""):
            return None
        p = Path(str(value)).expanduser()
        return p if p.is_absolute() else base_dir / p

    values: dict[str, Any] = {}
    if "backend" in store:
        values["store_backend"] = str(store["backend"]).strip().lower()
    if "data_dir" in store:
        values["data_dir"] = path_or_none(store["data_dir"]) or Path(DEFAULT_DATA_DIR)
    if "sqlite_path" in store:
        values["sqlite_path"] = path_or_none(store["sqlite_path"])
    if "api_url" in store:
        values["api_url"] = str(store["api_url"]).strip() or None
    if "api_token_ref" in store:
        values["api_token_ref"] = str(store["api_token_ref"]).strip() or None
    if "timeout_s" in store:
        values["timeout_s"] = float(store["timeout_s"])
    if "fallback_to_cache" in store:
        values["fallback_to_cache"] = _as_bool(store["fallback_to_cache"])

    for key in ("max_attempts",):
        if key in retry:
            values[f"retry_{key}"] = int(retry[key])
    for key in ("backoff_s", "multiplier", "max_backoff_s"):
        if key in retry:
            values[f"retry_{key}"] = float(retry[key])

    if "enabled" in audit:
        values["audit_enabled"] = _as_bool(audit["enabled"])
    if "path" in audit:
        values["audit_path"] = path_or_none(audit["path"])

    if "redact_commercial_fields" in visibility:
        values["redact_commercial_fields"] = _as_bool(visibility["redact_commercial_fields"])

    participants: list[Principal] = []
    for raw in data.get("participants", []):
        if not isinstance(raw, dict):
            continue
        try:
            participants.append(Principal.from_dict(raw))
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
    if participants:
        values["participants"] = tuple(participants)
    return values


_ENV_KEYS: dict[str, tuple[str, Any]] = {
    "STORE": ("store_backend", lambda v: v.strip().lower()),
    "DATA_DIR": ("data_dir", lambda v: Path(v).expanduser()),
    "SQLITE_PATH": ("sqlite_path", lambda v: Path(v).expanduser() if v else None),
    "API_URL": ("api_url", lambda v: v.strip() or None),
    "API_TOKEN_REF": ("api_token_ref", lambda v: v.strip() or None),
    "TIMEOUT_S": ("timeout_s", float),
    "FALLBACK_TO_CACHE": ("fallback_to_cache", _as_bool),
    "RETRY_MAX_ATTEMPTS": ("retry_max_attempts", int),
    "AUDIT_ENABLED": ("audit_enabled", _as_bool),
    "AUDIT_PATH": ("audit_path", lambda v: Path(v).expanduser() if v else None),
    "REDACT_COMMERCIAL_FIELDS": ("redact_commercial_fields", _as_bool),
}


def load_config(path: Path | str | None = None, env: Mapping[str, str] | None = None) -> LedgerConfig:
    """
    Build a validated LedgerConfig.

    Args:
        path: TOML file. When None, ./eledger.toml is used if it exists.
        env: Environment mapping for ELEDGER_* overrides (defaults to os.environ)

    Raises:
        ValueError: unreadable file or invalid values
    """
    import tomllib

    env = os.environ if env is None else env
    values: dict[str, Any] = {}

    config_path = Path(path) if path is not None else None
    if config_path is None and Path(DEFAULT_CONFIG_FILENAME).exists():
        config_path = Path(DEFAULT_CONFIG_FILENAME)

    if config_path is not None:
        try:
            data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ValueError(f"config file not found: {config_path}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"invalid TOML in {config_path}: {exc}") from exc
        values.update(_from_mapping(data, config_path.parent))

    for suffix, (name, convert) in _ENV_KEYS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is None:
            continue
        try:
            values[name] = convert(raw)
        except ValueError as exc:
            raise ValueError(f"{ENV_PREFIX}{suffix}: {exc}") from exc

    config = LedgerConfig(**values)
    config.validate()
    return config


def with_overrides(config: LedgerConfig, **changes: Any) -> LedgerConfig:
    """Apply CLI-level overrides (None values are ignored) and re-validate."""
    updates = {k: v for k, v in changes.items() if v is not None}
    if not updates:
        return config
    updated = replace(config, **updates)
    updated.validate()
    return updated


__all__ = ["LedgerConfig", "load_config", "with_overrides", "BACKENDS", "DEFAULT_PARTICIPANTS"]
