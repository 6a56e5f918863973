"""Tests for configuration loading and secret references."""

from __future__ import annotations

from pathlib import Path

import pytest

from eledger.config import DEFAULT_PARTICIPANTS, LedgerConfig, load_config, with_overrides
from eledger.errors import NotFoundError
from eledger.ledger.models import Role
from eledger.secrets import EnvSecretsProvider, resolve_secret
from eledger.store import open_store
from eledger.store.cached import CachedStore
from eledger.store.http import HttpStore
from eledger.store.local import LocalCacheStore
from eledger.store.sqlite import SqliteStore


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "eledger.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(env={})
    assert config.store_backend == "local"
    assert config.participants == DEFAULT_PARTICIPANTS
    assert config.participant("0490001234599").role == Role.REGULATOR


def test_toml_values(tmp_path) -> None:
    path = _write(
        tmp_path,
        """
[store]
backend = "sqlite"
data_dir = "state"
timeout_s = 3

[retry]
max_attempts = 5
backoff_s = 0.25

[audit]
enabled = false

[visibility]
redact_commercial_fields = true

[[participants]]
id = "M1"
role = "manufacturer"
org_name = "Hill Brewery"

[[participants]]
id = "R1"
role = "RETAILER"
""",
    )
    config = load_config(path, env={})
    assert config.store_backend == "sqlite"
    assert config.data_dir == tmp_path / "state"
    assert config.resolved_sqlite_path == tmp_path / "state" / "ledger.db"
    assert config.timeout_s == 3.0
    assert config.retry_max_attempts == 5
    assert config.retry_backoff_s == 0.25
    assert config.audit_enabled is False
    assert config.redact_commercial_fields is True
    assert [p.id for p in config.participants] == ["M1", "R1"]
    assert config.participant("M1").role == Role.MANUFACTURER
    with pytest.raises(NotFoundError):
        config.participant("X")


def test_env_overrides_file(tmp_path) -> None:
    path = _write(tmp_path, '[store]\nbackend = "sqlite"\n')
    config = load_config(
        path,
        env={"ELEDGER_STORE": "local", "ELEDGER_RETRY_MAX_ATTEMPTS": "7", "ELEDGER_AUDIT_ENABLED": "no"},
    )
    assert config.store_backend == "local"
    assert config.retry_max_attempts == 7
    assert config.audit_enabled is False


@pytest.mark.parametrize(
    "text",
    [
        '[store]\nbackend = "postgres"\n',
        '[store]\nbackend = "http"\n',
        '[store]\nbackend = "http"\napi_url = "https://x"\napi_token_ref = "plaintext"\n',
        "[retry]\nmax_attempts = 0\n",
        '[[participants]]\nid = "A"\nrole = "WIZARD"\n',
        '[[participants]]\nid = "A"\nrole = "RETAILER"\n[[participants]]\nid = "A"\nrole = "AUDITOR"\n',
        "not = [valid toml",
    ],
)
def test_invalid_config_raises_value_error(tmp_path, text) -> None:
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, text), env={})


def test_bad_env_value(tmp_path) -> None:
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, ""), env={"ELEDGER_TIMEOUT_S": "soon"})


def test_with_overrides_ignores_none(tmp_path) -> None:
    config = LedgerConfig()
    assert with_overrides(config, store_backend=None) is config
    assert with_overrides(config, data_dir=tmp_path).data_dir == tmp_path
    with pytest.raises(ValueError):
        with_overrides(config, store_backend="nope")


def test_secret_resolution() -> None:
    provider = EnvSecretsProvider({"API_TOKEN": "t0k3n"})
    assert resolve_secret("env:API_TOKEN", provider) == "t0k3n"
    assert resolve_secret(None, provider) is None
    with pytest.raises(ValueError):
        resolve_secret("env:MISSING", provider)
    with pytest.raises(ValueError):
        resolve_secret("vault:kv/token", provider)


def test_open_store_by_backend(tmp_path, monkeypatch) -> None:
    assert isinstance(open_store(LedgerConfig(data_dir=tmp_path)), LocalCacheStore)

    sqlite = open_store(LedgerConfig(store_backend="sqlite", data_dir=tmp_path))
    assert isinstance(sqlite, SqliteStore)
    sqlite.close()

    monkeypatch.setenv("LEDGER_TOKEN", "abc")
    remote = LedgerConfig(store_backend="http", api_url="https://ledger.test", api_token_ref="env:LEDGER_TOKEN", data_dir=tmp_path)
    assert isinstance(open_store(remote), HttpStore)
    cached = open_store(with_overrides(remote, fallback_to_cache=True))
    assert isinstance(cached, CachedStore)
