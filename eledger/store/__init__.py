"""Ledger persistence adapters."""

from __future__ import annotations

import logging

from ..config import LedgerConfig
from ..secrets import resolve_secret
from .base import LedgerStore
from .cached import CachedStore
from .http import HttpStore, HttpStoreConfig
from .local import LEDGER_FILENAME, LocalCacheStore
from .retry import RetryPolicy
from .sqlite import SqliteStore

logger = logging.getLogger(__name__)


def open_store(config: LedgerConfig) -> LedgerStore:
    """Build the adapter selected by `config.store_backend`."""
    backend = config.store_backend
    if backend == "local":
        store: LedgerStore = LocalCacheStore(config.data_dir / LEDGER_FILENAME)
    elif backend == "sqlite":
        store = SqliteStore(config.resolved_sqlite_path)
    elif backend == "http":
        remote = HttpStore(
            HttpStoreConfig(
                api_url=config.api_url or "",
                token=resolve_secret(config.api_token_ref),
                timeout_s=config.timeout_s,
            ),
            RetryPolicy(
                max_attempts=config.retry_max_attempts,
                backoff_s=config.retry_backoff_s,
                multiplier=config.retry_multiplier,
                max_backoff_s=config.retry_max_backoff_s,
            ),
        )
        if config.fallback_to_cache:
            store = CachedStore(remote, LocalCacheStore(config.data_dir / "cache.json"))
        else:
            store = remote
    else:
        raise ValueError(f"unknown store backend: {backend!r}")
    logger.debug("opened %s store", store.name)
    return store


__all__ = [
    "LedgerStore",
    "LocalCacheStore",
    "SqliteStore",
    "HttpStore",
    "HttpStoreConfig",
    "CachedStore",
    "RetryPolicy",
    "open_store",
]
