"""Read-through cache with degraded read-only fallback."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from ..errors import StoreUnavailableError
from ..ledger.logistics import LogisticsUnit
from ..ledger.models import TrackedUnit
from ..ledger.verification import VerificationRequest
from .base import LedgerStore

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CachedStore(LedgerStore):
    """
    Wraps an authoritative `primary` store with a local `cache`.

    Successful primary reads refresh the cache and successful writes go to
    both. When the primary is unreachable and `fallback_to_cache` is set,
    reads are served from the cache and the store turns `degraded`: every
    write is refused until a primary read succeeds again, so the cache is
    never the source of a new fact.
    """

    name = "cached"

    def __init__(self, primary: LedgerStore, cache: LedgerStore, *, fallback_to_cache: bool = True):
        self.primary = primary
        self.cache = cache
        self.fallback_to_cache = fallback_to_cache
        self.degraded = False

    def _read(self, what: str, primary: Callable[[], T], cached: Callable[[], T]) -> T:
        try:
            result = primary()
        except StoreUnavailableError as exc:
            if not self.fallback_to_cache:
                raise
            if not self.degraded:
                logger.warning("primary store unavailable (%s); serving %s from cache, read-only", exc, what)
            self.degraded = True
            return cached()
        if self.degraded:
            logger.info("primary store reachable again; leaving degraded mode")
            self.degraded = False
        return result

    def _check_writable(self) -> None:
        if self.degraded:
            raise StoreUnavailableError("store is in degraded read-only mode; writes are disabled")

    # Units

    def get_unit(self, unit_id: str) -> TrackedUnit | None:
        def primary() -> TrackedUnit | None:
            unit = self.primary.get_unit(unit_id)
            if unit is not None:
                self.cache.put_unit(unit)
            return unit

        return self._read(f"unit {unit_id}", primary, lambda: self.cache.get_unit(unit_id))

    def list_units(self) -> list[TrackedUnit]:
        def primary() -> list[TrackedUnit]:
            units = self.primary.list_units()
            for unit in units:
                self.cache.put_unit(unit)
            return units

        return self._read("unit list", primary, self.cache.list_units)

    def put_unit(self, unit: TrackedUnit) -> None:
        self._check_writable()
        self.primary.put_unit(unit)
        self.cache.put_unit(unit)

    # Logistics units

    def get_logistics_unit(self, sscc: str) -> LogisticsUnit | None:
        def primary() -> LogisticsUnit | None:
            lu = self.primary.get_logistics_unit(sscc)
            if lu is not None:
                self.cache.put_logistics_unit(lu)
            return lu

        return self._read(f"logistics unit {sscc}", primary, lambda: self.cache.get_logistics_unit(sscc))

    def list_logistics_units(self) -> list[LogisticsUnit]:
        return self._read("logistics units", self.primary.list_logistics_units, self.cache.list_logistics_units)

    def put_logistics_unit(self, lu: LogisticsUnit) -> None:
        self._check_writable()
        self.primary.put_logistics_unit(lu)
        self.cache.put_logistics_unit(lu)

    # Verification requests

    def put_verification(self, request: VerificationRequest) -> None:
        self._check_writable()
        self.primary.put_verification(request)
        self.cache.put_verification(request)

    def list_verifications(self) -> list[VerificationRequest]:
        return self._read("verification requests", self.primary.list_verifications, self.cache.list_verifications)

    def close(self) -> None:
        self.primary.close()
        self.cache.close()


__all__ = ["CachedStore"]
