"""
Persistence contract.

Business logic talks only to LedgerStore; which adapter backs it is decided
by configuration when the service is built.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..ledger.logistics import LogisticsUnit
from ..ledger.models import TrackedUnit
from ..ledger.verification import VerificationRequest


class LedgerStore(ABC):
    """
    Key-value persistence for units and their side records.

    put_* overwrite the whole record. Adapters raise StoreUnavailableError
    when the backing medium cannot be reached.
    """

    name: str = "store"

    @abstractmethod
    def get_unit(self, unit_id: str) -> TrackedUnit | None:
        """Return the unit or None when it does not exist."""

    @abstractmethod
    def list_units(self) -> list[TrackedUnit]:
        """All units in creation order."""

    @abstractmethod
    def put_unit(self, unit: TrackedUnit) -> None:
        ...

    @abstractmethod
    def get_logistics_unit(self, sscc: str) -> LogisticsUnit | None:
        ...

    @abstractmethod
    def list_logistics_units(self) -> list[LogisticsUnit]:
        ...

    @abstractmethod
    def put_logistics_unit(self, lu: LogisticsUnit) -> None:
        ...

    @abstractmethod
    def put_verification(self, request: VerificationRequest) -> None:
        ...

    @abstractmethod
    def list_verifications(self) -> list[VerificationRequest]:
        ...

    def close(self) -> None:
        """Release any held resources."""


__all__ = ["LedgerStore"]
