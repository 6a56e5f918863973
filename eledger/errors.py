"""
Error taxonomy for the custody ledger.

Policy violations are raised before any state changes; a transition is either
fully applied (status update + event append + persist) or not at all.

The classes also derive from the builtin exception that best matches their
meaning, so callers that only know about ValueError / LookupError still
behave sensibly.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all ledger errors."""


class ValidationError(LedgerError, ValueError):
    """Malformed or missing input; rejected before any mutation."""


class InvalidInputError(ValidationError):
    """Input that cannot be canonically serialized or hashed."""


class NotOwnerError(LedgerError, PermissionError):
    """The acting principal fails an ownership or role guard."""


class IllegalTransitionError(LedgerError, ValueError):
    """No transition-table row matches the current status and event kind."""


class SaleBlockedError(IllegalTransitionError):
    """The point-of-sale guard refused a SALE (duplicate or blocked unit)."""

    def __init__(self, message: str, pos_result: Any):
        super().__init__(message)
        self.pos_result = pos_result


class NotFoundError(LedgerError, LookupError):
    """Unknown unit, logistics unit or participant."""


class IntegrityViolationError(LedgerError):
    """A unit's hash chain failed verification.

    Surfaced for audit; the ledger never repairs a broken chain.
    """

    def __init__(self, unit_id: str, index: int | None, reason: str):
        super().__init__(f"{unit_id}: chain broken at event {index}: {reason}")
        self.unit_id = unit_id
        self.index = index
        self.reason = reason


class StoreUnavailableError(LedgerError, RuntimeError):
    """The persistence layer failed or is in read-only degraded mode."""


__all__ = [
    "LedgerError",
    "ValidationError",
    "InvalidInputError",
    "NotOwnerError",
    "IllegalTransitionError",
    "SaleBlockedError",
    "NotFoundError",
    "IntegrityViolationError",
    "StoreUnavailableError",
]
