"""eledger - tamper-evident custody ledger for excise-controlled goods."""

__version__ = "0.1.0"
