"""splitledger - balance ledger and debt simplification for shared expenses."""

__version__ = "0.1.0"
