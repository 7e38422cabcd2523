"""Loyalty ledger exports."""

from .ledger import (  # noqa: F401
    LedgerReconciliation,
    LoyaltyBalance,
    LoyaltyLedger,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
