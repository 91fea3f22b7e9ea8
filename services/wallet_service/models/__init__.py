"""Wallet Service models package.

Every model class and enum is re-exported here so SQLAlchemy's mapper
registry sees them on import.
"""

from services.wallet_service.models.enums import CreditTransactionType  # noqa: F401
from services.wallet_service.models.transaction import (  # noqa: F401
    CreditLedgerEntry,
)

__all__ = [
    "CreditLedgerEntry",
    "CreditTransactionType",
]
