"""Enum definitions for wallet service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class CreditTransactionType(str, enum.Enum):
    EARNED = "earned"
    BONUS = "bonus"
    REFUND = "refund"
    REDEEMED = "redeemed"

    @property
    def is_credit(self) -> bool:
        return self is not CreditTransactionType.REDEEMED
