"""Enums for the Marketplace Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    REFERRAL_BONUS = "referral_bonus"
    SIGNUP_BONUS = "signup_bonus"

    @property
    def sign(self) -> int:
        """Direction of the balance change for this entry type."""
        return -1 if self is TransactionType.DEBIT else 1


class AwardStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DEAD_LETTER = "dead_letter"
