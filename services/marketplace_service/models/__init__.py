"""Marketplace Service models package.

Re-exports all models and enums so that:
  - ``from services.marketplace_service.models import Order`` works
  - Alembic env.py sees every table on import

When adding a new model, add both its import and its __all__ entry.
"""

from services.marketplace_service.models.enums import (  # noqa: F401
    AwardStatus,
    OrderStatus,
    TransactionType,
)
from services.marketplace_service.models.order import Order  # noqa: F401
from services.marketplace_service.models.outbox import PendingReferralAward  # noqa: F401
from services.marketplace_service.models.transaction import (  # noqa: F401
    WalletTransaction,
)
from services.marketplace_service.models.user import User  # noqa: F401
from services.marketplace_service.models.wallet import Wallet  # noqa: F401

__all__ = [
    # Enums
    "AwardStatus",
    "OrderStatus",
    "TransactionType",
    # Models
    "Order",
    "PendingReferralAward",
    "User",
    "Wallet",
    "WalletTransaction",
]
