"""Marketplace Service schemas package."""

from services.marketplace_service.schemas.referral import (  # noqa: F401
    RedeemReferralRequest,
    RedeemReferralResponse,
    ReferralStatistics,
    ReferralSummaryResponse,
)
from services.marketplace_service.schemas.wallet import (  # noqa: F401
    TransactionListResponse,
    TransactionResponse,
    WalletResponse,
)
from services.marketplace_service.schemas.webhook import (  # noqa: F401
    PAYMENT_CAPTURED,
    PaymentCapturedEvent,
    PaymentEntity,
)
