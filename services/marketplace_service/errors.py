"""Domain errors for the Marketplace Service."""

from fastapi import status
from libs.common.error_handler import AppError


class InsufficientBalanceError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "insufficient_balance"
    message = "Insufficient wallet balance"


class InvalidWebhookError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_webhook"
    message = "Invalid webhook payload"


class OrderNotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "order_not_found"
    message = "Order not found"


class UserNotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_found"
    message = "User not found"


class WalletNotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "wallet_not_found"
    message = "Wallet not found"


class ReferralError(AppError):
    """Rejected referral-code redemption. The user row is left untouched."""


class MissingReferralCodeError(ReferralError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "missing_code"
    message = "Missing referral code"


class AlreadyReferredError(ReferralError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_referred"
    message = "User already has a referrer"


class InvalidReferralCodeError(ReferralError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "invalid_code"
    message = "Invalid referral code"


class SelfReferralError(ReferralError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "self_referral"
    message = "Cannot refer yourself"
