"""Razorpay webhook endpoint (no auth; verified by x-razorpay-signature)."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import isoformat_z, utc_now
from libs.common.error_handler import AppError, error_response
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.marketplace_service.schemas import PAYMENT_CAPTURED, TransactionResponse
from services.marketplace_service.services.reconciler import (
    ReconciliationResult,
    check_signature,
    handle_payment_captured,
    parse_captured_payment,
    parse_event,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


def _gateway_order_id(event: dict) -> Optional[str]:
    """Best-effort order id for log context; tolerates any payload shape."""
    node = event
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    order_id = node.get("order_id") if isinstance(node, dict) else None
    return order_id if isinstance(order_id, str) else None


def _success_body(result: ReconciliationResult, timestamp: str) -> dict:
    order = result.order
    data = {
        "message": "Payment processed successfully",
        "order": {
            "id": str(order.id),
            "status": order.status.value,
            "amount": order.remaining_amount,
            "service": order.service_name,
        },
        "paymentId": result.payment_id,
        "timestamp": timestamp,
    }
    if result.referral:
        data["referralBonus"] = {
            "amount": result.referral.amount,
            "transaction": TransactionResponse.model_validate(
                result.referral.transaction
            ).model_dump(mode="json"),
        }
    return {"success": True, "data": data}


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    settings: Settings = Depends(get_settings),
):
    """
    Razorpay webhook. Only ``payment.captured`` has side effects; every other
    event is acknowledged so the gateway stops redelivering it.
    """
    timestamp = isoformat_z(utc_now())
    event_type = None
    razorpay_order_id = None

    try:
        raw = await request.body()
        check_signature(raw, request.headers.get("x-razorpay-signature"), settings)

        event = parse_event(raw)
        event_type = event["event"]
        razorpay_order_id = _gateway_order_id(event)
        logger.info(
            "Webhook event received: %s",
            event_type,
            extra={
                "extra_fields": {
                    "event": event_type,
                    "order_id": razorpay_order_id,
                    "timestamp": timestamp,
                }
            },
        )

        if event_type != PAYMENT_CAPTURED:
            return {
                "success": True,
                "message": f"Webhook event {event_type} received but not processed",
                "timestamp": timestamp,
            }

        payment = parse_captured_payment(event)
        result = await handle_payment_captured(db, payment)
        return _success_body(result, timestamp)

    except AppError as exc:
        logger.warning(
            "Webhook rejected: %s",
            exc.message,
            extra={
                "extra_fields": {
                    "event": event_type,
                    "order_id": razorpay_order_id,
                    "status_code": exc.status_code,
                    "timestamp": timestamp,
                }
            },
        )
        return error_response(exc.status_code, exc.message, timestamp=timestamp)

    except Exception as exc:
        logger.exception(
            "Webhook processing error",
            extra={
                "extra_fields": {
                    "event": event_type,
                    "order_id": razorpay_order_id,
                    "timestamp": timestamp,
                }
            },
        )
        await db.rollback()
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            timestamp=timestamp,
            details=str(exc) or type(exc).__name__,
        )
