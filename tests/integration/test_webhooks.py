"""Integration tests for the Razorpay payment webhook."""

import pytest
from libs.common.config import Settings, get_settings
from services.marketplace_service.models import (
    AwardStatus,
    Order,
    OrderStatus,
    PendingReferralAward,
    TransactionType,
    WalletTransaction,
)
from services.marketplace_service.services import reconciler, referral_engine
from services.marketplace_service.services.ledger import get_wallet
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from tests.conftest import sign
from tests.factories import OrderFactory, RazorpayEventFactory, UserFactory

WEBHOOK_URL = "/webhooks/razorpay"


async def _post_webhook(client, body: bytes, signature=None):
    headers = {"content-type": "application/json"}
    if signature is None:
        signature = sign(body)
    if signature:
        headers["x-razorpay-signature"] = signature
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


async def _seed_referred_order(db, **order_overrides):
    """Referrer U2, referred user U1, and U1's pending order O1."""
    referrer = UserFactory.create(name="Referrer")
    db.add(referrer)
    await db.flush()
    referred = UserFactory.create(name="Referred", referred_by_id=referrer.id)
    db.add(referred)
    await db.flush()
    order = OrderFactory.create(user_id=referred.id, amount=500, **order_overrides)
    db.add(order)
    await db.commit()
    return referrer, referred, order


async def _count(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


async def _reload_order(db, order_id) -> Order:
    order = await db.get(Order, order_id)
    await db.refresh(order)
    return order


# ---------------------------------------------------------------------------
# payment.captured
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_captured_payment_completes_order_and_pays_referrer(
    marketplace_client, db_session
):
    referrer, referred, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(
        order.razorpay_order_id, payment_id="pay_first"
    )

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["success"] is True
    data = payload["data"]
    assert data["message"] == "Payment processed successfully"
    assert data["paymentId"] == "pay_first"
    assert data["order"] == {
        "id": str(order.id),
        "status": "completed",
        "amount": 500,
        "service": "Deep Home Cleaning",
    }
    assert data["timestamp"].endswith("Z")
    assert data["referralBonus"]["amount"] == 50
    assert data["referralBonus"]["transaction"]["transaction_type"] == "referral_bonus"

    stored = await _reload_order(db_session, order.id)
    assert stored.status == OrderStatus.COMPLETED
    assert stored.razorpay_payment_id == "pay_first"
    assert stored.paid_at is not None

    wallet = await get_wallet(db_session, referrer.id)
    assert wallet.balance == 50
    txns = (
        (
            await db_session.execute(
                select(WalletTransaction).where(WalletTransaction.user_id == referrer.id)
            )
        )
        .scalars()
        .all()
    )
    assert len(txns) == 1
    assert txns[0].transaction_type == TransactionType.REFERRAL_BONUS
    assert txns[0].referred_user_id == referred.id
    assert str(referred.id) in txns[0].description
    assert str(order.id) in txns[0].description


@pytest.mark.asyncio
@pytest.mark.integration
async def test_redelivery_does_not_pay_twice(marketplace_client, db_session):
    referrer, _, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(
        order.razorpay_order_id, payment_id="pay_once"
    )

    first = await _post_webhook(marketplace_client, body)
    second = await _post_webhook(marketplace_client, body)

    assert first.status_code == 200
    assert second.status_code == 200
    assert "referralBonus" in first.json()["data"]
    assert "referralBonus" not in second.json()["data"]
    assert second.json()["data"]["order"]["status"] == "completed"

    wallet = await get_wallet(db_session, referrer.id)
    await db_session.refresh(wallet)
    assert wallet.balance == 50
    assert await _count(db_session, WalletTransaction) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_redelivery_keeps_first_payment_id(marketplace_client, db_session):
    _, _, order = await _seed_referred_order(db_session)

    await _post_webhook(
        marketplace_client,
        RazorpayEventFactory.payment_captured(order.razorpay_order_id, payment_id="pay_a"),
    )
    await _post_webhook(
        marketplace_client,
        RazorpayEventFactory.payment_captured(order.razorpay_order_id, payment_id="pay_b"),
    )

    stored = await _reload_order(db_session, order.id)
    assert stored.razorpay_payment_id == "pay_a"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_captured_payment_without_referrer(marketplace_client, db_session):
    user = UserFactory.create()
    db_session.add(user)
    await db_session.flush()
    order = OrderFactory.create(user_id=user.id)
    db_session.add(order)
    await db_session.commit()

    response = await _post_webhook(
        marketplace_client, RazorpayEventFactory.payment_captured(order.razorpay_order_id)
    )

    assert response.status_code == 200
    assert "referralBonus" not in response.json()["data"]
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.COMPLETED
    assert await _count(db_session, WalletTransaction) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_second_paid_order_earns_no_bonus(marketplace_client, db_session):
    referrer, referred, order = await _seed_referred_order(db_session)
    db_session.add(
        OrderFactory.create(user_id=referred.id, status=OrderStatus.COMPLETED)
    )
    await db_session.commit()

    response = await _post_webhook(
        marketplace_client, RazorpayEventFactory.payment_captured(order.razorpay_order_id)
    )

    assert response.status_code == 200
    assert "referralBonus" not in response.json()["data"]
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.COMPLETED
    assert await get_wallet(db_session, referrer.id) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_referral_failure_still_completes_order(
    marketplace_client, db_session, monkeypatch
):
    referrer, _, order = await _seed_referred_order(db_session)

    async def _broken(db, order_id, **kwargs):
        raise OperationalError("UPDATE wallets", {}, Exception("wallet store down"))

    monkeypatch.setattr(referral_engine, "evaluate_and_award", _broken)

    response = await _post_webhook(
        marketplace_client, RazorpayEventFactory.payment_captured(order.razorpay_order_id)
    )

    assert response.status_code == 200, response.text
    assert "referralBonus" not in response.json()["data"]
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.COMPLETED
    assert await get_wallet(db_session, referrer.id) is None

    pending = (
        await db_session.execute(
            select(PendingReferralAward).where(PendingReferralAward.order_id == order.id)
        )
    ).scalar_one()
    assert pending.status == AwardStatus.PENDING
    assert "wallet store down" in pending.last_error


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_signature_rejected_without_writes(marketplace_client, db_session):
    _, _, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)

    response = await _post_webhook(marketplace_client, body, signature="0" * 64)

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "Invalid signature"
    assert payload["timestamp"].endswith("Z")
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.PENDING
    assert await _count(db_session, WalletTransaction) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_signature_rejected(marketplace_client, db_session):
    _, _, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)

    response = await _post_webhook(marketplace_client, body, signature="")

    assert response.status_code == 400
    assert response.json()["error"] == "No signature provided"
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_order_returns_404(marketplace_client, db_session):
    body = RazorpayEventFactory.payment_captured("order_doesnotexist")

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 404
    payload = response.json()
    assert payload["success"] is False
    assert "order_doesnotexist" in payload["error"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_payment_fields_returns_400(marketplace_client, db_session):
    body = b'{"event": "payment.captured", "payload": {"payment": {"entity": {}}}}'

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing payment fields"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_other_events_acknowledged_without_side_effects(
    marketplace_client, db_session
):
    _, _, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(
        order.razorpay_order_id, event="payment.failed"
    )

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Webhook event payment.failed received but not processed"
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.PENDING
    assert await _count(db_session, WalletTransaction) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unexpected_failure_returns_500(
    marketplace_client, db_session, monkeypatch
):
    from services.marketplace_service.routers import webhooks

    _, _, order = await _seed_referred_order(db_session)
    order_id = order.id
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)

    async def _explode(db, payment, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(webhooks, "handle_payment_captured", _explode)

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 500
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "Internal server error"
    assert payload["details"] == "boom"
    assert (await _reload_order(db_session, order_id)).status == OrderStatus.PENDING


# ---------------------------------------------------------------------------
# Local signature bypass
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_local_bypass_accepts_unsigned_webhook(marketplace_client, db_session):
    from services.marketplace_service.app.main import app

    _, _, order = await _seed_referred_order(db_session)
    app.dependency_overrides[get_settings] = lambda: Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        ENVIRONMENT="local",
        RAZORPAY_WEBHOOK_SKIP_SIGNATURE=True,
    )

    response = await _post_webhook(
        marketplace_client,
        RazorpayEventFactory.payment_captured(order.razorpay_order_id),
        signature="",
    )

    assert response.status_code == 200, response.text
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_skip_flag_ignored_outside_local(marketplace_client, db_session):
    from services.marketplace_service.app.main import app

    _, _, order = await _seed_referred_order(db_session)
    app.dependency_overrides[get_settings] = lambda: Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        ENVIRONMENT="production",
        RAZORPAY_WEBHOOK_SECRET="test-webhook-secret",
        RAZORPAY_WEBHOOK_SKIP_SIGNATURE=True,
    )

    response = await _post_webhook(
        marketplace_client,
        RazorpayEventFactory.payment_captured(order.razorpay_order_id),
        signature="",
    )

    assert response.status_code == 400
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_non_ascii_signature_rejected_as_invalid(marketplace_client, db_session):
    _, _, order = await _seed_referred_order(db_session)
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)

    response = await marketplace_client.post(
        WEBHOOK_URL,
        content=body,
        headers={
            "content-type": "application/json",
            "x-razorpay-signature": b"\xc3\xa9" * 32,
        },
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid signature"
    assert (await _reload_order(db_session, order.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.parametrize(
    "body",
    [
        b'{"event": "refund.created", "payload": "x"}',
        b'{"event": "refund.created", "payload": {"payment": ["x"]}}',
        b'{"event": "refund.created", "payload": {"payment": {"entity": {"order_id": 7}}}}',
        b'{"event": "refund.created"}',
    ],
)
async def test_other_events_with_odd_payloads_acknowledged(
    marketplace_client, db_session, body
):
    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 200, response.text
    assert response.json()["success"] is True
    assert await _count(db_session, WalletTransaction) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_captured_event_with_non_dict_payment_returns_400(
    marketplace_client, db_session
):
    body = b'{"event": "payment.captured", "payload": {"payment": "x"}}'

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing payment fields"


# ---------------------------------------------------------------------------
# Order lookup retries
# ---------------------------------------------------------------------------


def _transient_error() -> OperationalError:
    return OperationalError(
        "SELECT orders", {}, Exception("server closed the connection unexpectedly")
    )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_lookup_recovers_from_transient_errors(
    marketplace_client, db_session, monkeypatch
):
    referrer, _, order = await _seed_referred_order(db_session)
    order_id, referrer_id = order.id, referrer.id
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)

    real_find = reconciler.find_order_by_gateway_id
    attempts = []

    async def _flaky_find(db, razorpay_order_id):
        attempts.append(razorpay_order_id)
        if len(attempts) < 3:
            raise _transient_error()
        return await real_find(db, razorpay_order_id)

    monkeypatch.setattr(reconciler, "find_order_by_gateway_id", _flaky_find)

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 200, response.text
    assert len(attempts) == 3
    assert response.json()["data"]["referralBonus"]["amount"] == 50
    assert (await _reload_order(db_session, order_id)).status == OrderStatus.COMPLETED
    wallet = await get_wallet(db_session, referrer_id)
    assert wallet.balance == 50
    assert await _count(db_session, WalletTransaction) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_lookup_gives_up_after_retry_budget(
    marketplace_client, db_session, monkeypatch
):
    _, _, order = await _seed_referred_order(db_session)
    order_id = order.id
    body = RazorpayEventFactory.payment_captured(order.razorpay_order_id)
    attempts = []

    async def _always_down(db, razorpay_order_id):
        attempts.append(razorpay_order_id)
        raise _transient_error()

    monkeypatch.setattr(reconciler, "find_order_by_gateway_id", _always_down)

    response = await _post_webhook(marketplace_client, body)

    assert response.status_code == 500
    assert len(attempts) == get_settings().DB_RETRY_ATTEMPTS
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "Internal server error"
    assert payload["timestamp"].endswith("Z")
    assert (await _reload_order(db_session, order_id)).status == OrderStatus.PENDING
    assert await _count(db_session, WalletTransaction) == 0
