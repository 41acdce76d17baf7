import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from checkout.core.config import GatewayConfig
from checkout.core.dates import as_utc
from checkout.core.exceptions import (
    AmountMismatch,
    ConfigurationError,
    NotFoundError,
    PersistenceFailure,
    SignatureMismatch,
)
from checkout.models.order import OrderStatus
from checkout.services.order_ledger import OrderLedger
from checkout.services.webhook_service import ReconcileOutcome, WebhookService
from tests.helpers import FixedClock, add_order, load_order, notify_params

UTC = timezone.utc


def _monthly(**overrides):
    fields = dict(
        product_id="pro-monthly",
        name="专业版（月付）",
        money=Decimal("29.90"),
        is_subscription=True,
        subscription_period="monthly",
    )
    fields.update(overrides)
    return fields


async def test_one_time_order_is_marked_paid(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="A1")
    result = await WebhookService(db, gateway_config, clock).handle_notify(notify_params("A1"))

    assert result.outcome == ReconcileOutcome.PAID
    stored = await load_order(session_factory, "A1")
    assert stored.status == OrderStatus.PAID.value
    assert stored.trade_no == "TA1"
    assert as_utc(stored.updated_at) == clock.now
    assert stored.subscription_start_date is None
    assert stored.subscription_end_date is None


async def test_replay_is_a_true_no_op(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S1", **_monthly())
    params = notify_params("S1", money="29.90")
    service = WebhookService(db, gateway_config, clock)

    first = await service.handle_notify(params)
    after_first = await load_order(session_factory, "S1")

    clock.now = datetime(2025, 4, 2, tzinfo=UTC)
    second = await service.handle_notify(params)
    after_second = await load_order(session_factory, "S1")

    assert first.outcome == ReconcileOutcome.PAID
    assert second.outcome == ReconcileOutcome.ALREADY_PAID
    assert second.subscription_start_date == first.subscription_start_date
    assert second.subscription_end_date == first.subscription_end_date
    assert after_second.subscription_start_date == after_first.subscription_start_date
    assert after_second.subscription_end_date == after_first.subscription_end_date
    assert after_second.updated_at == after_first.updated_at


async def test_concurrent_deliveries_transition_once(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S1", **_monthly())
    params = notify_params("S1", money="29.90")

    async def deliver():
        async with session_factory() as session:
            return await WebhookService(session, gateway_config, clock).handle_notify(params)

    results = await asyncio.gather(*(deliver() for _ in range(6)))
    outcomes = [r.outcome for r in results]
    assert outcomes.count(ReconcileOutcome.PAID) == 1
    assert all(o in (ReconcileOutcome.ALREADY_PAID, ReconcileOutcome.LOST_RACE) for o in outcomes if o != ReconcileOutcome.PAID)

    stored = await load_order(session_factory, "S1")
    assert stored.status == OrderStatus.PAID.value
    assert as_utc(stored.subscription_start_date) == clock.now
    assert as_utc(stored.subscription_end_date) == datetime(2025, 5, 1, tzinfo=UTC)


async def test_lost_race_between_read_and_write(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S1", **_monthly())
    service = WebhookService(db, gateway_config, clock)
    read = service.ledger.get_by_out_trade_no

    async def read_then_lose(out_trade_no):
        order = await read(out_trade_no)
        # 另一个投递在本次读与写之间完成了迁移
        async with session_factory() as other:
            await OrderLedger(other).mark_paid_if_pending(
                out_trade_no, {"trade_no": "T-OTHER", "updated_at": clock.now}
            )
        return order

    service.ledger.get_by_out_trade_no = read_then_lose
    result = await service.handle_notify(notify_params("S1", money="29.90"))

    assert result.outcome == ReconcileOutcome.LOST_RACE
    stored = await load_order(session_factory, "S1")
    assert stored.trade_no == "T-OTHER"
    # 落败方计算出的订阅时间不能写入
    assert stored.subscription_start_date is None


@pytest.mark.parametrize("money", ["9.90", "9.9", "9.901", "9.899"])
async def test_amount_within_tolerance_is_accepted(db, gateway_config, clock, money):
    await add_order(db, out_trade_no="A1")
    result = await WebhookService(db, gateway_config, clock).handle_notify(notify_params("A1", money=money))
    assert result.outcome == ReconcileOutcome.PAID


@pytest.mark.parametrize("money", ["9.902", "0.01", "99.00", "abc", "", "NaN", "1e999999999", "-1e999999999"])
async def test_amount_mismatch_is_rejected(session_factory, db, gateway_config, clock, money):
    await add_order(db, out_trade_no="A1")
    with pytest.raises(AmountMismatch):
        await WebhookService(db, gateway_config, clock).handle_notify(notify_params("A1", money=money))
    assert (await load_order(session_factory, "A1")).status == OrderStatus.PENDING.value


async def test_bad_signature_is_rejected(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="A1")
    params = notify_params("A1", key="forged-key")
    with pytest.raises(SignatureMismatch):
        await WebhookService(db, gateway_config, clock).handle_notify(params)

    tampered = notify_params("A1")
    tampered["money"] = "0.01"
    with pytest.raises(SignatureMismatch):
        await WebhookService(db, gateway_config, clock).handle_notify(tampered)

    garbled = notify_params("A1")
    garbled["sign"] = "签名"
    with pytest.raises(SignatureMismatch):
        await WebhookService(db, gateway_config, clock).handle_notify(garbled)

    assert (await load_order(session_factory, "A1")).status == OrderStatus.PENDING.value


async def test_non_success_status_is_acknowledged_without_mutation(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="A1")
    result = await WebhookService(db, gateway_config, clock).handle_notify(
        notify_params("A1", trade_status="WAIT_BUYER_PAY")
    )
    assert result.outcome == ReconcileOutcome.IGNORED
    assert (await load_order(session_factory, "A1")).status == OrderStatus.PENDING.value


async def test_unknown_order_is_rejected(db, gateway_config, clock):
    with pytest.raises(NotFoundError):
        await WebhookService(db, gateway_config, clock).handle_notify(notify_params("NOPE"))


async def test_missing_key_is_configuration_error(db, clock):
    with pytest.raises(ConfigurationError):
        await WebhookService(db, GatewayConfig(), clock).handle_notify(notify_params("A1"))


async def test_fresh_yearly_subscription_starts_now(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="Y1", **_monthly(
        product_id="pro-yearly", name="专业版（年付）", money=Decimal("299.00"), subscription_period="yearly",
    ))
    result = await WebhookService(db, gateway_config, clock).handle_notify(notify_params("Y1", money="299.00"))

    assert result.subscription_start_date == clock.now
    assert result.subscription_end_date == datetime(2026, 4, 1, tzinfo=UTC)
    stored = await load_order(session_factory, "Y1")
    assert as_utc(stored.subscription_start_date) == clock.now
    assert as_utc(stored.subscription_end_date) == datetime(2026, 4, 1, tzinfo=UTC)


async def test_renewal_stacks_on_unexpired_window(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S-OLD", status=OrderStatus.PAID.value, **_monthly(
        subscription_start_date=datetime(2025, 3, 15, tzinfo=UTC),
        subscription_end_date=datetime(2025, 4, 15, tzinfo=UTC),
    ))
    await add_order(db, out_trade_no="S-NEW", **_monthly())

    result = await WebhookService(db, gateway_config, clock).handle_notify(notify_params("S-NEW", money="29.90"))

    assert result.outcome == ReconcileOutcome.PAID
    stored = await load_order(session_factory, "S-NEW")
    assert as_utc(stored.subscription_start_date) == datetime(2025, 4, 15, tzinfo=UTC)
    assert as_utc(stored.subscription_end_date) == datetime(2025, 5, 15, tzinfo=UTC)


async def test_expired_window_restarts_from_now(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S-OLD", status=OrderStatus.PAID.value, **_monthly(
        subscription_start_date=datetime(2025, 2, 1, tzinfo=UTC),
        subscription_end_date=datetime(2025, 3, 1, tzinfo=UTC),
    ))
    await add_order(db, out_trade_no="S-NEW", **_monthly())

    await WebhookService(db, gateway_config, clock).handle_notify(notify_params("S-NEW", money="29.90"))

    stored = await load_order(session_factory, "S-NEW")
    assert as_utc(stored.subscription_start_date) == clock.now
    assert as_utc(stored.subscription_end_date) == datetime(2025, 5, 1, tzinfo=UTC)


async def test_other_users_window_is_ignored(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S-OTHER", user_id="user-2", status=OrderStatus.PAID.value, **_monthly(
        subscription_start_date=datetime(2025, 3, 15, tzinfo=UTC),
        subscription_end_date=datetime(2025, 4, 15, tzinfo=UTC),
    ))
    await add_order(db, out_trade_no="S-NEW", **_monthly())

    await WebhookService(db, gateway_config, clock).handle_notify(notify_params("S-NEW", money="29.90"))

    stored = await load_order(session_factory, "S-NEW")
    assert as_utc(stored.subscription_start_date) == clock.now


async def test_persistence_failure_is_transient(session_factory, db, gateway_config, clock):
    await add_order(db, out_trade_no="S1", **_monthly())

    async def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    db.commit = broken_commit
    with pytest.raises(PersistenceFailure):
        await WebhookService(db, gateway_config, clock).handle_notify(notify_params("S1", money="29.90"))

    stored = await load_order(session_factory, "S1")
    assert stored.status == OrderStatus.PENDING.value
    assert stored.subscription_start_date is None

    # 网关重试时可以正常完成
    async with session_factory() as retry_session:
        result = await WebhookService(retry_session, gateway_config, FixedClock(clock.now)).handle_notify(
            notify_params("S1", money="29.90")
        )
    assert result.outcome == ReconcileOutcome.PAID
