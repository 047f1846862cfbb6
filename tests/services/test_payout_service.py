from unittest.mock import AsyncMock

import pytest

from payout_ledger.core.errors import InvalidPayoutTransition
from payout_ledger.models.payout import PendingPayout, check_transition
from payout_ledger.repositories.payout_repo import PayoutRepository
from payout_ledger.schemas.events import AccountUpdated
from payout_ledger.services.payout_service import PayoutService, derive_connect_status


async def queue_payout(store, seller_id="artist_a", amount=1430, status="pending", order_id="order_1", kind="artist"):
    pending = PendingPayout(
        seller_id=seller_id,
        seller_kind=kind,
        seller_name="Artist A",
        order_id=order_id,
        order_number=f"FW-{order_id}",
        amount_cents=amount,
        status=status,
    )
    await PayoutRepository(store).create_pending(pending)
    return pending


def pending_doc(store, pending_id):
    return store.collections["pending_payouts"][pending_id]


class TestStateMachine:

    @pytest.mark.parametrize("current, target", [
        ("pending", "processing"),
        ("pending", "awaiting_account"),
        ("awaiting_account", "processing"),
        ("processing", "completed"),
        ("processing", "retry_pending"),
        ("retry_pending", "processing"),
        ("retry_pending", "cancelled"),
    ])
    def test_allowed(self, current, target):
        check_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        ("completed", "processing"),
        ("cancelled", "pending"),
        ("pending", "completed"),
        ("processing", "cancelled"),
    ])
    def test_forbidden(self, current, target):
        with pytest.raises(InvalidPayoutTransition):
            check_transition(current, target)

    @pytest.mark.asyncio
    async def test_stale_copy_cannot_transition(self, store):
        pending = await queue_payout(store)
        repo = PayoutRepository(store)
        stale = await repo.get_pending(pending.id)

        await repo.transition(pending, "processing")

        with pytest.raises(InvalidPayoutTransition):
            await repo.transition(stale, "processing")

    def test_derive_connect_status(self):
        assert derive_connect_status(True, True).value == "active"
        assert derive_connect_status(True, False, "requirements.past_due").value == "restricted"
        assert derive_connect_status(False, False).value == "onboarding"


class TestDispatch:

    @pytest.mark.asyncio
    async def test_active_seller_is_paid(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        pending = await queue_payout(store)

        result = await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        assert result.transferred == 1
        (transfer,) = processor.created
        assert transfer["destination"] == "acct_artist_a"
        assert transfer["amount_cents"] == 1430
        assert transfer["group"] == "order_1"
        assert transfer["idempotency_key"] == f"pending_payout:{pending.id}:1"

        doc = pending_doc(store, pending.id)
        assert doc["status"] == "completed"
        assert doc["transfer_id"] == transfer["id"]

        (payout,) = store.all("payouts")
        assert payout["status"] == "completed"
        assert payout["from_pending_payout"] == pending.id

        artist = store.collections["artists"]["artist_a"]
        assert artist["pending_balance_cents"] == 0
        assert artist["total_earnings_cents"] == 1430

    @pytest.mark.asyncio
    async def test_inactive_seller_waits(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", active=False, pending=1430)
        pending = await queue_payout(store)

        result = await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        assert result.deferred == 1
        assert processor.created == []
        assert pending_doc(store, pending.id)["status"] == "awaiting_account"
        assert store.collections["artists"]["artist_a"]["pending_balance_cents"] == 1430

    @pytest.mark.asyncio
    async def test_auto_payouts_disabled_queues_everything(self, store, processor, config, seed_seller):
        config.AUTO_PAYOUTS_ENABLED = False
        seed_seller("artist", "artist_a")
        pending = await queue_payout(store)

        await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        assert processor.created == []
        assert pending_doc(store, pending.id)["status"] == "awaiting_account"

    @pytest.mark.asyncio
    async def test_transfer_failure_marks_retry_pending(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        processor.fail_transfers = True
        pending = await queue_payout(store)

        result = await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        assert result.failed == 1
        doc = pending_doc(store, pending.id)
        assert doc["status"] == "retry_pending"
        assert "capabilities" in doc["failure_reason"]
        assert store.all("payouts") == []
        assert store.collections["artists"]["artist_a"]["pending_balance_cents"] == 1430
        assert store.collections["artists"]["artist_a"]["total_earnings_cents"] == 0

    @pytest.mark.asyncio
    async def test_transfer_timeout_marks_retry_pending(self, store, processor, config, seed_seller):
        config.TRANSFER_TIMEOUT_SECONDS = 0.01
        processor.delay = 0.5
        seed_seller("artist", "artist_a")
        pending = await queue_payout(store)

        await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        doc = pending_doc(store, pending.id)
        assert doc["status"] == "retry_pending"
        assert "timed out" in doc["failure_reason"]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_other_sellers(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a")
        seed_seller("supplier", "supplier_b")
        broken = await queue_payout(store, seller_id="supplier_b", kind="supplier")
        ok = await queue_payout(store)
        real_create = processor.create_transfer

        async def create_transfer(destination, *args, **kwargs):
            if destination == "acct_supplier_b":
                raise RuntimeError("connection reset")
            return await real_create(destination, *args, **kwargs)

        processor.create_transfer = create_transfer

        result = await PayoutService(store, processor, config).dispatch_order_payouts("order_1")

        assert (result.transferred, result.failed) == (1, 1)
        assert pending_doc(store, broken.id)["status"] == "retry_pending"
        assert pending_doc(store, ok.id)["status"] == "completed"


class TestSweep:

    @pytest.mark.asyncio
    async def test_sweep_is_bounded_by_batch_size(self, store, processor, config, seed_seller):
        config.PAYOUT_SWEEP_BATCH_SIZE = 2
        seed_seller("artist", "artist_a")
        queued = [
            await queue_payout(store, order_id=f"order_{n}", amount=100 * n, status="awaiting_account")
            for n in range(1, 4)
        ]

        result = await PayoutService(store, processor, config).process_awaiting_payouts("artist", "artist_a")

        assert result.checked == 2
        assert result.transferred == 2
        statuses = [pending_doc(store, p.id)["status"] for p in queued]
        assert statuses == ["completed", "completed", "awaiting_account"]

    @pytest.mark.asyncio
    async def test_sweep_skips_inactive_seller(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", active=False)
        await queue_payout(store, status="awaiting_account")

        result = await PayoutService(store, processor, config).process_awaiting_payouts("artist", "artist_a")

        assert result.checked == 0
        assert processor.created == []

    @pytest.mark.asyncio
    async def test_account_activation_triggers_sweep(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", active=False, account_id="acct_new", pending=500)
        pending = await queue_payout(store, amount=500, status="awaiting_account")

        event = AccountUpdated(account_id="acct_new", charges_enabled=True, payouts_enabled=True)
        result = await PayoutService(store, processor, config).handle_account_updated(event)

        assert result.transferred == 1
        assert store.collections["artists"]["artist_a"]["connect_status"] == "active"
        assert pending_doc(store, pending.id)["status"] == "completed"
        assert store.collections["artists"]["artist_a"]["total_earnings_cents"] == 500

    @pytest.mark.asyncio
    async def test_restricted_account_does_not_sweep(self, store, processor, config, seed_seller):
        seed_seller("supplier", "supplier_b", account_id="acct_b")
        await queue_payout(store, seller_id="supplier_b", kind="supplier", status="awaiting_account")

        event = AccountUpdated(
            account_id="acct_b",
            charges_enabled=False,
            payouts_enabled=False,
            disabled_reason="requirements.past_due",
        )
        result = await PayoutService(store, processor, config).handle_account_updated(event)

        assert result is None
        assert store.collections["suppliers"]["supplier_b"]["connect_status"] == "restricted"
        assert processor.created == []

    @pytest.mark.asyncio
    async def test_unknown_account_is_ignored(self, store, processor, config):
        event = AccountUpdated(account_id="acct_nobody", charges_enabled=True, payouts_enabled=True)

        assert await PayoutService(store, processor, config).handle_account_updated(event) is None


class TestRetry:

    @pytest.mark.asyncio
    async def test_operator_retry_completes_failed_payout(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        pending = await queue_payout(store, status="retry_pending")
        pending_doc(store, pending.id)["attempts"] = 1

        attempt = await PayoutService(store, processor, config).retry_payout(pending.id)

        assert attempt.status == "completed"
        assert processor.created[0]["idempotency_key"] == f"pending_payout:{pending.id}:2"
        assert pending_doc(store, pending.id)["attempts"] == 2

    @pytest.mark.asyncio
    async def test_retry_for_inactive_seller_parks_payout(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", active=False)
        pending = await queue_payout(store, status="retry_pending")

        attempt = await PayoutService(store, processor, config).retry_payout(pending.id)

        assert attempt.status == "awaiting_account"
        assert processor.created == []

    @pytest.mark.asyncio
    async def test_completed_payout_cannot_be_retried(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a")
        pending = await queue_payout(store, status="completed")

        with pytest.raises(InvalidPayoutTransition):
            await PayoutService(store, processor, config).retry_payout(pending.id)

    @pytest.mark.asyncio
    async def test_processing_payout_without_transfer_cannot_be_retried(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a")
        pending = await queue_payout(store, status="processing")

        with pytest.raises(InvalidPayoutTransition):
            await PayoutService(store, processor, config).retry_payout(pending.id)


class TestReconcile:

    @pytest.mark.asyncio
    async def test_transfer_landing_after_timeout_is_not_sent_again(self, store, processor, config, seed_seller):
        config.TRANSFER_TIMEOUT_SECONDS = 0.05
        processor.reply_delay = 0.5
        seed_seller("artist", "artist_a", pending=1430)
        pending = await queue_payout(store)
        service = PayoutService(store, processor, config)

        await service.dispatch_order_payouts("order_1")

        assert pending_doc(store, pending.id)["status"] == "retry_pending"
        assert len(processor.created) == 1

        processor.reply_delay = 0
        attempt = await service.retry_payout(pending.id)

        assert attempt.status == "completed"
        (transfer,) = processor.created
        assert attempt.transfer_id == transfer["id"]
        assert pending_doc(store, pending.id)["transfer_id"] == transfer["id"]
        assert len(store.all("payouts")) == 1
        artist = store.collections["artists"]["artist_a"]
        assert artist["pending_balance_cents"] == 0
        assert artist["total_earnings_cents"] == 1430

    @pytest.mark.asyncio
    async def test_recording_failure_after_transfer_is_parked_and_reconciled(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        pending = await queue_payout(store)
        broken = PayoutService(store, processor, config)
        broken.payouts.create_payout = AsyncMock(side_effect=RuntimeError("write concern timeout"))

        result = await broken.dispatch_order_payouts("order_1")

        assert result.failed == 1
        (transfer,) = processor.created
        doc = pending_doc(store, pending.id)
        assert doc["status"] == "retry_pending"
        assert doc["transfer_id"] == transfer["id"]
        assert "recording it failed" in doc["failure_reason"]

        attempt = await PayoutService(store, processor, config).retry_payout(pending.id)

        assert attempt.status == "completed"
        assert len(processor.created) == 1
        (payout,) = store.all("payouts")
        assert payout["transfer_id"] == transfer["id"]
        assert store.collections["artists"]["artist_a"]["total_earnings_cents"] == 1430

    @pytest.mark.asyncio
    async def test_processing_payout_with_sent_transfer_is_recorded(self, store, processor, config, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        pending = await queue_payout(store, status="processing")
        transfer_id = processor.add_transfer("order_1", 1430, pending_payout_id=pending.id)
        pending_doc(store, pending.id).update(transfer_id=transfer_id, attempts=1)

        attempt = await PayoutService(store, processor, config).retry_payout(pending.id)

        assert attempt.status == "completed"
        assert attempt.transfer_id == transfer_id
        assert processor.created == []
        assert store.all("payouts")[0]["transfer_id"] == transfer_id


class TestNotices:

    @pytest.mark.asyncio
    async def test_completed_payout_notifies_seller(self, store, processor, config, notifier, seed_seller):
        seed_seller("artist", "artist_a", pending=1430)
        await queue_payout(store)

        await PayoutService(store, processor, config, notifier).dispatch_order_payouts("order_1")

        (notice,) = notifier.notices
        assert notice.kind == "payout_completed"
        assert notice.seller_email == "artist_a@example.com"
        assert notice.amount_cents == 1430
        assert notice.order_number == "FW-order_1"
        assert notice.transfer_id == processor.created[0]["id"]

    @pytest.mark.asyncio
    async def test_failed_payout_sends_no_notice(self, store, processor, config, notifier, seed_seller):
        seed_seller("artist", "artist_a")
        processor.fail_transfers = True
        await queue_payout(store)

        await PayoutService(store, processor, config, notifier).dispatch_order_payouts("order_1")

        assert notifier.notices == []

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_undo_payout(self, store, processor, config, notifier, seed_seller):
        seed_seller("artist", "artist_a")
        pending = await queue_payout(store)
        notifier.notify = AsyncMock(side_effect=RuntimeError("mail service down"))

        result = await PayoutService(store, processor, config, notifier).dispatch_order_payouts("order_1")

        assert result.transferred == 1
        assert pending_doc(store, pending.id)["status"] == "completed"


@pytest.mark.asyncio
async def test_seller_history(store, processor, config, seed_seller):
    seed_seller("artist", "artist_a")
    await queue_payout(store, order_id="order_1")
    await queue_payout(store, order_id="order_2", status="awaiting_account")
    service = PayoutService(store, processor, config)
    await service.dispatch_order_payouts("order_1")

    history = await service.seller_history("artist", "artist_a")

    assert len(history.payouts) == 1
    assert sorted(p.status for p in history.pending_payouts) == ["awaiting_account", "completed"]
