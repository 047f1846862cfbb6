import pytest

from payout_ledger.core.errors import SettlementAlreadyRecorded
from payout_ledger.services.settlement_service import SettlementService


def entries_by_seller(store):
    return {doc["seller_id"]: doc for doc in store.all("ledger_entries")}


@pytest.mark.asyncio
async def test_scenario_two_sellers(store, config, scenario_order):
    result = await SettlementService(store, config=config).record_sale(scenario_order)

    assert result.success is True
    assert len(result.ledger_entry_ids) == 2
    assert len(result.pending_payout_ids) == 2

    entries = entries_by_seller(store)
    a = entries["artist_a"]
    assert a["seller_kind"] == "artist"
    assert a["subtotal_cents"] == 1000
    assert a["shipping_cents"] == 500
    assert a["fees"] == {"processor_fee_cents": 60, "platform_fee_cents": 10, "total_fees_cents": 70}
    assert a["net_revenue_cents"] == 1430
    assert a["payout_amount_cents"] == 1430
    assert a["item_count"] == 2
    assert a["has_physical"] is True

    b = entries["supplier_b"]
    assert b["subtotal_cents"] == 2000
    assert b["shipping_cents"] == 0
    assert b["fees"] == {"processor_fee_cents": 60, "platform_fee_cents": 100, "total_fees_cents": 160}

    processor_total = sum(e["fees"]["processor_fee_cents"] for e in entries.values())
    assert processor_total == 120


@pytest.mark.asyncio
async def test_ledger_entries_satisfy_revenue_invariants(store, config, scenario_order):
    await SettlementService(store, config=config).record_sale(scenario_order)

    for entry in store.all("ledger_entries"):
        fees = entry["fees"]
        assert entry["net_revenue_cents"] == entry["gross_total_cents"] - (
            fees["processor_fee_cents"] + fees["platform_fee_cents"]
        )
    subtotals = sum(e["subtotal_cents"] for e in store.all("ledger_entries"))
    assert subtotals == scenario_order.item_total_cents


@pytest.mark.asyncio
async def test_pending_payouts_and_balances(store, config, scenario_order):
    await SettlementService(store, config=config).record_sale(scenario_order)

    payouts = {doc["seller_id"]: doc for doc in store.all("pending_payouts")}
    assert payouts["artist_a"]["status"] == "pending"
    assert payouts["artist_a"]["amount_cents"] == 1430
    assert payouts["artist_a"]["shipping_cents"] == 500
    assert payouts["artist_a"]["item_amount_cents"] == 930
    assert payouts["supplier_b"]["amount_cents"] == 1840

    assert store.collections["artists"]["artist_a"]["pending_balance_cents"] == 1430
    assert store.collections["suppliers"]["supplier_b"]["pending_balance_cents"] == 1840


@pytest.mark.asyncio
async def test_unresolved_items_are_left_out(store, config, seed_order, seed_seller):
    store.seed("releases", "rel_1", {"submitter_id": "artist_a"})
    seed_seller("artist", "artist_a")
    order = seed_order(items=[
        {"item_type": "release", "product_id": "rel_1", "unit_price_cents": 1000},
        {"item_type": "release", "product_id": "deleted", "unit_price_cents": 400},
    ])

    result = await SettlementService(store, config=config).record_sale(order)

    assert result.success is True
    assert result.unresolved_subtotal_cents == 400
    subtotals = sum(e["subtotal_cents"] for e in store.all("ledger_entries"))
    assert subtotals + result.unresolved_subtotal_cents == order.item_total_cents


@pytest.mark.asyncio
async def test_no_resolvable_seller_writes_nothing(store, config, seed_order):
    order = seed_order(items=[{"item_type": "merch", "product_id": "gone", "unit_price_cents": 1500}])

    result = await SettlementService(store, config=config).record_sale(order)

    assert result.success is True
    assert result.ledger_entry_ids == []
    assert store.all("ledger_entries") == []
    assert store.all("pending_payouts") == []


@pytest.mark.asyncio
async def test_processor_fee_computed_when_order_has_none(store, config, seed_order, seed_seller):
    store.seed("releases", "rel_1", {"submitter_id": "artist_a"})
    seed_seller("artist", "artist_a")
    order = seed_order(items=[{"item_type": "digital", "product_id": "rel_1", "unit_price_cents": 3000}])

    await SettlementService(store, config=config).record_sale(order)

    (entry,) = store.all("ledger_entries")
    assert entry["fees"]["processor_fee_cents"] == 62


@pytest.mark.asyncio
async def test_one_seller_failing_does_not_roll_back_others(store, config, scenario_order, monkeypatch):
    real_add = store.add

    async def failing_add(collection, doc):
        if collection == "ledger_entries" and doc.get("seller_id") == "supplier_b":
            raise RuntimeError("write timeout")
        return await real_add(collection, doc)

    monkeypatch.setattr(store, "add", failing_add)

    result = await SettlementService(store, config=config).record_sale(scenario_order)

    assert result.success is False
    assert [(f.seller_kind, f.seller_id) for f in result.failed_sellers] == [("supplier", "supplier_b")]
    assert len(result.ledger_entry_ids) == 1
    assert list(entries_by_seller(store)) == ["artist_a"]


@pytest.mark.asyncio
async def test_rerun_for_a_single_seller(store, config, scenario_order):
    service = SettlementService(store, config=config)

    result = await service.record_sale(scenario_order, only={("supplier", "supplier_b")})

    assert result.success is True
    (entry,) = store.all("ledger_entries")
    assert entry["seller_id"] == "supplier_b"
    # the fee is still split across both sellers of the order
    assert entry["fees"]["processor_fee_cents"] == 60


@pytest.mark.asyncio
async def test_rerun_seller_refuses_a_recorded_seller(store, config, scenario_order):
    service = SettlementService(store, config=config)
    await service.rerun_seller(scenario_order, "supplier", "supplier_b")

    with pytest.raises(SettlementAlreadyRecorded):
        await service.rerun_seller(scenario_order, "supplier", "supplier_b")

    assert len(store.all("ledger_entries")) == 1
    assert len(store.all("pending_payouts")) == 1
    assert store.collections["suppliers"]["supplier_b"]["pending_balance_cents"] == 1840


@pytest.mark.asyncio
async def test_rerun_seller_records_missing_seller(store, config, scenario_order):
    service = SettlementService(store, config=config)
    await service.rerun_seller(scenario_order, "artist", "artist_a")

    result = await service.rerun_seller(scenario_order, "supplier", "supplier_b")

    assert result.success is True
    assert sorted(entries_by_seller(store)) == ["artist_a", "supplier_b"]


@pytest.mark.asyncio
async def test_record_sale_always_appends(store, config, scenario_order):
    service = SettlementService(store, config=config)

    await service.record_sale(scenario_order)
    await service.record_sale(scenario_order)

    assert len(store.all("ledger_entries")) == 4


@pytest.mark.asyncio
async def test_seller_with_nothing_to_pay_gets_no_pending_payout(store, config, seed_order, seed_seller):
    store.seed("releases", "rel_1", {"submitter_id": "artist_a"})
    seed_seller("artist", "artist_a")
    order = seed_order(
        items=[{"item_type": "track", "product_id": "rel_1", "unit_price_cents": 50}],
        processor_fee_cents=120,
    )

    result = await SettlementService(store, config=config).record_sale(order)

    assert len(result.ledger_entry_ids) == 1
    assert result.pending_payout_ids == []
    assert store.collections["artists"]["artist_a"]["pending_balance_cents"] == 0
