import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from app.api.v1.model.voucher import NOTIFICATION_COLLECTION, VOUCHER_COLLECTION
from app.api.v1.services.voucher.catalog_service import VoucherCatalog
from app.api.v1.services.voucher.code_generator import ALPHABET, CodeGenerator
from app.pedro.enums import DiscountType, VoucherScope
from app.pedro.exception import (
    AlreadyClaimed,
    CodeGenerationExhausted,
    InvalidVoucherDefinition,
    VoucherExpired,
    VoucherInactive,
    VoucherNotFound,
)


class FixedCodes(CodeGenerator):
    def generate(self, length: int = 8, prefix: str = "") -> str:
        return "FIXED222"


async def test_create_generates_code_and_persists_camel_case(catalog, store, make_voucher, clock):
    voucher = await make_voucher(usage_limit=10, max_discount_cap=150000)

    assert len(voucher.code) == 8
    assert set(voucher.code) <= set(ALPHABET)
    assert voucher.redeemed_count == 0
    assert voucher.valid_from == clock.now

    doc = store.get(VOUCHER_COLLECTION, voucher.id)
    assert doc["code"] == voucher.code
    assert doc["discountType"] == "percentage"
    assert doc["scope"] == "all_homestays"
    assert doc["usageLimit"] == 10
    assert doc["redeemedCount"] == 0
    assert doc["maxDiscountAmount"] == 150000
    assert doc["perUserLimit"] == 1


@pytest.mark.parametrize("overrides", [
    {"discount_value": 0},
    {"discount_value": -5},
    {"discount_value": 101},
    {"discount_type": DiscountType.FIXED_AMOUNT, "discount_value": 0},
    {"discount_type": DiscountType.FIXED_AMOUNT, "discount_value": 50000, "max_discount_cap": 10000},
    {"max_discount_cap": 0},
    {"scope": VoucherScope.SPECIFIC_HOMESTAY},
    {"scope": VoucherScope.SPECIFIC_ROOM, "applicable_homestay_id": "P1"},
    {"usage_limit": -1},
    {"per_user_limit": 0},
])
async def test_create_rejects_invalid_definitions(make_voucher, store, overrides):
    with pytest.raises(InvalidVoucherDefinition):
        await make_voucher(**overrides)
    assert store.query(VOUCHER_COLLECTION) == []


@pytest.mark.parametrize("field, value", [
    ("discount_value", float("nan")),
    ("discount_value", float("inf")),
    ("max_discount_cap", float("nan")),
    ("max_discount_cap", float("inf")),
])
async def test_create_rejects_non_finite_amounts(catalog, definition, store, field, value):
    # 请求体校验会先挡掉 NaN / inf，这里绕过请求体直接调用服务
    overrides = {"discount_type": DiscountType.FIXED_AMOUNT} if field == "discount_value" else {}
    bad = definition(**overrides).model_copy(update={field: value})
    with pytest.raises(InvalidVoucherDefinition):
        await catalog.create(bad)
    assert store.query(VOUCHER_COLLECTION) == []


def test_definition_schema_rejects_non_finite_numbers(definition):
    with pytest.raises(ValidationError):
        definition(discount_value=float("nan"))
    with pytest.raises(ValidationError):
        definition(max_discount_cap=float("inf"))


async def test_explicit_per_user_limit_is_kept(make_voucher, store):
    voucher = await make_voucher(per_user_limit=3)
    assert voucher.per_user_limit == 3
    assert store.get(VOUCHER_COLLECTION, voucher.id)["perUserLimit"] == 3


async def test_create_rejects_window_that_ends_before_it_starts(make_voucher, clock):
    with pytest.raises(InvalidVoucherDefinition):
        await make_voucher(valid_from=clock.now + timedelta(days=2), expiry_date=clock.now + timedelta(days=1))
    with pytest.raises(InvalidVoucherDefinition):
        await make_voucher(valid_from=clock.now, expiry_date=clock.now)


async def test_custom_code_is_normalized_and_unique(make_voucher, catalog):
    voucher = await make_voucher(code="summer25")
    assert voucher.code == "SUMMER25"
    assert not await catalog.is_code_unique("Summer25")
    assert await catalog.is_code_unique("WINTER25")

    with pytest.raises(InvalidVoucherDefinition, match="already exists"):
        await make_voucher(code="SUMMER25")


async def test_code_generation_exhausted(store, definition, clock):
    catalog = VoucherCatalog(store, code_generator=FixedCodes(), clock=clock)
    await catalog.create(definition())
    with pytest.raises(CodeGenerationExhausted):
        await catalog.create(definition())


async def test_scope_targets_are_verified_when_enabled(store, definition, clock):
    catalog = VoucherCatalog(store, clock=clock, verify_scope_targets=True)
    with pytest.raises(InvalidVoucherDefinition, match="Homestay not found"):
        await catalog.create(definition(scope=VoucherScope.SPECIFIC_HOMESTAY, applicable_homestay_id="P1"))

    store.transact(lambda tx: tx.put("homestays", "P1", {"name": "Da Lat Pine House"}))
    voucher = await catalog.create(definition(scope=VoucherScope.SPECIFIC_HOMESTAY, applicable_homestay_id="P1"))
    assert voucher.applicable_homestay_id == "P1"


async def test_get_by_code(make_voucher, catalog):
    voucher = await make_voucher()
    found = await catalog.get_by_code(voucher.code.lower())
    assert found.id == voucher.id

    with pytest.raises(VoucherNotFound):
        await catalog.get_by_code("NOPE2222")
    with pytest.raises(VoucherNotFound):
        await catalog.get("missing")


async def test_deactivate_is_idempotent(make_voucher, catalog, store):
    voucher = await make_voucher()

    first = await catalog.deactivate(voucher.id)
    second = await catalog.deactivate(voucher.id)
    assert first.is_active is False
    assert second.is_active is False
    assert store.get(VOUCHER_COLLECTION, voucher.id)["isActive"] is False

    reactivated = await catalog.activate(voucher.id)
    assert reactivated.is_active is True

    with pytest.raises(VoucherNotFound):
        await catalog.deactivate("missing")


async def test_list_available_filters_unusable_vouchers(make_voucher, catalog, clock, store):
    usable = await make_voucher()
    inactive = await make_voucher()
    await catalog.deactivate(inactive.id)
    await make_voucher(expiry_date=clock.now + timedelta(hours=1))
    await make_voucher(valid_from=clock.now + timedelta(days=1))
    used_up = await make_voucher(usage_limit=1)
    store.transact(lambda tx: tx.update(VOUCHER_COLLECTION, used_up.id, {"redeemedCount": 1}))

    clock.advance(hours=2)
    available = await catalog.list_available()
    assert [v.id for v in available] == [usable.id]


async def test_list_for_host_and_all_are_newest_first(make_voucher, catalog, clock):
    older = await make_voucher(host_id="host-1")
    clock.advance(minutes=5)
    newer = await make_voucher(host_id="host-1")
    await make_voucher(host_id="host-2")

    assert [v.id for v in await catalog.list_for_host("host-1")] == [newer.id, older.id]
    assert len(await catalog.list_all()) == 3
    assert len(await catalog.list_all(limit=2)) == 2


async def test_grant_is_idempotent_and_notifies(make_voucher, catalog, store):
    voucher = await make_voucher()

    usage = await catalog.grant(voucher.id, "user-1")
    again = await catalog.grant(voucher.id, "user-1")
    assert usage.usage_count == 0
    assert again.received_at == usage.received_at

    notifications = store.query(NOTIFICATION_COLLECTION, [("userId", "==", "user-1")])
    assert len(notifications) == 1
    assert notifications[0]["type"] == "voucher"
    assert voucher.code in notifications[0]["message"]

    mine = await catalog.list_for_user("user-1")
    assert [v.id for v in mine] == [voucher.id]
    assert (await catalog.usage(voucher.id, "user-1")).usage_count == 0
    assert await catalog.usage(voucher.id, "user-2") is None

    with pytest.raises(VoucherNotFound):
        await catalog.grant("missing", "user-1")


async def test_claim_sets_owner_once(make_voucher, catalog, store):
    voucher = await make_voucher()

    claimed = await catalog.claim(voucher.id, "user-1")
    again = await catalog.claim(voucher.id, "user-1")
    assert claimed.claimed_by == "user-1"
    assert again.claimed_by == "user-1"
    assert store.get(VOUCHER_COLLECTION, voucher.id)["claimedBy"] == "user-1"

    with pytest.raises(AlreadyClaimed):
        await catalog.claim(voucher.id, "user-2")
    assert store.get(VOUCHER_COLLECTION, voucher.id)["claimedBy"] == "user-1"

    # 重复领取不重复通知
    assert len(store.query(NOTIFICATION_COLLECTION, [("userId", "==", "user-1")])) == 1
    assert store.query(NOTIFICATION_COLLECTION, [("userId", "==", "user-2")]) == []

    with pytest.raises(VoucherNotFound):
        await catalog.claim("missing", "user-1")


async def test_claim_rejects_unusable_vouchers(make_voucher, catalog, clock, store):
    inactive = await make_voucher()
    await catalog.deactivate(inactive.id)
    expiring = await make_voucher(expiry_date=clock.now + timedelta(hours=1))

    with pytest.raises(VoucherInactive):
        await catalog.claim(inactive.id, "user-1")
    clock.advance(hours=2)
    with pytest.raises(VoucherExpired):
        await catalog.claim(expiring.id, "user-1")
    assert store.get(VOUCHER_COLLECTION, inactive.id).get("claimedBy") is None


async def test_concurrent_claims_have_one_winner(make_voucher, catalog):
    voucher = await make_voucher()
    results = await asyncio.gather(
        *(catalog.claim(voucher.id, f"user-{i}") for i in range(8)), return_exceptions=True
    )
    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, AlreadyClaimed) for r in results if isinstance(r, Exception))


async def test_issue_to_users_creates_one_claimed_voucher_each(catalog, definition, store):
    vouchers = await catalog.issue_to_users(definition(), ["user-1", "user-2", "user-1", "user-3"])

    assert [v.claimed_by for v in vouchers] == ["user-1", "user-2", "user-3"]
    assert len({v.code for v in vouchers}) == 3
    for voucher in vouchers:
        doc = store.get(VOUCHER_COLLECTION, voucher.id)
        assert doc["claimedBy"] == voucher.claimed_by
        assert doc["redeemedCount"] == 0
        assert len(store.query(NOTIFICATION_COLLECTION, [("userId", "==", voucher.claimed_by)])) == 1

    mine = await catalog.list_for_user("user-2")
    assert [v.id for v in mine] == [vouchers[1].id]
    # 专属券不出现在他人的可用列表里
    assert vouchers[0].id not in [v.id for v in await catalog.list_available(user_id="user-2")]


async def test_issue_to_users_spans_batches(catalog, definition, store, monkeypatch):
    from app.api.v1.services.voucher import catalog_service

    monkeypatch.setattr(catalog_service, "ISSUE_BATCH_SIZE", 2)
    vouchers = await catalog.issue_to_users(definition(), [f"user-{i}" for i in range(5)])
    assert len(vouchers) == 5
    assert len(store.query(VOUCHER_COLLECTION)) == 5


@pytest.mark.parametrize("user_ids, overrides", [
    ([], {}),
    (["", ""], {}),
    (["user-1"], {"code": "SUMMER25"}),
    (["user-1"], {"discount_value": 0}),
])
async def test_issue_to_users_rejects_bad_input(catalog, definition, store, user_ids, overrides):
    with pytest.raises(InvalidVoucherDefinition):
        await catalog.issue_to_users(definition(**overrides), user_ids)
    assert store.query(VOUCHER_COLLECTION) == []


async def test_watch_all_pushes_newest_first(make_voucher, catalog, clock):
    seen = []
    unsubscribe = catalog.watch_all(seen.append)
    assert seen == [[]]

    older = await make_voucher()
    clock.advance(minutes=5)
    newer = await make_voucher()
    assert [v.id for v in seen[-1]] == [newer.id, older.id]

    await catalog.deactivate(older.id)
    assert seen[-1][1].is_active is False

    unsubscribe()
    pushes = len(seen)
    await make_voucher()
    assert len(seen) == pushes
