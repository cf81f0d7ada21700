# Copyright (c) 2026 StoreGuard Contributors. All Rights Reserved.
"""Unit tests for ScopedDataAccessor."""

import dataclasses

import pytest

from storeguard.core.errors import (
    InvalidField, NotFound, PolicyViolation, RecordNotFound, Unauthorized,
)
from storeguard.core.metrics import platform_metrics
from storeguard.core.tenant import TenantContext
from storeguard.storage.models import Order, Product
from storeguard.tenancy.accessor import ScopedDataAccessor, ScopedUnitOfWork


@pytest.fixture
def acc1(db_factory, tenants):
    return ScopedDataAccessor(db_factory, tenants.ctx1)


@pytest.fixture
def acc2(db_factory, tenants):
    return ScopedDataAccessor(db_factory, tenants.ctx2)


MUG = {"name": "Mug", "description": "Stoneware", "price_cents": 1200, "inventory": 10}


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_round_trip(self, acc1, tenants):
        created = await acc1.create("products", MUG)
        fetched = await acc1.get("products", created.id)
        for key, value in MUG.items():
            assert getattr(fetched, key) == value
        assert fetched.store_id == tenants.ctx1.store_id
        assert fetched.created_at is not None

    @pytest.mark.asyncio
    async def test_model_class_and_name_are_equivalent(self, acc1):
        created = await acc1.create(Product, MUG)
        assert (await acc1.get("products", created.id)).id == created.id

    @pytest.mark.asyncio
    async def test_foreign_store_id_is_overridden(self, acc1, tenants):
        order = await acc1.create(Order, {
            "customer_email": "buyer@example.com",
            "store_id": tenants.ctx2.store_id,
        })
        assert order.store_id == tenants.ctx1.store_id
        assert (await acc1.get(Order, order.id)).store_id == tenants.ctx1.store_id

    @pytest.mark.asyncio
    async def test_id_and_timestamps_are_ignored(self, acc1):
        created = await acc1.create("products", {**MUG, "id": 777, "created_at": None})
        assert created.id != 777
        assert created.created_at is not None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.create("products", {**MUG, "colour": "blue"})

    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.create("products", {**MUG, "price_cents": -1})

    @pytest.mark.asyncio
    async def test_bad_order_status_rejected(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.create("orders", {"customer_email": "a@b.c", "status": "lost"})

    @pytest.mark.asyncio
    async def test_foreign_record_is_not_found(self, acc1, acc2):
        theirs = await acc2.create("products", MUG)
        with pytest.raises(RecordNotFound) as exc_info:
            await acc1.get("products", theirs.id)
        assert isinstance(exc_info.value, NotFound)
        assert not isinstance(exc_info.value, Unauthorized)

    @pytest.mark.asyncio
    async def test_owner_sees_own_record(self, acc1, acc2):
        mine = await acc1.create("products", MUG)
        with pytest.raises(NotFound):
            await acc2.get("products", mine.id)
        assert (await acc1.get("products", mine.id)).name == "Mug"

    @pytest.mark.parametrize("bad_id", [0, -1, "abc", None, True, 1.5, "1.0"])
    @pytest.mark.asyncio
    async def test_malformed_ids_are_not_found(self, acc1, bad_id):
        with pytest.raises(RecordNotFound):
            await acc1.get("products", bad_id)

    @pytest.mark.asyncio
    async def test_unknown_record_type_is_policy_violation(self, acc1):
        with pytest.raises(PolicyViolation):
            await acc1.get("stores", 1)
        with pytest.raises(PolicyViolation):
            await acc1.list("principals")

    @pytest.mark.asyncio
    async def test_requires_resolved_context(self, db_factory):
        with pytest.raises(PolicyViolation):
            ScopedDataAccessor(db_factory, {"store_id": 1})

    @pytest.mark.asyncio
    async def test_hand_built_context_cannot_read_other_store(self, db_factory, tenants, acc2):
        secret = await acc2.create("products", {**MUG, "name": "Secret"})
        built = TenantContext(
            principal=tenants.alice, store_id=tenants.shop2.id, store_slug="bob-shop",
        )
        with pytest.raises(PolicyViolation):
            ScopedDataAccessor(db_factory, built)

        moved = dataclasses.replace(tenants.ctx1, store_id=tenants.shop2.id)
        with pytest.raises(PolicyViolation):
            ScopedDataAccessor(db_factory, moved)
        assert (await acc2.get("products", secret.id)).name == "Secret"

    @pytest.mark.asyncio
    async def test_integral_float_id_is_accepted(self, acc1):
        mug = await acc1.create("products", MUG)
        assert (await acc1.get("products", float(mug.id))).id == mug.id


class TestList:
    @pytest.mark.asyncio
    async def test_never_returns_foreign_records(self, acc1, acc2, tenants):
        for i in range(3):
            await acc1.create("products", {**MUG, "name": f"A{i}"})
        for i in range(4):
            await acc2.create("products", {**MUG, "name": f"B{i}"})

        mine = await acc1.list("products")
        assert [p.name for p in mine] == ["A0", "A1", "A2"]
        assert all(p.store_id == tenants.ctx1.store_id for p in mine)

    @pytest.mark.asyncio
    async def test_id_guessing_yields_nothing(self, acc1, acc2):
        theirs = [await acc2.create("products", MUG) for _ in range(3)]
        for record in theirs:
            assert await acc1.list("products", {"id": record.id}) == []
            with pytest.raises(NotFound):
                await acc1.get("products", record.id)

    @pytest.mark.asyncio
    async def test_caller_store_filter_cannot_widen_scope(self, acc1, acc2, tenants):
        await acc2.create("products", MUG)
        mine = await acc1.create("products", MUG)
        found = await acc1.list("products", {"store_id": tenants.ctx2.store_id})
        assert [p.id for p in found] == [mine.id]

    @pytest.mark.asyncio
    async def test_equality_filters(self, acc1):
        await acc1.create("products", {**MUG, "name": "Cup", "is_active": False})
        await acc1.create("products", MUG)
        active = await acc1.list("products", {"is_active": True})
        assert [p.name for p in active] == ["Mug"]

    @pytest.mark.asyncio
    async def test_unknown_filter_rejected(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.list("products", {"colour": "blue"})

    @pytest.mark.asyncio
    async def test_paging(self, acc1):
        for i in range(5):
            await acc1.create("products", {**MUG, "name": f"P{i}"})
        page = await acc1.list("products", limit=2, offset=2)
        assert [p.name for p in page] == ["P2", "P3"]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_applies_fields(self, acc1):
        mug = await acc1.create("products", MUG)
        updated = await acc1.update("products", mug.id, {"price_cents": 1500})
        assert updated.price_cents == 1500
        assert (await acc1.get("products", mug.id)).price_cents == 1500

    @pytest.mark.asyncio
    async def test_foreign_update_is_not_found(self, acc1, acc2):
        theirs = await acc2.create("products", MUG)
        with pytest.raises(RecordNotFound):
            await acc1.update("products", theirs.id, {"price_cents": 1})
        assert (await acc2.get("products", theirs.id)).price_cents == 1200

    @pytest.mark.asyncio
    async def test_store_id_cannot_be_moved(self, acc1, tenants):
        mug = await acc1.create("products", MUG)
        updated = await acc1.update("products", mug.id, {"store_id": tenants.ctx2.store_id, "name": "Jug"})
        assert updated.store_id == tenants.ctx1.store_id
        assert updated.name == "Jug"

    @pytest.mark.asyncio
    async def test_failure_before_mutation_leaves_row_unchanged(self, acc1, monkeypatch):
        mug = await acc1.create("products", MUG)

        def fail(self, record, values):
            raise RuntimeError("injected")

        monkeypatch.setattr(ScopedUnitOfWork, "_apply_fields", fail)
        with pytest.raises(RuntimeError, match="injected"):
            await acc1.update("products", mug.id, {"price_cents": 1})
        monkeypatch.undo()

        assert (await acc1.get("products", mug.id)).price_cents == 1200

    @pytest.mark.asyncio
    async def test_failure_after_flush_rolls_back(self, acc1, monkeypatch):
        mug = await acc1.create("products", MUG)
        real_flush = ScopedUnitOfWork._flush

        async def flush_then_fail(self, model):
            await real_flush(self, model)
            raise RuntimeError("injected")

        monkeypatch.setattr(ScopedUnitOfWork, "_flush", flush_then_fail)
        with pytest.raises(RuntimeError, match="injected"):
            await acc1.update("products", mug.id, {"price_cents": 1})
        monkeypatch.undo()

        assert (await acc1.get("products", mug.id)).price_cents == 1200


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_own(self, acc1):
        mug = await acc1.create("products", MUG)
        await acc1.delete("products", mug.id)
        with pytest.raises(RecordNotFound):
            await acc1.get("products", mug.id)

    @pytest.mark.asyncio
    async def test_foreign_delete_is_not_found(self, acc1, acc2):
        theirs = await acc2.create("products", MUG)
        with pytest.raises(RecordNotFound):
            await acc1.delete("products", theirs.id)
        assert (await acc2.get("products", theirs.id)).id == theirs.id


class TestReferencesAndAtomicity:
    @pytest.mark.asyncio
    async def test_item_cannot_reference_foreign_order(self, acc1, acc2):
        their_order = await acc2.create("orders", {"customer_email": "b@example.com"})
        my_product = await acc1.create("products", MUG)
        with pytest.raises(RecordNotFound):
            await acc1.create("order_items", {
                "order_id": their_order.id,
                "product_id": my_product.id,
                "quantity": 1,
                "unit_price_cents": 100,
            })

    @pytest.mark.asyncio
    async def test_atomic_block_rolls_back_everything(self, acc1):
        with pytest.raises(InvalidField):
            async with acc1.atomic() as uow:
                order = await uow.create("orders", {"customer_email": "a@example.com"})
                await uow.create("order_items", {
                    "order_id": order.id, "quantity": 0, "unit_price_cents": 100,
                })
        assert await acc1.list("orders") == []

    @pytest.mark.asyncio
    async def test_metrics_count_operations(self, acc1):
        await acc1.create("products", MUG)
        await acc1.list("products")
        assert platform_metrics.get_counter(
            "accessor_calls", operation="create", record_type="products", outcome="ok",
        ) == 1
        assert platform_metrics.get_counter(
            "accessor_calls", operation="list", record_type="products", outcome="ok",
        ) == 1

    @pytest.mark.asyncio
    async def test_metrics_count_failures(self, acc1):
        with pytest.raises(RecordNotFound):
            await acc1.get(Product, 999)
        assert platform_metrics.get_counter(
            "accessor_calls", operation="get", record_type="products", outcome="error",
        ) == 1


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_order_with_items(self, acc1, tenants):
        mug = await acc1.create("products", MUG)
        hat = await acc1.create("products", {"name": "Hat", "price_cents": 500, "inventory": 2})
        receipt = await acc1.place_order("buyer@example.com", [
            {"product_id": mug.id, "quantity": 2},
            {"product_id": hat.id, "quantity": 1},
        ])
        assert receipt.order.total_cents == 2 * 1200 + 500
        assert receipt.order.store_id == tenants.ctx1.store_id
        assert [i.quantity for i in receipt.items] == [2, 1]
        assert (await acc1.get("products", mug.id)).inventory == 8
        items = await acc1.list("order_items", {"order_id": receipt.order.id})
        assert len(items) == 2

    @pytest.mark.asyncio
    async def test_foreign_product_fails_without_residue(self, acc1, acc2):
        mine = await acc1.create("products", MUG)
        theirs = await acc2.create("products", MUG)
        with pytest.raises(RecordNotFound):
            await acc1.place_order("buyer@example.com", [
                {"product_id": mine.id, "quantity": 1},
                {"product_id": theirs.id, "quantity": 1},
            ])
        assert await acc1.list("orders") == []
        assert await acc1.list("order_items") == []
        assert (await acc1.get("products", mine.id)).inventory == 10
        assert (await acc2.get("products", theirs.id)).inventory == 10

    @pytest.mark.asyncio
    async def test_insufficient_inventory(self, acc1):
        mug = await acc1.create("products", {**MUG, "inventory": 1})
        with pytest.raises(InvalidField, match="inventory"):
            await acc1.place_order("buyer@example.com", [{"product_id": mug.id, "quantity": 2}])
        assert await acc1.list("orders") == []

    @pytest.mark.asyncio
    async def test_empty_order_rejected(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.place_order("buyer@example.com", [])


class TestFieldValidation:
    @pytest.mark.parametrize("fields, field", [
        ({"is_active": "no"}, "is_active"),
        ({"price_cents": True}, "price_cents"),
        ({"price_cents": "1200"}, "price_cents"),
        ({"inventory": 2.5}, "inventory"),
        ({"currency": "EURO"}, "currency"),
        ({"name": 42}, "name"),
        ({"name": "x" * 256}, "name"),
        ({"name": None}, "name"),
    ])
    @pytest.mark.asyncio
    async def test_create_rejects_mistyped_values(self, acc1, fields, field):
        with pytest.raises(InvalidField) as exc_info:
            await acc1.create("products", {**MUG, **fields})
        assert exc_info.value.field == field
        assert await acc1.list("products") == []

    @pytest.mark.asyncio
    async def test_nullable_column_accepts_none(self, acc1):
        created = await acc1.create("products", {**MUG, "description": None})
        assert created.description is None

    @pytest.mark.asyncio
    async def test_update_rejects_mistyped_values(self, acc1):
        mug = await acc1.create("products", MUG)
        with pytest.raises(InvalidField):
            await acc1.update("products", mug.id, {"is_active": "no"})
        with pytest.raises(InvalidField):
            await acc1.update("products", mug.id, {"inventory": False})
        assert (await acc1.get("products", mug.id)).is_active is True

    @pytest.mark.asyncio
    async def test_bool_quantity_rejected(self, acc1):
        order = await acc1.create("orders", {"customer_email": "a@example.com"})
        with pytest.raises(InvalidField):
            await acc1.create("order_items", {
                "order_id": order.id, "quantity": True, "unit_price_cents": 100,
            })

    @pytest.mark.asyncio
    async def test_filter_rejects_mistyped_values(self, acc1):
        with pytest.raises(InvalidField):
            await acc1.list("products", {"is_active": "no"})
        with pytest.raises(InvalidField):
            await acc1.list("products", {"inventory": "many"})

    @pytest.mark.asyncio
    async def test_checkout_currency_is_validated(self, acc1):
        mug = await acc1.create("products", MUG)
        with pytest.raises(InvalidField):
            await acc1.place_order("buyer@example.com", [{"product_id": mug.id}], currency="DOLLARS")
        assert await acc1.list("orders") == []
