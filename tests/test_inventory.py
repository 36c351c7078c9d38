from __future__ import annotations

import asyncio

import pytest

from freshmart.api.errors import InsufficientStock, NotFound, ValidationError
from freshmart.models import Product
from freshmart.services.inventory import InventoryLedger


async def test_decrement_reduces_stock(db, make_product):
    product = await make_product(count_in_stock=5)
    ledger = InventoryLedger()

    updated = await ledger.decrement_stock(session=db, product_id=product.id, quantity=2)

    assert updated.count_in_stock == 3
    assert updated.is_available is True


async def test_decrement_to_zero_marks_unavailable(db, make_product):
    product = await make_product(count_in_stock=2)

    updated = await InventoryLedger().decrement_stock(session=db, product_id=product.id, quantity=2)

    assert updated.count_in_stock == 0
    assert updated.is_available is False


async def test_decrement_beyond_stock_is_rejected_and_unchanged(db, make_product):
    product = await make_product(count_in_stock=1)

    with pytest.raises(InsufficientStock) as exc:
        await InventoryLedger().decrement_stock(session=db, product_id=product.id, quantity=2)

    assert exc.value.status_code == 409
    await db.refresh(product)
    assert product.count_in_stock == 1
    assert product.is_available is True


async def test_decrement_missing_product(db):
    with pytest.raises(NotFound):
        await InventoryLedger().decrement_stock(session=db, product_id=123456, quantity=1)


async def test_non_positive_quantity_rejected(db, make_product):
    product = await make_product()
    ledger = InventoryLedger()

    with pytest.raises(ValidationError):
        await ledger.decrement_stock(session=db, product_id=product.id, quantity=0)
    with pytest.raises(ValidationError):
        await ledger.restore_stock(session=db, product_id=product.id, quantity=-1)


async def test_restore_reenables_depleted_product(db, make_product):
    product = await make_product(count_in_stock=0, is_available=False)

    updated = await InventoryLedger().restore_stock(session=db, product_id=product.id, quantity=3)

    assert updated.count_in_stock == 3
    assert updated.is_available is True


async def test_restore_keeps_manually_disabled_product_off(db, make_product):
    product = await make_product(count_in_stock=4, is_available=False)

    updated = await InventoryLedger().restore_stock(session=db, product_id=product.id, quantity=1)

    assert updated.count_in_stock == 5
    assert updated.is_available is False


async def test_restore_missing_product(db):
    with pytest.raises(NotFound):
        await InventoryLedger().restore_stock(session=db, product_id=987654, quantity=1)


async def test_concurrent_decrements_only_one_wins(session_factory, make_product, db):
    product = await make_product(count_in_stock=1)
    ledger = InventoryLedger()

    async def _take() -> Product:
        async with session_factory() as session:
            return await ledger.decrement_stock(session=session, product_id=product.id, quantity=1)

    results = await asyncio.gather(_take(), _take(), return_exceptions=True)

    successes = [r for r in results if isinstance(r, Product)]
    failures = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(successes) == 1
    assert len(failures) == 1

    await db.refresh(product)
    assert product.count_in_stock == 0
    assert product.is_available is False
