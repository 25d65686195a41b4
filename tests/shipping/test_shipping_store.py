"""ShippingStore を SQLite (aiosqlite) に対して動かすテスト"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from shipping_service.errors import StoreUnavailable
from shipping_service.models import CreateShippingRequest
from shipping_service.store import ShippingStore


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'shipping.db'}", poolclass=NullPool
    )
    store = ShippingStore(engine)
    await store.init_schema()
    yield store
    await engine.dispose()


@pytest.mark.asyncio
async def test_append_then_list_round_trip(store) -> None:
    before = datetime.now(timezone.utc)
    created = await store.append(
        CreateShippingRequest(order_id="o1", address="1 Main St")
    )
    after = datetime.now(timezone.utc)

    records = await store.list_all()

    assert records == [created]
    assert created.id
    assert before <= created.shipped_at <= after


@pytest.mark.asyncio
async def test_ids_are_unique(store) -> None:
    for i in range(5):
        await store.append(CreateShippingRequest(order_id=f"o{i}", address="x"))

    records = await store.list_all()

    assert len({r.id for r in records}) == 5


@pytest.mark.asyncio
async def test_caller_supplied_timestamp_is_kept_in_utc(store) -> None:
    jst = timezone(timedelta(hours=9))
    shipped = datetime(2024, 4, 1, 9, 30, tzinfo=jst)

    await store.append(
        CreateShippingRequest(order_id="o1", address="Tokyo", shipped_at=shipped)
    )
    (record,) = await store.list_all()

    assert record.shipped_at == shipped
    assert record.shipped_at.tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_list_is_ordered_by_shipped_at(store) -> None:
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await store.append(
        CreateShippingRequest(order_id="late", address="x", shipped_at=base + timedelta(days=1))
    )
    await store.append(CreateShippingRequest(order_id="early", address="x", shipped_at=base))

    assert [r.order_id for r in await store.list_all()] == ["early", "late"]


@pytest.mark.asyncio
async def test_unreachable_database_raises_store_unavailable(tmp_path) -> None:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'shipping.db'}",
        poolclass=NullPool,
    )
    store = ShippingStore(engine)

    with pytest.raises(StoreUnavailable):
        await store.append(CreateShippingRequest(order_id="o1", address="x"))
    with pytest.raises(StoreUnavailable):
        await store.list_all()
    await engine.dispose()
