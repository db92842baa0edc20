import pytest

from domain.catalog.entity import UserSnapshot
from domain.common.exceptions import ConcurrentUpdateException, DomainValidationException
from domain.order.entity import OrderStatus, ShippingAddress
from domain.order.repository import OrderNumberConflict
from domain.order.service import CartLine, OrderDomainService
from domain.payout.entity import PayoutStatus
from application.utils.concurrency import retry_on_conflict


ASHA = UserSnapshot(id="u1", email="asha@example.com", name="Asha")


def _address(shipping) -> ShippingAddress:
    return ShippingAddress(**shipping)


async def _draft(uow, shipping):
    service = OrderDomainService(uow.orders, uow.products)
    items = await service.build_items([CartLine(product_id="p1", quantity=1)])
    order, _ = service.build_order(ASHA, items, _address(shipping))
    return service, order


async def test_stale_version_write_is_rejected(place_order, uow_factory):
    created = await place_order()

    with pytest.raises(ConcurrentUpdateException):
        async with uow_factory() as uow:
            first = await uow.orders.get_by_id(created.order_id)
            second = await uow.orders.get_by_id(created.order_id)
            first.change_status(OrderStatus.CANCELLED, "first writer")
            await uow.orders.update(first)
            second.change_status(OrderStatus.CANCELLED, "second writer")
            await uow.orders.update(second)

    # the whole unit of work rolled back
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get_by_id(created.order_id)
    assert order.status == OrderStatus.PENDING_PAYMENT


async def test_update_bumps_version_and_appends_history(place_order, uow_factory):
    created = await place_order()
    async with uow_factory() as uow:
        order = await uow.orders.get_by_id(created.order_id)
        before = order.version
        order.change_status(OrderStatus.CANCELLED, "buyer request")
        await uow.orders.update(order)
    assert order.version == before + 1

    async with uow_factory(readonly=True) as uow:
        reloaded = await uow.orders.get_by_id(created.order_id)
    assert reloaded.version == before + 1
    assert [(h.status, h.note) for h in reloaded.status_history][-1] == (OrderStatus.CANCELLED, "buyer request")
    assert len(reloaded.status_history) == 2


async def test_duplicate_order_number_conflicts(place_order, uow_factory, shipping):
    created = await place_order()
    async with uow_factory() as uow:
        _, order = await _draft(uow, shipping)
        order.order_number = created.order_number
        with pytest.raises(OrderNumberConflict):
            await uow.orders.create(order)


async def test_persist_new_order_retries_on_number_collision(place_order, uow_factory, shipping, monkeypatch):
    created = await place_order()
    numbers = iter([created.order_number, "ORD-000001-ZZZZ"])
    monkeypatch.setattr("domain.order.service.generate_order_number", lambda: next(numbers))

    async with uow_factory() as uow:
        service, order = await _draft(uow, shipping)
        saved = await service.persist_new_order(order)

    assert saved.order_number == "ORD-000001-ZZZZ"
    assert service.events[0].order_number == "ORD-000001-ZZZZ"
    async with uow_factory(readonly=True) as uow:
        assert (await uow.orders.get_by_order_number("ORD-000001-ZZZZ")).id == order.id


async def test_unique_constraint_collision_keeps_session_usable(place_order, uow_factory, shipping, monkeypatch):
    from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository

    created = await place_order()
    numbers = iter([created.order_number, "ORD-000002-ZZZZ"])
    monkeypatch.setattr("domain.order.service.generate_order_number", lambda: next(numbers))

    async def never_taken(self, order_number):
        return False

    # 跳过预检查，让数据库唯一约束触发
    monkeypatch.setattr(SQLAlchemyOrderRepository, "_order_number_taken", never_taken)

    async with uow_factory() as uow:
        service, order = await _draft(uow, shipping)
        saved = await service.persist_new_order(order)
        assert saved.order_number == "ORD-000002-ZZZZ"

    async with uow_factory(readonly=True) as uow:
        stored = await uow.orders.get_by_id(order.id)
        original = await uow.orders.get_by_order_number(created.order_number)
    assert stored.order_number == "ORD-000002-ZZZZ"
    assert len(stored.items) == 1
    assert original.id == created.order_id


async def test_persist_new_order_gives_up(place_order, uow_factory, shipping, monkeypatch):
    created = await place_order()
    monkeypatch.setattr("domain.order.service.generate_order_number", lambda: created.order_number)

    async with uow_factory() as uow:
        service, order = await _draft(uow, shipping)
        with pytest.raises(DomainValidationException, match="unique order number"):
            await service.persist_new_order(order, max_attempts=2)


async def test_decrement_stock_never_oversells(catalog, uow_factory, stock_of):
    async with uow_factory() as uow:
        assert await uow.products.decrement_stock("p3", 2)
        assert not await uow.products.decrement_stock("p3", 1)
    assert await stock_of("p3") == 0

    async with uow_factory() as uow:
        await uow.products.restore_stock("p3", 2)
    assert await stock_of("p3") == 2


async def test_seller_metrics_accumulate(catalog, uow_factory):
    async with uow_factory() as uow:
        await uow.sellers.increment_sales_metrics("s1", 500)
        await uow.sellers.increment_sales_metrics("s1", 250)
    async with uow_factory(readonly=True) as uow:
        metrics = await uow.sellers.get_metrics("s1")
    assert (metrics.total_sales, metrics.total_orders) == (750, 2)


async def test_payout_queries(place_order, uow_factory):
    created = await place_order()
    async with uow_factory(readonly=True) as uow:
        pending = await uow.payouts.list_by_status(PayoutStatus.PENDING)
        by_seller = await uow.payouts.list_by_seller("s2")
    assert {p.seller_id for p in pending} == {"s1", "s2"}
    assert [p.order_ids for p in by_seller] == [[created.order_id]]


async def test_payout_stale_write_is_rejected(place_order, uow_factory):
    created = await place_order()
    with pytest.raises(ConcurrentUpdateException):
        async with uow_factory() as uow:
            a, _ = await uow.payouts.list_by_order(created.order_id)
            b = await uow.payouts.get_by_id(a.id)
            a.mark_processing("trf_a")
            await uow.payouts.update(a)
            b.mark_processing("trf_b")
            await uow.payouts.update(b)


async def test_retry_on_conflict_reruns_whole_unit():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrentUpdateException("Order", "o1", len(calls))
        return "done"

    assert await retry_on_conflict(flaky, attempts=3) == "done"
    assert len(calls) == 3


async def test_retry_on_conflict_gives_up():
    async def always():
        raise ConcurrentUpdateException("Order", "o1", 0)

    with pytest.raises(ConcurrentUpdateException):
        await retry_on_conflict(always, attempts=2)
