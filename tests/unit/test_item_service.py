import pytest

from factories import NOW, add_category, add_item, days_from_now
from shelfwatch.models.item import Item
from shelfwatch.services.item_service import (
    CategoryNotFound,
    CategoryService,
    ItemService,
    ItemStatus,
    item_status,
)


@pytest.mark.parametrize("fields,expected", [
    (dict(stock=0, expiration_date=days_from_now(-3)), ItemStatus.OUT_OF_STOCK),
    (dict(stock=5, expiration_date=days_from_now(-1)), ItemStatus.EXPIRED),
    (dict(stock=5, expiration_date=days_from_now(7)), ItemStatus.EXPIRING_SOON),
    (dict(stock=1, expiration_date=days_from_now(30)), ItemStatus.LOW_STOCK),
    (dict(stock=3, expiration_date=days_from_now(30)), ItemStatus.HEALTHY),
    (dict(stock=3), ItemStatus.HEALTHY),
    (dict(stock=3, last_opened_at=days_from_now(-85), lifespan_days=90), ItemStatus.EXPIRING_SOON),
])
def test_item_status_priority(fields, expected):
    item = Item(name="x", user_id="alice", **fields)
    assert item_status(item, NOW) == expected


@pytest.mark.asyncio
async def test_dashboard_stats(session):
    await add_item(session, stock=0)
    await add_item(session, stock=3, expiration_date=days_from_now(-2))
    await add_item(session, stock=3, expiration_date=days_from_now(5), notify_enabled=False)
    await add_item(session, stock=1)
    await add_item(session, stock=3, is_archived=True, expiration_date=days_from_now(1))
    await add_item(session, "bob", stock=0)

    stats = await ItemService(session).dashboard_stats("alice", NOW)

    assert stats.total_items == 4
    assert stats.expiring_soon == 2
    assert stats.low_stock == 2
    assert stats.notifications_enabled == 3


@pytest.mark.asyncio
async def test_pinned_items_exclude_archived_and_other_users(session):
    pinned = await add_item(session, name="维生素", is_pinned=True)
    await add_item(session, name="旧电池", is_pinned=True, is_archived=True)
    await add_item(session, name="纸巾")
    await add_item(session, "bob", name="咖啡", is_pinned=True)

    items = await ItemService(session).pinned_items("alice")

    assert [i.id for i in items] == [pinned.id]


@pytest.mark.asyncio
async def test_create_item_with_category_of_other_user_rejected(session):
    foreign = await add_category(session, "bob", "食品")

    with pytest.raises(CategoryNotFound):
        await ItemService(session).create_item("alice", {"name": "牛奶", "category_id": foreign.id})


@pytest.mark.asyncio
async def test_create_and_update_item_loads_category(session):
    food = await add_category(session, "alice", "食品")
    svc = ItemService(session)

    item = await svc.create_item("alice", {"name": "牛奶", "stock": 2, "category_id": food.id,
                                           "expiration_date": days_from_now(2)})
    assert item.category.name == "食品"

    updated = await svc.update_item(item.id, "alice", {"category_id": None, "expiration_date": None})
    assert updated.category is None
    assert updated.expiration_date is None

    assert await svc.update_item(item.id, "bob", {"stock": 0}) is None


@pytest.mark.asyncio
async def test_delete_item_is_owner_scoped(session):
    item = await add_item(session)
    svc = ItemService(session)

    assert await svc.delete_item(item.id, "bob") is False
    assert await svc.delete_item(item.id, "alice") is True
    assert await svc.get_item(item.id, "alice") is None


@pytest.mark.asyncio
async def test_create_category_strips_and_requires_name(session):
    svc = CategoryService(session)
    category = await svc.create_category("alice", "  日用品 ")
    assert category.name == "日用品"

    with pytest.raises(ValueError):
        await svc.create_category("alice", "   ")

    assert [c.name for c in await svc.list_categories("alice")] == ["日用品"]
    assert await svc.list_categories("bob") == []
