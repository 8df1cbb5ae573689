import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from factories import NOW, add_category, add_item, add_webhook, days_from_now
from shelfwatch.models.notification import NotificationLog, WebhookDelivery
from shelfwatch.services.expiry_check_service import ExpiryCheckError, ExpiryCheckService
from shelfwatch.services.item_selector import ItemSelector
from shelfwatch.services.notification_log_service import NotificationLogService
from shelfwatch.services.webhook_dispatcher import WebhookDispatcher


@pytest.fixture
def service(database, http_client):
    return ExpiryCheckService(
        database,
        WebhookDispatcher(timeout=1, client=http_client),
        cooldown=timedelta(hours=24),
    )


async def all_logs(database) -> list[NotificationLog]:
    async with database.session() as s:
        result = await s.execute(select(NotificationLog).order_by(NotificationLog.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_full_run_sends_and_logs(service, database, session, webhook_server):
    food = await add_category(session, "alice", "食品")
    milk = await add_item(session, "alice", name="牛奶", brand="光明", category_id=food.id,
                          expiration_date=days_from_now(2))
    shampoo = await add_item(session, "alice", name="洗发水", stock=0)
    await add_item(session, "alice", name="大米", expiration_date=days_from_now(100))
    await add_webhook(session, "alice", "https://hooks.test/a",
                      content_template="{{itemName}}|{{brand}}|{{categoryName}}|{{daysLeft}}|{{expiryDate}}")

    result = await service.run(NOW)

    assert result.checked == 3
    assert result.expiring_found == 2
    assert result.notified == 2
    assert result.failed == 0
    assert result.skipped == 0
    assert result.users_notified == 1
    assert result.errors == []

    contents = sorted(b["content"] for b in webhook_server.bodies())
    assert "牛奶|光明|食品|2 天|2026-03-03" in contents

    logs = await all_logs(database)
    assert {(log.item_id, log.condition) for log in logs} == {(milk.id, "expiring"), (shampoo.id, "out_of_stock")}
    assert all(log.status == "DELIVERED" and log.sent_at == NOW for log in logs)
    assert all(len(log.deliveries) == 1 for log in logs)


@pytest.mark.asyncio
async def test_second_run_within_cooldown_sends_nothing(service, session, webhook_server):
    await add_item(session, name="B", expiration_date=days_from_now(2))
    await add_webhook(session)

    first = await service.run(NOW)
    second = await service.run(NOW + timedelta(minutes=40))

    assert first.notified == 1
    assert second.notified == 0
    assert second.skipped == 1
    assert len(webhook_server.requests) == 1


@pytest.mark.asyncio
async def test_run_after_cooldown_notifies_again(service, session, webhook_server):
    await add_item(session, stock=0)
    await add_webhook(session)

    await service.run(NOW)
    later = await service.run(NOW + timedelta(hours=24, minutes=1))

    assert later.notified == 1
    assert len(webhook_server.requests) == 2


@pytest.mark.asyncio
async def test_unreachable_webhook_does_not_block_other_configs(service, database, session, webhook_server):
    webhook_server.set("https://hooks.test/down", "unreachable")
    await add_item(session, stock=0)
    down = await add_webhook(session, url="https://hooks.test/down")
    await add_webhook(session, url="https://hooks.test/up")

    result = await service.run(NOW)

    assert result.notified == 1
    assert result.failed == 1
    assert f"Webhook({down.id})" in result.errors[0]
    assert len(webhook_server.bodies("https://hooks.test/up")) == 1

    logs = await all_logs(database)
    assert len(logs) == 1
    assert logs[0].status == "DELIVERED"
    assert logs[0].delivered_count == 1
    assert logs[0].failed_count == 1
    assert {d.status for d in logs[0].deliveries} == {"DELIVERED", "FAILED"}


@pytest.mark.asyncio
async def test_failed_delivery_retried_on_next_tick(service, database, session, webhook_server):
    webhook_server.set("https://hooks.test/a", "timeout")
    await add_item(session, stock=0)
    await add_webhook(session, url="https://hooks.test/a")

    first = await service.run(NOW)
    assert first.failed == 1
    assert (await all_logs(database))[0].status == "FAILED"

    webhook_server.set("https://hooks.test/a", "ok")
    second = await service.run(NOW + timedelta(hours=1))
    assert second.notified == 1
    assert second.skipped == 0


@pytest.mark.asyncio
async def test_users_without_enabled_webhooks_are_skipped(service, database, session, webhook_server):
    await add_item(session, "alice", stock=0)
    await add_item(session, "bob", stock=0)
    await add_webhook(session, "alice", url="https://hooks.test/alice")
    await add_webhook(session, "bob", url="https://hooks.test/bob", enabled=False)

    result = await service.run(NOW)

    assert result.users_notified == 1
    assert [str(r.url) for r in webhook_server.requests] == ["https://hooks.test/alice"]
    assert {log.user_id for log in await all_logs(database)} == {"alice"}


@pytest.mark.asyncio
async def test_query_failure_aborts_run_without_logging(service, database, session, webhook_server, monkeypatch):
    await add_item(session, stock=0)
    await add_webhook(session)

    async def broken_select(self, now, user_ids=None):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(ItemSelector, "select", broken_select)

    with pytest.raises(ExpiryCheckError):
        await service.run(NOW)

    assert webhook_server.requests == []
    assert await all_logs(database) == []


@pytest.mark.asyncio
async def test_overlapping_runs_are_serialized(service, session, webhook_server):
    await add_item(session, stock=0)
    await add_webhook(session)

    first, second = await asyncio.gather(service.run(NOW), service.run(NOW))

    assert first.notified + second.notified == 1
    assert first.skipped + second.skipped == 1
    assert len(webhook_server.requests) == 1


@pytest.mark.asyncio
async def test_prune_removes_old_logs_and_deliveries(service, database, session):
    await add_item(session, stock=0)
    await add_webhook(session)
    await service.run(NOW - timedelta(days=120))
    await service.run(NOW)

    async with database.session() as s:
        deleted = await NotificationLogService(s).prune(NOW - timedelta(days=90))
    assert deleted == 1

    async with database.session() as s:
        remaining = (await s.execute(select(WebhookDelivery))).scalars().all()
    assert len(remaining) == 1
    assert [log.sent_at for log in await all_logs(database)] == [NOW]


@pytest.mark.asyncio
async def test_cancelled_run_still_records_finished_deliveries(service, database, session, webhook_server):
    webhook_server.set("https://hooks.test/slow", "slow")
    await add_item(session, stock=0)
    await add_webhook(session, url="https://hooks.test/fast")
    await add_webhook(session, url="https://hooks.test/slow")

    task = asyncio.create_task(service.run(NOW))
    await asyncio.sleep(0.3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(webhook_server.bodies("https://hooks.test/fast")) == 1
    logs = await all_logs(database)
    assert len(logs) == 1
    assert logs[0].status == "DELIVERED"
    assert logs[0].delivered_count == 1
    assert logs[0].failed_count == 0
    assert [d.status for d in logs[0].deliveries] == ["DELIVERED"]
    assert not service.is_running

    # 已送达的 (item, condition) 在冷却期内不会重复发送
    again = await service.run(NOW + timedelta(minutes=5))
    assert again.notified == 0
    assert again.skipped == 1


@pytest.mark.asyncio
async def test_wait_idle_waits_for_in_flight_run(service, database, session, webhook_server):
    webhook_server.set("https://hooks.test/a", "delay")
    await add_item(session, stock=0)
    await add_webhook(session, url="https://hooks.test/a")

    task = asyncio.create_task(service.run(NOW))
    await asyncio.sleep(0.05)
    assert service.is_running

    assert await service.wait_idle(5) is True
    assert task.done()
    assert task.result().notified == 1
    assert len(await all_logs(database)) == 1


@pytest.mark.asyncio
async def test_wait_idle_times_out(service, session, webhook_server):
    webhook_server.set("https://hooks.test/a", "slow")
    await add_item(session, stock=0)
    await add_webhook(session, url="https://hooks.test/a")

    task = asyncio.create_task(service.run(NOW))
    await asyncio.sleep(0.05)

    assert await service.wait_idle(0.1) is False
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
