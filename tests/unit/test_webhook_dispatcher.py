from datetime import datetime

import pytest

from shelfwatch.services.item_selector import ExpiryCandidate, NotifyCondition
from shelfwatch.services.webhook_dispatcher import (
    DeliveryStatus,
    DispatchJob,
    WebhookDispatcher,
    WebhookTarget,
)


def make_target(webhook_id: int, url: str, **fields) -> WebhookTarget:
    defaults = dict(
        id=webhook_id,
        user_id="alice",
        name=f"hook-{webhook_id}",
        url=url,
        title_template="{{itemName}} {{condition}}",
        content_template="剩余 {{daysLeft}}",
    )
    defaults.update(fields)
    return WebhookTarget(**defaults)


CANDIDATE = ExpiryCandidate(
    item_id=1,
    user_id="alice",
    name="牛奶",
    stock=1,
    condition=NotifyCondition.EXPIRING,
    expiry_date=datetime(2026, 3, 3),
    days_left=2,
)


@pytest.mark.asyncio
async def test_delivers_rendered_json_payload(http_client, webhook_server):
    target = make_target(1, "https://hooks.test/a", title_key="msg_title", content_key="msg_body")
    dispatcher = WebhookDispatcher(timeout=1, client=http_client)

    results = await dispatcher.dispatch([DispatchJob(target, CANDIDATE)])

    assert len(results) == 1
    assert results[0].status == DeliveryStatus.DELIVERED
    assert results[0].http_status == 200
    assert webhook_server.bodies() == [{"msg_title": "牛奶 即将过期", "msg_body": "剩余 2 天"}]
    assert webhook_server.requests[0].method == "POST"


@pytest.mark.asyncio
async def test_one_bad_webhook_does_not_block_the_rest(http_client, webhook_server):
    webhook_server.set("https://hooks.test/down", "unreachable")
    webhook_server.set("https://hooks.test/slow", "timeout")
    webhook_server.set("https://hooks.test/broken", "error")
    jobs = [
        DispatchJob(make_target(1, "https://hooks.test/down"), CANDIDATE),
        DispatchJob(make_target(2, "https://hooks.test/ok"), CANDIDATE),
        DispatchJob(make_target(3, "https://hooks.test/slow"), CANDIDATE),
        DispatchJob(make_target(4, "https://hooks.test/broken"), CANDIDATE),
    ]

    results = await WebhookDispatcher(client=http_client).dispatch(jobs)
    by_id = {r.webhook_id: r for r in results}

    assert by_id[1].status == DeliveryStatus.FAILED
    assert "connection refused" in by_id[1].error
    assert by_id[2].status == DeliveryStatus.DELIVERED
    assert by_id[3].status == DeliveryStatus.TIMEOUT
    assert by_id[4].status == DeliveryStatus.FAILED
    assert by_id[4].http_status == 500
    assert by_id[4].error.startswith("HTTP 500")
    assert len(webhook_server.bodies("https://hooks.test/ok")) == 1


@pytest.mark.asyncio
async def test_render_error_skips_only_that_config(http_client, webhook_server):
    bad = make_target(1, "https://hooks.test/bad", content_template="{{unknownVar}}")
    good = make_target(2, "https://hooks.test/good")

    results = await WebhookDispatcher(client=http_client).dispatch(
        [DispatchJob(bad, CANDIDATE), DispatchJob(good, CANDIDATE)]
    )

    assert [r.status for r in results] == [DeliveryStatus.FAILED, DeliveryStatus.DELIVERED]
    assert "unknownVar" in results[0].error
    assert [str(r.url) for r in webhook_server.requests] == ["https://hooks.test/good"]


@pytest.mark.asyncio
async def test_deadline_cancels_pending_sends(http_client, webhook_server):
    webhook_server.set("https://hooks.test/hang", "slow")
    jobs = [
        DispatchJob(make_target(1, "https://hooks.test/hang"), CANDIDATE),
        DispatchJob(make_target(2, "https://hooks.test/ok"), CANDIDATE),
    ]

    results = await WebhookDispatcher(client=http_client).dispatch(jobs, deadline=0.2)

    assert [r.webhook_id for r in results] == [2]


@pytest.mark.asyncio
async def test_empty_dispatch(http_client):
    assert await WebhookDispatcher(client=http_client).dispatch([]) == []


@pytest.mark.asyncio
async def test_send_test_uses_sample_values(http_client, webhook_server):
    target = make_target(5, "https://hooks.test/a", content_template="{{itemName}} {{categoryName}}")

    result = await WebhookDispatcher(client=http_client).send_test(target)

    assert result.success
    assert result.job is None
    assert webhook_server.bodies()[0]["content"] == "测试物品 日用品"
