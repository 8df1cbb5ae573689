import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from shelfwatch.jobs.expiry_jobs import cleanup_notification_logs_job, expiry_check_job
from shelfwatch.models.notification import LOG_STATUS_DELIVERED, NotificationLog, WebhookDelivery
from shelfwatch.services.expiry_check_service import ExpiryCheckError, ExpiryCheckResult, ExpiryCheckService
from shelfwatch.services.webhook_dispatcher import WebhookDispatcher


def add_log(session, sent_at: datetime, item_id: int = 1) -> NotificationLog:
    log = NotificationLog(
        item_id=item_id,
        user_id="alice",
        condition="out_of_stock",
        status=LOG_STATUS_DELIVERED,
        delivered_count=1,
        failed_count=0,
        sent_at=sent_at,
    )
    log.deliveries = [WebhookDelivery(webhook_id=1, status="DELIVERED", http_status=200, duration_ms=5)]
    session.add(log)
    return log


@pytest.mark.asyncio
async def test_expiry_check_job_logs_failure_without_raising(database, monkeypatch, caplog):
    service = ExpiryCheckService(database, WebhookDispatcher())

    async def failing_run(now=None):
        raise ExpiryCheckError("query failed: database is locked")

    monkeypatch.setattr(service, "run", failing_run)

    with caplog.at_level(logging.ERROR, logger="shelfwatch.jobs.expiry_jobs"):
        await expiry_check_job(service)

    assert "Expiry check job failed: query failed: database is locked" in caplog.text


@pytest.mark.asyncio
async def test_expiry_check_job_warns_on_delivery_errors(database, monkeypatch, caplog):
    service = ExpiryCheckService(database, WebhookDispatcher())

    async def partial_run(now=None):
        return ExpiryCheckResult(checked=1, expiring_found=1, failed=1, errors=["[牛奶] Webhook(3): HTTP 500"])

    monkeypatch.setattr(service, "run", partial_run)

    with caplog.at_level(logging.WARNING, logger="shelfwatch.jobs.expiry_jobs"):
        await expiry_check_job(service)

    assert "1 delivery errors" in caplog.text
    assert "Webhook(3)" in caplog.text


@pytest.mark.asyncio
async def test_cleanup_job_prunes_by_retention(database, session):
    now = datetime.utcnow()
    add_log(session, now - timedelta(days=100), item_id=1)
    add_log(session, now - timedelta(days=89), item_id=2)
    add_log(session, now - timedelta(hours=1), item_id=3)
    await session.commit()

    service = ExpiryCheckService(database, WebhookDispatcher())
    await cleanup_notification_logs_job(service, retention_days=90)

    async with database.session() as s:
        remaining = (await s.execute(select(NotificationLog.item_id).order_by(NotificationLog.item_id))).scalars().all()
        deliveries = (await s.execute(select(WebhookDelivery))).scalars().all()
    assert list(remaining) == [2, 3]
    assert len(deliveries) == 2


@pytest.mark.asyncio
async def test_cleanup_job_logs_database_errors(caplog):
    class ClosedDatabase:
        def session(self):
            raise RuntimeError("Database is not open. Call open() first.")

    service = ExpiryCheckService(ClosedDatabase(), WebhookDispatcher())

    with caplog.at_level(logging.ERROR, logger="shelfwatch.jobs.expiry_jobs"):
        await cleanup_notification_logs_job(service, retention_days=90)

    assert "Notification log cleanup job failed" in caplog.text
