"""Webhook 投递服务

负责模板渲染、并发 HTTP POST、超时与错误包装。
单个 Webhook 失败不影响其它 Webhook / 物品的投递。
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Mapping, Optional

import httpx

from shelfwatch.models.webhook_config import WebhookConfig
from shelfwatch.services.item_selector import ExpiryCandidate
from shelfwatch.services.template_renderer import (
    SAMPLE_VARIABLES,
    TemplateRenderError,
    build_variables,
    render_template,
)

logger = logging.getLogger(__name__)


class DeliveryStatus(str, Enum):
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class WebhookTarget:
    """WebhookConfig 的只读快照，脱离数据库会话使用"""
    id: int
    user_id: str
    name: str
    url: str
    title_template: str
    content_template: str
    title_key: str = "title"
    content_key: str = "content"

    @classmethod
    def from_model(cls, config: WebhookConfig) -> "WebhookTarget":
        return cls(
            id=config.id,
            user_id=config.user_id,
            name=config.name,
            url=config.url,
            title_template=config.title_template,
            content_template=config.content_template,
            title_key=config.title_key or "title",
            content_key=config.content_key or "content",
        )


@dataclass(frozen=True)
class DispatchJob:
    target: WebhookTarget
    candidate: ExpiryCandidate

    @property
    def user_id(self) -> str:
        return self.candidate.user_id


@dataclass
class DeliveryResult:
    job: Optional[DispatchJob]
    webhook_id: int
    status: DeliveryStatus
    http_status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


def build_payload(target: WebhookTarget, variables: Mapping[str, str]) -> dict[str, str]:
    return {
        target.title_key: render_template(target.title_template, variables),
        target.content_key: render_template(target.content_template, variables),
    }


class WebhookDispatcher:
    def __init__(
        self,
        timeout: float = 10.0,
        concurrency: int = 8,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self._client = client

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def dispatch(
        self,
        jobs: list[DispatchJob],
        deadline: Optional[float] = None,
        collected: Optional[list[DeliveryResult]] = None,
    ) -> list[DeliveryResult]:
        """并发投递所有任务。

        Args:
            jobs: (webhook, 物品) 投递任务
            deadline: 整体截止秒数，到期仍未完成的投递被取消且不返回结果
            collected: 可选的结果容器；调用方被取消时，已完成的投递结果仍会写入其中

        Returns:
            已得到确定结果的投递列表（顺序与 jobs 一致）
        """
        results: list[DeliveryResult] = collected if collected is not None else []
        if not jobs:
            return results

        sem = asyncio.Semaphore(self.concurrency)

        async with self._client_context() as client:
            async def _run(job: DispatchJob) -> DeliveryResult:
                async with sem:
                    return await self._deliver(client, job)

            tasks = [asyncio.create_task(_run(job)) for job in jobs]
            try:
                await asyncio.wait(tasks, timeout=deadline)
            finally:
                # 正常结束、到达截止时间、调用方被取消三种情况都只保留已完成的结果
                results.extend(
                    task.result() for task in tasks
                    if task.done() and not task.cancelled() and task.exception() is None
                )
                unfinished = [t for t in tasks if not t.done()]
                for task in unfinished:
                    task.cancel()
                if unfinished:
                    logger.warning(f"Dispatch interrupted, {len(unfinished)} webhook sends cancelled")
                    await asyncio.gather(*unfinished, return_exceptions=True)

        return results

    async def send_test(self, target: WebhookTarget) -> DeliveryResult:
        """使用示例数据向 Webhook 发送一次测试消息"""
        try:
            payload = build_payload(target, SAMPLE_VARIABLES)
        except TemplateRenderError as e:
            return DeliveryResult(None, target.id, DeliveryStatus.FAILED, error=f"template error: {e}")

        async with self._client_context() as client:
            return await self._post(client, None, target, payload)

    async def _deliver(self, client: httpx.AsyncClient, job: DispatchJob) -> DeliveryResult:
        target = job.target
        try:
            payload = build_payload(target, build_variables(job.candidate))
        except TemplateRenderError as e:
            logger.warning(f"Webhook {target.id} template render failed for item {job.candidate.item_id}: {e}")
            return DeliveryResult(job, target.id, DeliveryStatus.FAILED, error=f"template error: {e}")

        return await self._post(client, job, target, payload)

    async def _post(
        self,
        client: httpx.AsyncClient,
        job: Optional[DispatchJob],
        target: WebhookTarget,
        payload: dict[str, str],
    ) -> DeliveryResult:
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            resp = await client.post(target.url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning(f"Webhook {target.id} timed out after {self.timeout}s")
            return DeliveryResult(job, target.id, DeliveryStatus.TIMEOUT, error="request timed out", duration_ms=_elapsed())
        except httpx.HTTPError as e:
            logger.warning(f"Webhook {target.id} request failed: {e!r}")
            return DeliveryResult(job, target.id, DeliveryStatus.FAILED, error=str(e) or type(e).__name__, duration_ms=_elapsed())
        except Exception as e:
            logger.error(f"Webhook {target.id} unexpected error: {e}", exc_info=True)
            return DeliveryResult(job, target.id, DeliveryStatus.FAILED, error=str(e) or type(e).__name__, duration_ms=_elapsed())

        if resp.is_success:
            return DeliveryResult(job, target.id, DeliveryStatus.DELIVERED, http_status=resp.status_code, duration_ms=_elapsed())

        logger.warning(f"Webhook {target.id} responded HTTP {resp.status_code}")
        return DeliveryResult(
            job,
            target.id,
            DeliveryStatus.FAILED,
            http_status=resp.status_code,
            error=f"HTTP {resp.status_code}: {resp.reason_phrase}",
            duration_ms=_elapsed(),
        )
