"""Webhook dispatcher — fans notifications out to per-subscription delivery workers."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType

import aiohttp
import structlog

from pulsewatch.core.types import NotificationEvent, WebhookSubscription
from pulsewatch.webhooks.exceptions import DeliveryFailure
from pulsewatch.webhooks.payloads import encode_event
from pulsewatch.webhooks.signing import SIGNATURE_HEADER, sign

logger = structlog.stdlib.get_logger()

SubscriptionSource = Callable[
    [], Iterable[WebhookSubscription] | Awaitable[Iterable[WebhookSubscription]]
]


class _SubscriptionWorker:
    """Bounded FIFO queue plus the task that drains it, for one subscription."""

    def __init__(self, subscription_id: str, queue_size: int) -> None:
        self.subscription_id = subscription_id
        self.queue: asyncio.Queue[tuple[WebhookSubscription, NotificationEvent]] = (
            asyncio.Queue(maxsize=queue_size)
        )
        self.task: asyncio.Task[None] | None = None
        self.busy = False

    @property
    def idle(self) -> bool:
        return not self.busy and self.queue.empty()


class WebhookDispatcher:
    """Delivers notification events to matching webhook subscriptions.

    - ``offer()`` never waits: when the intake queue is full the event is
      dropped and counted (unless ``block_when_full`` is set).
    - A fan-out task matches each event against the enabled subscriptions and
      queues it for each match. Every subscription has its own queue and
      worker, so a slow endpoint only delays its own deliveries.
    - Deliveries are signed POSTs. Failures are retried with exponential
      backoff up to ``max_attempts`` and then dropped.

    Usage::

        dispatcher = WebhookDispatcher(lambda: settings.subscriptions)
        async with dispatcher:
            await dispatcher.offer(event)
    """

    def __init__(
        self,
        subscription_source: SubscriptionSource,
        queue_size: int = 500,
        subscription_queue_size: int = 100,
        max_attempts: int = 5,
        backoff_base_secs: float = 1.0,
        backoff_cap_secs: float = 60.0,
        request_timeout_secs: float = 10.0,
        block_when_full: bool = False,
    ) -> None:
        self._subscription_source = subscription_source
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=queue_size)
        self._subscription_queue_size = subscription_queue_size
        self._max_attempts = max_attempts
        self._backoff_base_secs = backoff_base_secs
        self._backoff_cap_secs = backoff_cap_secs
        self._request_timeout_secs = request_timeout_secs
        self._block_when_full = block_when_full
        self._workers: dict[str, _SubscriptionWorker] = {}
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._delivered = 0
        self._failed = 0
        self._dropped = 0

    # ── Stats ───────────────────────────────────────────────────

    @property
    def delivered(self) -> int:
        return self._delivered

    @property
    def failed(self) -> int:
        """Deliveries abandoned after exhausting their attempts."""
        return self._failed

    @property
    def dropped(self) -> int:
        """Events dropped because a queue was full."""
        return self._dropped

    @property
    def pending(self) -> int:
        return self._queue.qsize() + sum(w.queue.qsize() for w in self._workers.values())

    # ── Intake ──────────────────────────────────────────────────

    async def offer(self, event: NotificationEvent) -> bool:
        """Queue *event* for delivery. Returns False if it was dropped."""
        if self._block_when_full:
            await self._queue.put(event)
            return True
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "webhook_event_dropped",
                target_id=event.target_id,
                event_type=event.event_type,
                dropped=self._dropped,
            )
            return False
        return True

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._fan_out_loop())
        logger.info("webhook_dispatcher_started", max_attempts=self._max_attempts)

    async def stop(self) -> None:
        """Cancel fan-out and all workers. Pending deliveries are abandoned."""
        self._running = False
        tasks = [w.task for w in self._workers.values() if w.task is not None]
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None

        abandoned = self.pending
        self._workers.clear()
        if abandoned:
            logger.warning("webhook_deliveries_abandoned", count=abandoned)
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        logger.info(
            "webhook_dispatcher_stopped",
            delivered=self._delivered,
            failed=self._failed,
            dropped=self._dropped,
        )

    async def wait_idle(self) -> None:
        """Wait until every queued event has been delivered or given up on."""
        await self._queue.join()
        for worker in list(self._workers.values()):
            await worker.queue.join()

    # ── Fan-out ─────────────────────────────────────────────────

    async def _load_subscriptions(self) -> list[WebhookSubscription]:
        result = self._subscription_source()
        if inspect.isawaitable(result):
            result = await result
        return list(result)

    async def _fan_out_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._fan_out(event)
            except Exception:
                logger.exception("webhook_fan_out_error", target_id=event.target_id)
            finally:
                self._queue.task_done()

    async def _fan_out(self, event: NotificationEvent) -> None:
        subscriptions = await self._load_subscriptions()
        self._retire_workers({s.id for s in subscriptions if s.enabled})
        for subscription in subscriptions:
            if not subscription.enabled:
                continue
            if not subscription.matches(event.webhook_kind, event.group, event.name):
                continue
            worker = self._worker_for(subscription.id)
            try:
                worker.queue.put_nowait((subscription, event))
            except asyncio.QueueFull:
                self._dropped += 1
                logger.warning(
                    "webhook_subscription_queue_full",
                    subscription_id=subscription.id,
                    target_id=event.target_id,
                )

    def _retire_workers(self, active_ids: set[str]) -> None:
        """Stop idle workers of removed or disabled subscriptions.

        Workers with deliveries still queued are left to finish and retired later.
        """
        for subscription_id, worker in list(self._workers.items()):
            if subscription_id in active_ids or not worker.idle:
                continue
            if worker.task is not None:
                worker.task.cancel()
            del self._workers[subscription_id]
            logger.info("webhook_worker_retired", subscription_id=subscription_id)

    def _worker_for(self, subscription_id: str) -> _SubscriptionWorker:
        worker = self._workers.get(subscription_id)
        if worker is None:
            worker = _SubscriptionWorker(subscription_id, self._subscription_queue_size)
            worker.task = asyncio.create_task(
                self._worker_loop(worker), name=f"webhook:{subscription_id}"
            )
            self._workers[subscription_id] = worker
        return worker

    async def _worker_loop(self, worker: _SubscriptionWorker) -> None:
        while True:
            subscription, event = await worker.queue.get()
            worker.busy = True
            try:
                await self.deliver(subscription, event)
            except Exception:
                logger.exception("webhook_worker_error", subscription_id=subscription.id)
            finally:
                worker.busy = False
                worker.queue.task_done()

    # ── Delivery ────────────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._request_timeout_secs)
            )
        return self._session

    async def deliver(self, subscription: WebhookSubscription, event: NotificationEvent) -> bool:
        """Deliver *event* with retries. Returns True once a POST succeeds."""
        body = encode_event(event)
        delay = self._backoff_base_secs
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._post(subscription, body)
            except DeliveryFailure as exc:
                logger.warning(
                    "webhook_delivery_failed",
                    subscription_id=subscription.id,
                    attempt=attempt,
                    status=exc.status,
                    reason=str(exc),
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._backoff_cap_secs)
                continue
            self._delivered += 1
            logger.debug(
                "webhook_delivered",
                subscription_id=subscription.id,
                event_type=event.event_type,
                attempt=attempt,
            )
            return True

        self._failed += 1
        logger.error(
            "webhook_delivery_abandoned",
            subscription_id=subscription.id,
            target_id=event.target_id,
            attempts=self._max_attempts,
        )
        return False

    async def _post(self, subscription: WebhookSubscription, body: bytes) -> None:
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(body, subscription.secret.get_secret_value()),
        }
        try:
            session = self._get_session()
            async with session.post(subscription.location, data=body, headers=headers) as resp:
                if 200 <= resp.status < 300:
                    return
                text = await resp.text()
                raise DeliveryFailure(f"HTTP {resp.status}: {text[:200]}", status=resp.status)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise DeliveryFailure(str(exc) or type(exc).__name__) from exc

    async def __aenter__(self) -> WebhookDispatcher:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
