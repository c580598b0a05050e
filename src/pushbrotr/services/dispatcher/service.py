"""
Dispatcher service: decide who gets notified about a note and deliver.

For each note handed over by the host relay, the
[Dispatcher][pushbrotr.services.dispatcher.Dispatcher]:

1. Ignores notes older than ``freshness_window`` (no reads, no writes).
2. Resolves the relevant pubkeys through
   [RelevanceResolver][pushbrotr.services.dispatcher.relevance.RelevanceResolver].
3. Removes pubkeys already notified about this note and the author.
4. Asks the [MutePolicy][pushbrotr.services.dispatcher.ports.MutePolicy]
   about every remaining candidate. A candidate whose check fails is
   skipped and left unrecorded.
5. For every retained pubkey, delivers to all of its devices through the
   [PushGateway][pushbrotr.services.dispatcher.ports.PushGateway] and then
   records the pubkey as notified, whatever the per-device outcome.

Candidates are handled concurrently (bounded by
``max_concurrent_pubkeys``) and the devices of one pubkey are attempted
together. Each gateway call is bounded by ``delivery_timeout``; timeouts
and gateway errors count as failed deliveries.

The host relay's accept/reject decision never waits for this work:
[submit()][pushbrotr.services.dispatcher.Dispatcher.submit] runs
[process()][pushbrotr.services.dispatcher.Dispatcher.process] as a tracked
background task whose errors are logged and counted.

See Also:
    [DispatcherConfig][pushbrotr.services.dispatcher.DispatcherConfig]:
        Configuration model for this service.
    [PushNotifyFilter][pushbrotr.services.dispatcher.plugin.PushNotifyFilter]:
        Host-facing filter that submits notes to this service.

Examples:
    ```python
    from pushbrotr.core import SubscriptionStore
    from pushbrotr.services.dispatcher import Dispatcher

    store = SubscriptionStore.from_yaml("config/store.yaml")
    dispatcher = Dispatcher.from_yaml(
        "config/dispatcher.yaml", store=store, mute_policy=policy, gateway=gateway
    )
    async with dispatcher:
        report = await dispatcher.process(note)
    ```
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from pushbrotr.core.base_service import BaseService
from pushbrotr.core.exceptions import GatewayDeliveryError, PolicyEvaluationError
from pushbrotr.core.metrics import DISPATCH_DURATION_SECONDS
from pushbrotr.models import DeliveryResult
from pushbrotr.models.constants import ServiceName

from .configs import DispatcherConfig
from .ports import format_notification
from .relevance import RelevanceResolver


if TYPE_CHECKING:
    from pushbrotr.core.store import SubscriptionStore
    from pushbrotr.models import NotificationMessage, Note

    from .ports import MutePolicy, PushGateway


_TOKEN_LOG_PREFIX = 8


@dataclass(slots=True)
class DispatchReport:
    """Outcome of processing one note.

    Attributes:
        event_id: The processed note.
        stale: True if the note was outside the freshness window and
            ignored.
        candidates: Relevant pubkeys not yet notified, author excluded.
        notify_set: Candidates that passed the mute check.
        muted: Candidates suppressed by the mute policy.
        policy_failed: Candidates whose mute check failed (left unrecorded).
        deliveries_attempted: Gateway calls made.
        deliveries_failed: Gateway calls that failed, timed out or raised.
    """

    event_id: str
    stale: bool = False
    candidates: set[str] = field(default_factory=set)
    notify_set: set[str] = field(default_factory=set)
    muted: set[str] = field(default_factory=set)
    policy_failed: set[str] = field(default_factory=set)
    deliveries_attempted: int = 0
    deliveries_failed: int = 0

    @property
    def deliveries_succeeded(self) -> int:
        return self.deliveries_attempted - self.deliveries_failed


class Dispatcher(BaseService[DispatcherConfig]):
    """Notification dispatch and deduplication engine.

    Holds no persisted state of its own: every decision is taken against a
    point-in-time read of the
    [SubscriptionStore][pushbrotr.core.store.SubscriptionStore]. Entering
    ``async with dispatcher`` initializes the store; leaving it drains
    pending background dispatches and closes the store.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.DISPATCHER
    CONFIG_CLASS: ClassVar[type[DispatcherConfig]] = DispatcherConfig

    def __init__(
        self,
        store: SubscriptionStore,
        mute_policy: MutePolicy,
        gateway: PushGateway,
        config: DispatcherConfig | None = None,
    ) -> None:
        super().__init__(store=store, config=config)
        self._config: DispatcherConfig
        self._mute_policy = mute_policy
        self._gateway = gateway
        self._resolver = RelevanceResolver(store)
        self._tasks: set[asyncio.Task[DispatchReport | None]] = set()

    @property
    def pending(self) -> int:
        """Number of background dispatches still running."""
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process(self, note: Note) -> DispatchReport:
        """Compute the notify-set for *note* and deliver to it.

        Returns:
            A [DispatchReport][pushbrotr.services.dispatcher.service.DispatchReport]
            summarizing the decision.

        Raises:
            StoreUnavailable: If the store is not initialized.
            PersistenceError: If a store read or write fails. Every other
                recipient is still attempted before the first such error is
                re-raised.
        """
        report = DispatchReport(event_id=note.id)
        now = int(time.time())

        if note.created_at < now - self._config.freshness_window:
            report.stale = True
            self.inc_counter("notes_stale")
            self._logger.debug("note_stale", event_id=note.id, created_at=note.created_at)
            return report

        start = time.monotonic()
        candidates = await self._resolver.relevant_pubkeys_for(note)
        status = await self._store.notification_status(note.id)
        report.candidates = candidates - status.notified() - {note.pubkey}

        await self._apply_mute_policy(note, report)
        await self._deliver_to_notify_set(note, report, sent_at=now)

        duration = time.monotonic() - start
        if self._config.metrics.enabled:
            DISPATCH_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(duration)
        self.inc_counter("notes_processed")
        self._logger.info(
            "dispatch_completed",
            event_id=note.id,
            candidates=len(report.candidates),
            notified=len(report.notify_set),
            muted=len(report.muted),
            policy_failed=len(report.policy_failed),
            deliveries=report.deliveries_attempted,
            failed=report.deliveries_failed,
            duration_s=round(duration, 3),
        )
        return report

    async def _apply_mute_policy(self, note: Note, report: DispatchReport) -> None:
        """Split candidates into notify_set, muted and policy_failed."""
        pubkeys = sorted(report.candidates)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_pubkeys)

        async def check(pubkey: str) -> bool:
            async with semaphore:
                return await self._mute_policy.should_mute(note, pubkey)

        results = await asyncio.gather(*(check(pk) for pk in pubkeys), return_exceptions=True)

        first_error: BaseException | None = None
        for pubkey, result in zip(pubkeys, results, strict=True):
            # gather(return_exceptions=True) captures CancelledError as a result
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, PolicyEvaluationError):
                report.policy_failed.add(pubkey)
                self.inc_counter("mute_checks_failed")
                self._logger.warning(
                    "mute_check_failed", event_id=note.id, pubkey=pubkey, error=str(result)
                )
            elif isinstance(result, BaseException):
                first_error = first_error or result
            elif result:
                report.muted.add(pubkey)
            else:
                report.notify_set.add(pubkey)

        if report.muted:
            self.inc_counter("notifications_muted", len(report.muted))
        if first_error is not None:
            raise first_error

    async def _deliver_to_notify_set(
        self, note: Note, report: DispatchReport, *, sent_at: int
    ) -> None:
        """Fan out to every retained pubkey and record each one as notified."""
        message = format_notification(note, self._config.title)
        pubkeys = sorted(report.notify_set)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_pubkeys)

        async def notify(pubkey: str) -> list[DeliveryResult]:
            async with semaphore:
                return await self._notify_pubkey(note, pubkey, message, sent_at)

        results = await asyncio.gather(*(notify(pk) for pk in pubkeys), return_exceptions=True)

        first_error: BaseException | None = None
        for pubkey, result in zip(pubkeys, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                first_error = first_error or result
                self._logger.error(
                    "notify_pubkey_failed", event_id=note.id, pubkey=pubkey, error=str(result)
                )
                continue
            report.deliveries_attempted += len(result)
            report.deliveries_failed += sum(1 for r in result if not r.success)

        self.inc_counter("deliveries_succeeded", report.deliveries_succeeded)
        self.inc_counter("deliveries_failed", report.deliveries_failed)
        if first_error is not None:
            raise first_error

    async def _notify_pubkey(
        self,
        note: Note,
        pubkey: str,
        message: NotificationMessage,
        sent_at: int,
    ) -> list[DeliveryResult]:
        """Attempt every device of *pubkey*, then mark the pubkey as notified.

        A pubkey without devices is recorded too: having nothing to deliver
        to is not a delivery failure.
        """
        tokens = await self._store.device_tokens_for(pubkey)
        results = list(
            await asyncio.gather(*(self._deliver(note, pubkey, token, message) for token in tokens))
        )
        await self._store.record_notification_sent(note.id, pubkey, sent_at)
        self.inc_counter("notifications_recorded")
        return results

    async def _deliver(
        self,
        note: Note,
        pubkey: str,
        device_token: str,
        message: NotificationMessage,
    ) -> DeliveryResult:
        """One bounded gateway call. Adapter failures become failed results."""
        try:
            result = await asyncio.wait_for(
                self._gateway.deliver(
                    device_token,
                    message.title,
                    message.subtitle,
                    message.body,
                    message.payload,
                ),
                timeout=self._config.delivery_timeout,
            )
        except TimeoutError:
            result = DeliveryResult.failure("timeout")
        except GatewayDeliveryError as e:
            result = DeliveryResult.failure(str(e))
        except Exception as e:  # Intentionally broad: one device never aborts the pubkey
            self.inc_counter(f"errors_{type(e).__name__}")
            self._logger.error(
                "gateway_error",
                event_id=note.id,
                pubkey=pubkey,
                device=device_token[:_TOKEN_LOG_PREFIX],
                error=str(e),
                error_type=type(e).__name__,
            )
            result = DeliveryResult.failure(f"{type(e).__name__}: {e}")

        if not result.success:
            self._logger.warning(
                "delivery_failed",
                event_id=note.id,
                pubkey=pubkey,
                device=device_token[:_TOKEN_LOG_PREFIX],
                reason=result.reason,
            )
        return result

    # -------------------------------------------------------------------------
    # Background Dispatch
    # -------------------------------------------------------------------------

    def submit(self, note: Note) -> asyncio.Task[DispatchReport | None]:
        """Process *note* in a tracked background task and return immediately.

        Must be called from a running event loop. The task never raises:
        errors are logged as ``dispatch_failed`` and counted, and the task
        result is ``None``.
        """
        task = asyncio.get_running_loop().create_task(
            self._process_detached(note), name=f"dispatch:{note.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        self.set_gauge("pending_dispatches", len(self._tasks))
        return task

    async def _process_detached(self, note: Note) -> DispatchReport | None:
        try:
            return await self.process(note)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # Intentionally broad: error boundary of a detached task
            self.inc_counter("dispatch_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            self._logger.error(
                "dispatch_failed",
                event_id=note.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _on_task_done(self, task: asyncio.Task[DispatchReport | None]) -> None:
        self._tasks.discard(task)
        self.set_gauge("pending_dispatches", len(self._tasks))

    async def drain(self, timeout: float | None = None) -> int:  # noqa: ASYNC109
        """Wait for pending background dispatches.

        Dispatches still running after *timeout* seconds are cancelled.

        Returns:
            Number of dispatches that had to be cancelled.
        """
        pending = set(self._tasks)
        if not pending:
            return 0

        self._logger.info("drain_started", pending=len(pending), timeout=timeout)
        _done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)
            self._logger.warning("drain_timeout", cancelled=len(not_done))
        self._logger.info("drain_completed", cancelled=len(not_done))
        return len(not_done)

    async def on_shutdown(self) -> None:
        await self.drain(self._config.drain_timeout)
