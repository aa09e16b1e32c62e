"""
BatchDriver - fires one batch of publishes after a delay and stops the
event loop once the batch completes.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from .config import LoadTestConfig
from .errors import BatchTimeout
from .metrics import Timer
from .tracker import Batch, BatchSummary, ConfirmationTracker, Outcome

logger = logging.getLogger(__name__)


class BatchDriver:
    """
    One-shot timer bound to an open channel and a target queue.

    Only one batch is ever active. Broker confirmations reach the driver
    through ``on_delivery_confirmation`` and ``on_channel_closed`` and are
    handed to the tracker of the current batch.
    """

    def __init__(self, config: LoadTestConfig, clock: Callable[[], float] = time.perf_counter):
        self.config = config
        self.clock = clock

        self.loop: asyncio.AbstractEventLoop | None = None
        self.channel = None
        self.queue_name: str | None = None

        self.batch: Batch | None = None
        self.tracker: ConfirmationTracker | None = None
        self.abandoned = False
        self.error: BatchTimeout | None = None

        self._timer_handle: asyncio.TimerHandle | None = None
        self._deadline_handle: asyncio.TimerHandle | None = None

    @property
    def completed(self) -> bool:
        return not self.abandoned and self.tracker is not None and self.tracker.completed

    def start(self, loop: asyncio.AbstractEventLoop, channel, queue_name: str):
        """Schedule the batch to fire after the configured delay"""
        self.loop = loop
        self.channel = channel
        self.queue_name = queue_name
        self._timer_handle = loop.call_later(self.config.start_delay_s, self.on_timer_fire)

    def on_timer_fire(self):
        """Issue every publish of the batch in index order"""
        self._timer_handle = None
        logger.info("Timer fired")

        batch = Batch(
            size=self.config.message_count,
            target_queue=self.queue_name,
            channel=self.channel,
        )
        self.batch = batch
        self.tracker = ConfirmationTracker(
            batch,
            on_complete=self._on_batch_complete,
            completion=self.config.completion,
            clock=self.clock,
        )

        if self.config.deadline_s is not None:
            self._deadline_handle = self.loop.call_later(self.config.deadline_s, self._on_deadline)

        with Timer(self.clock) as timer:
            batch.start_time = timer.start_time
            for index in range(batch.size):
                self.tracker.issue(index, self.config.payload(index), self._publish)
        batch.issue_end_time = timer.end_time

        logger.info(
            "presumably sent publish signal for %d in %.3f ms",
            batch.size,
            timer.elapsed_ms(),
        )

    def _publish(self, body: bytes):
        self.channel.basic_publish(
            exchange=self.config.exchange,
            routing_key=self.queue_name,
            body=body,
        )

    def on_delivery_confirmation(self, method_frame):
        if self.abandoned:
            return
        if self.tracker is None:
            logger.debug("Confirmation before any batch was issued: %s", method_frame)
            return
        self.tracker.on_delivery_confirmation(method_frame)

    def on_channel_closed(self, channel, reason: Exception):
        if self.tracker is None or self.abandoned:
            return
        self.tracker.on_channel_closed(channel, reason)

    def _on_batch_complete(self, tracker: ConfirmationTracker):
        if self.abandoned:
            return
        self._cancel_deadline()
        self.loop.stop()

    def _on_deadline(self):
        self._deadline_handle = None
        if self.completed:
            return

        counts = self.batch.counts()
        self.abandoned = True
        self.error = BatchTimeout(
            f"Batch not complete after {self.config.deadline_s}s: "
            f"acknowledged={counts[Outcome.ACKNOWLEDGED]}, lost={counts[Outcome.LOST]}, "
            f"errored={counts[Outcome.ERRORED]}, unresolved={counts[Outcome.UNRESOLVED]}"
        )
        logger.warning("%s", self.error)
        self.loop.stop()

    def _cancel_deadline(self):
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

    def cancel(self):
        """Drop any timers still scheduled on the loop"""
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None
        self._cancel_deadline()

    def summary(self) -> BatchSummary | None:
        if self.tracker is None:
            return None
        return self.tracker.summary()
