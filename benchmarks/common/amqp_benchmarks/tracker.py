"""
ConfirmationTracker - correlates every publish in a batch with exactly one
terminal outcome reported by the broker.

With publisher confirms enabled the broker numbers the messages published
on a channel 1, 2, 3, ... and answers each with ``Basic.Ack`` or
``Basic.Nack`` (optionally covering every lower tag at once). The tracker
assigns tags in the same order it issues publishes, so a tag maps back to
the batch index of the message it confirms.
"""

import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import pika.exceptions
import pika.spec

from .config import CompletionPolicy
from .errors import PublishAlreadyResolved
from .metrics import LatencyStats

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    """State of a single publish"""
    UNRESOLVED = "unresolved"
    ACKNOWLEDGED = "acknowledged"
    LOST = "lost"
    ERRORED = "errored"


@dataclass
class PendingPublish:
    """One outstanding publish and its eventual outcome"""
    index: int
    payload: bytes
    delivery_tag: int | None
    issued_at: float
    outcome: Outcome = Outcome.UNRESOLVED
    error_message: str | None = None
    resolved_at: float | None = None

    @property
    def resolved(self) -> bool:
        return self.outcome is not Outcome.UNRESOLVED

    def resolve(self, outcome: Outcome, at: float, error_message: str | None = None):
        """Move to a terminal outcome; a publish resolves exactly once"""
        if self.resolved:
            raise PublishAlreadyResolved(self.index, self.outcome, outcome)
        if outcome is Outcome.UNRESOLVED:
            raise ValueError("cannot resolve a publish as unresolved")
        self.outcome = outcome
        self.resolved_at = at
        if outcome is Outcome.ERRORED:
            self.error_message = error_message

    def latency_ms(self) -> float | None:
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.issued_at) * 1000


@dataclass
class Batch:
    """The messages submitted in one timer firing"""
    size: int
    target_queue: str
    channel: Any = None
    start_time: float | None = None
    issue_end_time: float | None = None
    end_time: float | None = None
    publishes: list[PendingPublish] = field(default_factory=list)

    def counts(self) -> dict[Outcome, int]:
        """Number of publishes per outcome, unresolved included"""
        tally = Counter(p.outcome for p in self.publishes)
        return {outcome: tally.get(outcome, 0) for outcome in Outcome}

    @property
    def resolved_count(self) -> int:
        return sum(1 for p in self.publishes if p.resolved)

    @property
    def is_fully_resolved(self) -> bool:
        return len(self.publishes) == self.size and self.resolved_count == self.size


@dataclass
class PublishCallbacks:
    """The three outcome handlers bound to a single publish"""
    on_acknowledged: Callable[[], None]
    on_lost: Callable[[], None]
    on_errored: Callable[[str], None]


@dataclass
class BatchSummary:
    """Timing and outcome totals for a batch"""
    size: int
    counts: dict[str, int]
    issue_ms: float | None
    confirm_ms: float | None
    latency: LatencyStats
    completed: bool

    def describe(self) -> list[str]:
        lines = [
            f"Messages: {self.size}",
            "Outcomes: " + ", ".join(f"{name}={count}" for name, count in self.counts.items()),
        ]
        if self.issue_ms is not None:
            lines.append(f"Issue time: {self.issue_ms:.3f} ms")
        if self.confirm_ms is not None:
            lines.append(f"Confirm time: {self.confirm_ms:.3f} ms")
        else:
            lines.append("Confirm time: batch did not complete")
        lines.append(f"Ack latency: {self.latency.describe()}")
        return lines


class ConfirmationTracker:
    """
    Issues the publishes of one batch and resolves each against the
    broker's confirmations.

    Completion follows the configured policy:
    - LAST_INDEX: the acknowledgment of index ``size - 1`` completes the
      batch, whatever happened to the other indices. Lost or errored
      messages never complete it.
    - ALL_RESOLVED: the batch completes once every publish has reached a
      terminal outcome.
    """

    def __init__(
        self,
        batch: Batch,
        on_complete: Callable[["ConfirmationTracker"], None],
        completion: CompletionPolicy = CompletionPolicy.LAST_INDEX,
        clock: Callable[[], float] = time.perf_counter,
        first_delivery_tag: int = 1,
    ):
        self.batch = batch
        self.on_complete = on_complete
        self.completion = CompletionPolicy(completion)
        self.clock = clock
        self.completed = False

        self._next_tag = first_delivery_tag
        self._outstanding: dict[int, PublishCallbacks] = {}

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def issue(self, index: int, payload: bytes, publish: Callable[[bytes], None]) -> PendingPublish:
        """
        Publish one message and register its outcome handlers.

        A synchronous failure of ``publish`` resolves the index as errored;
        the broker never saw the message, so its delivery tag is reused.
        """
        pending = PendingPublish(
            index=index,
            payload=payload,
            delivery_tag=self._next_tag,
            issued_at=self.clock(),
        )
        self._next_tag += 1
        self.batch.publishes.append(pending)

        callbacks = self._bind(pending)
        self._outstanding[pending.delivery_tag] = callbacks

        try:
            publish(payload)
        except Exception as e:
            del self._outstanding[pending.delivery_tag]
            self._next_tag = pending.delivery_tag
            pending.delivery_tag = None
            callbacks.on_errored(str(e) or type(e).__name__)
        else:
            logger.debug("Sent publish signal for message %d", index)

        return pending

    def _bind(self, pending: PendingPublish) -> PublishCallbacks:
        """Build fresh handlers closing over this publish only"""

        def on_acknowledged():
            self._resolve(pending, Outcome.ACKNOWLEDGED)
            logger.debug("Got ack on %d", pending.index)
            self._check_complete(pending)

        def on_lost():
            self._resolve(pending, Outcome.LOST)
            logger.warning("got LOST on %d", pending.index)
            self._check_complete(pending)

        def on_errored(message: str):
            self._resolve(pending, Outcome.ERRORED, message)
            logger.warning("Got ERROR on %d : message = %s", pending.index, message)
            self._check_complete(pending)

        return PublishCallbacks(on_acknowledged, on_lost, on_errored)

    def _resolve(self, pending: PendingPublish, outcome: Outcome, message: str | None = None):
        pending.resolve(outcome, self.clock(), message)
        if pending.delivery_tag is not None:
            self._outstanding.pop(pending.delivery_tag, None)

    def _check_complete(self, pending: PendingPublish):
        if self.completed:
            return
        if self.completion is CompletionPolicy.LAST_INDEX:
            done = (
                pending.outcome is Outcome.ACKNOWLEDGED
                and pending.index == self.batch.size - 1
            )
        else:
            done = self.batch.is_fully_resolved
        if done:
            self._complete()

    def _complete(self):
        self.completed = True
        self.batch.end_time = self.clock()
        elapsed_ms = (self.batch.end_time - self.batch.start_time) * 1000

        if self.completion is CompletionPolicy.LAST_INDEX:
            logger.info("Got ACK on all publishes in %.3f ms", elapsed_ms)
        else:
            counts = self.batch.counts()
            logger.info(
                "Resolved all %d publishes in %.3f ms (acknowledged=%d, lost=%d, errored=%d)",
                self.batch.size,
                elapsed_ms,
                counts[Outcome.ACKNOWLEDGED],
                counts[Outcome.LOST],
                counts[Outcome.ERRORED],
            )
        self.on_complete(self)

    def on_delivery_confirmation(self, method_frame):
        """pika ``confirm_delivery`` callback: Basic.Ack or Basic.Nack"""
        method = method_frame.method
        if isinstance(method, pika.spec.Basic.Ack):
            acknowledged = True
        elif isinstance(method, pika.spec.Basic.Nack):
            acknowledged = False
        else:
            logger.debug("Ignoring unexpected confirmation %s", method)
            return

        tag = method.delivery_tag
        if method.multiple:
            # tag 0 with multiple set covers everything outstanding
            tags = sorted(t for t in self._outstanding if tag == 0 or t <= tag)
        else:
            tags = [tag]

        for t in tags:
            callbacks = self._outstanding.get(t)
            if callbacks is None:
                logger.debug("Confirmation for unknown delivery tag %d", t)
                continue
            if acknowledged:
                callbacks.on_acknowledged()
            else:
                callbacks.on_lost()

    def on_channel_closed(self, channel, reason: Exception):
        """
        Resolve everything still outstanding when the channel goes away.

        A broker-initiated channel close is a protocol error for each
        message; any other close (client, connection loss) means the
        messages can no longer be confirmed.
        """
        if not self._outstanding:
            return

        if isinstance(reason, pika.exceptions.ChannelClosedByBroker):
            message = f"{reason.reply_code}: {reason.reply_text}"
            for _, callbacks in sorted(self._outstanding.items()):
                callbacks.on_errored(message)
        else:
            for _, callbacks in sorted(self._outstanding.items()):
                callbacks.on_lost()

    def summary(self) -> BatchSummary:
        """Current totals; confirm time is only set once the batch completed"""
        batch = self.batch
        issue_ms = None
        if batch.start_time is not None and batch.issue_end_time is not None:
            issue_ms = (batch.issue_end_time - batch.start_time) * 1000
        confirm_ms = None
        if self.completed:
            confirm_ms = (batch.end_time - batch.start_time) * 1000

        latencies = [
            p.latency_ms() for p in batch.publishes if p.outcome is Outcome.ACKNOWLEDGED
        ]
        return BatchSummary(
            size=batch.size,
            counts={outcome.value: count for outcome, count in batch.counts().items()},
            issue_ms=issue_ms,
            confirm_ms=confirm_ms,
            latency=LatencyStats.from_measurements(latencies),
            completed=self.completed,
        )
