"""
LoadTestRunner - bootstraps the connection and topology, runs the event
loop until the batch completes, and reports the result.
"""

import asyncio
import contextlib
import logging
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass

from pika.adapters.asyncio_connection import AsyncioConnection

from .client import AmqpClient
from .config import LoadTestConfig
from .driver import BatchDriver
from .environment import collect_environment
from .handler import ConnectionHandler
from .metrics import measure_memory
from .tracker import BatchSummary

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class LoadTestRun:
    """Top-level timing record for one process run"""
    message_count: int
    connection_string: str
    master_start_time: float
    master_end_time: float | None = None
    summary: BatchSummary | None = None
    completed: bool = False
    abandoned: bool = False
    interrupted: bool = False
    memory_mb: float | None = None

    def runtime_ms(self) -> float:
        if self.master_end_time is None:
            return 0.0
        return (self.master_end_time - self.master_start_time) * 1000


class LoadTestRunner:
    """
    Main load-test execution.

    Provides:
    - Connection and topology bootstrap
    - One publish batch once the queue exists
    - Optional batch deadline
    - Runtime report
    """

    def __init__(
        self,
        config: LoadTestConfig,
        connection_factory: Callable = AsyncioConnection,
        handler: ConnectionHandler | None = None,
        install_signal_handlers: bool = True,
        close_timeout_s: float = 5.0,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config
        self.connection_factory = connection_factory
        self.handler = handler or ConnectionHandler()
        self.install_signal_handlers = install_signal_handlers
        self.close_timeout_s = close_timeout_s
        self.clock = clock

        self.loop: asyncio.AbstractEventLoop | None = None
        self.client: AmqpClient | None = None
        self.driver: BatchDriver | None = None
        self.interrupted = False

    def run(self) -> LoadTestRun:
        """
        Execute the load test.

        Steps:
        1. Connect, open the channel and declare exchange and queue
        2. Fire the batch once the queue is declared
        3. Run the loop until the batch completes, the deadline expires,
           the connection goes away or a stop signal arrives
        4. Close the connection and print the report
        """
        config = self.config

        print(f"\n{'='*60}")
        print(f"Will connect to {config.connection_string} and publish {config.message_count} messages")
        print(f"{'='*60}\n")
        logger.info("Environment: %s", collect_environment().describe())

        run = LoadTestRun(
            message_count=config.message_count,
            connection_string=config.connection_string,
            master_start_time=self.clock(),
        )

        loop = asyncio.new_event_loop()
        self.loop = loop
        try:
            self._add_signal_handlers(loop)
            self.client = AmqpClient(
                config,
                self.handler,
                loop,
                on_topology_ready=self._on_topology_ready,
                connection_factory=self.connection_factory,
            )
            self.client.connect()
            loop.run_forever()
            run.master_end_time = self.clock()
            self._detach_driver()
            self._shutdown(loop)
        finally:
            if self.driver is not None:
                self.driver.cancel()
            self._remove_signal_handlers(loop)
            loop.close()
            self.loop = None

        if self.driver is not None:
            run.summary = self.driver.summary()
            run.completed = self.driver.completed
            run.abandoned = self.driver.abandoned
        run.interrupted = self.interrupted
        run.memory_mb = measure_memory()

        self.report(run)
        return run

    def _on_topology_ready(self, channel, queue_name: str, message_count: int, consumer_count: int):
        logger.debug(
            "queue %s ready (messages=%d, consumers=%d)", queue_name, message_count, consumer_count
        )
        self.driver = BatchDriver(self.config, clock=self.clock)
        self.client.listener = self.driver
        self.driver.start(self.loop, channel, queue_name)

    def _detach_driver(self):
        """Freeze the batch as it stood when the loop stopped"""
        self.client.listener = None
        if self.driver is not None:
            self.driver.cancel()

    def _shutdown(self, loop: asyncio.AbstractEventLoop):
        """Close the connection, waiting at most close_timeout_s for the broker"""
        if self.client is None or not self.client.is_open:
            return
        guard = loop.call_later(self.close_timeout_s, loop.stop)
        self.client.close()
        loop.run_forever()
        guard.cancel()

    def _on_stop_signal(self, signum: signal.Signals):
        logger.warning("Received %s, stopping", signum.name)
        self.interrupted = True
        self.loop.stop()

    def _add_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        if not self.install_signal_handlers:
            return
        for signum in STOP_SIGNALS:
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signum, self._on_stop_signal, signum)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        if not self.install_signal_handlers:
            return
        for signum in STOP_SIGNALS:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signum)

    def report(self, run: LoadTestRun):
        """Pretty-print the run result"""
        print("\n" + "="*60)
        print("LOAD TEST RESULT")
        print("="*60)

        if run.summary is not None:
            for line in run.summary.describe():
                print(f"   {line}")
        else:
            print("   No batch was issued")

        print("\n" + "-"*60)
        if run.completed:
            print("BATCH COMPLETE")
        elif run.abandoned:
            print(f"TIMEOUT: {self.driver.error}")
        elif run.interrupted:
            print("INTERRUPTED")
        else:
            print("BATCH INCOMPLETE")

        if run.memory_mb is not None:
            print(f"Harness RSS memory: {run.memory_mb:.2f} MB")
        print(f"The end to end runtime of this app took: {run.runtime_ms():.0f} ms")
        print("="*60 + "\n")
