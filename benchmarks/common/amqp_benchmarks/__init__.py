"""
AMQP Confirm Benchmarks Library

Publishes a burst of messages to a RabbitMQ-compatible broker with
publisher confirms enabled and times how long the broker takes to
confirm them.
"""

from .client import AmqpClient
from .config import CompletionPolicy, LoadTestConfig
from .driver import BatchDriver
from .errors import BatchTimeout, ConfigError, LoadTestError, PublishAlreadyResolved
from .handler import ConnectionHandler
from .metrics import LatencyStats, Timer, measure_memory
from .runner import LoadTestRun, LoadTestRunner
from .tracker import Batch, BatchSummary, ConfirmationTracker, Outcome, PendingPublish

__version__ = "0.1.0"

__all__ = [
    "AmqpClient",
    "Batch",
    "BatchDriver",
    "BatchSummary",
    "BatchTimeout",
    "CompletionPolicy",
    "ConfigError",
    "ConfirmationTracker",
    "ConnectionHandler",
    "LatencyStats",
    "LoadTestConfig",
    "LoadTestError",
    "LoadTestRun",
    "LoadTestRunner",
    "Outcome",
    "PendingPublish",
    "PublishAlreadyResolved",
    "Timer",
    "measure_memory",
]
