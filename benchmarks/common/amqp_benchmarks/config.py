"""
Load-test configuration.
"""

from dataclasses import dataclass
from enum import StrEnum

from .errors import ConfigError

DEFAULT_MESSAGE_COUNT = 1000
DEFAULT_PAYLOAD_BODY = "ABCDEFGHIJKLMNOPQRSTUVWXYZ" * 4


class CompletionPolicy(StrEnum):
    """When a batch counts as complete"""
    LAST_INDEX = "last-index"  # ack of index N-1 only
    ALL_RESOLVED = "all-resolved"  # every publish reached a terminal outcome


@dataclass
class LoadTestConfig:
    """Parameters for one load-test run"""
    connection_string: str
    message_count: int = DEFAULT_MESSAGE_COUNT
    exchange: str = "loadtest"
    exchange_type: str = "topic"
    durable_exchange: bool = True
    start_delay_s: float = 1.5
    payload_body: str = DEFAULT_PAYLOAD_BODY
    completion: CompletionPolicy = CompletionPolicy.LAST_INDEX
    deadline_s: float | None = None
    log_level: str = "INFO"

    def validate(self) -> "LoadTestConfig":
        """Check value ranges, returning self so calls can be chained"""
        if not self.connection_string:
            raise ConfigError("connection_string is required")
        if self.message_count < 1:
            raise ConfigError(f"message_count must be positive, got {self.message_count}")
        if self.start_delay_s < 0:
            raise ConfigError(f"start_delay_s must not be negative, got {self.start_delay_s}")
        if self.deadline_s is not None and self.deadline_s <= 0:
            raise ConfigError(f"deadline_s must be positive, got {self.deadline_s}")
        self.completion = CompletionPolicy(self.completion)
        return self

    def payload(self, index: int) -> bytes:
        """Message body for the given index: fixed body suffixed with the index"""
        return f"{self.payload_body}{index}".encode()
