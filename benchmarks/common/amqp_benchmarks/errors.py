"""
Exceptions raised by the load-test harness.
"""


class LoadTestError(Exception):
    """Base class for harness errors"""
    pass


class ConfigError(LoadTestError, ValueError):
    """Raised when a load-test configuration value is out of range"""
    pass


class PublishAlreadyResolved(LoadTestError, RuntimeError):
    """Raised when a publish is given a second terminal outcome"""

    def __init__(self, index: int, outcome: str, attempted: str):
        self.index = index
        self.outcome = outcome
        self.attempted = attempted
        super().__init__(
            f"Publish {index} already resolved as {outcome}, cannot mark {attempted}"
        )


class BatchTimeout(LoadTestError):
    """Raised when a batch is abandoned at its deadline"""
    pass
