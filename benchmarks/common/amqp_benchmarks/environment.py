"""
Environment detection for the load-test report.
"""

from dataclasses import dataclass, asdict
from enum import StrEnum
import platform

import pika
import psutil


class CpuArchitecture(StrEnum):
    """Normalized CPU architecture values"""
    X86_64 = "x86_64"
    ARM64 = "arm64"  # aarch64 -> arm64
    UNKNOWN = "unknown"

    @classmethod
    def detect(cls) -> "CpuArchitecture":
        """Detect and normalize CPU architecture"""
        machine = platform.machine().lower()
        if machine in ("x86_64", "amd64"):
            return cls.X86_64
        elif machine in ("arm64", "aarch64"):
            return cls.ARM64
        return cls.UNKNOWN


@dataclass
class Environment:
    """Host snapshot taken before the run"""
    os_name: str
    kernel: str
    python_version: str
    pika_version: str
    cpu_arch: CpuArchitecture
    cpu_cores: int
    ram_gb: float

    def to_dict(self) -> dict:
        return asdict(self)

    def describe(self) -> str:
        return (
            f"{self.os_name} {self.kernel} ({self.cpu_arch}, {self.cpu_cores} cores, "
            f"{self.ram_gb} GB RAM), Python {self.python_version}, pika {self.pika_version}"
        )


def collect_environment() -> Environment:
    """Collect host and library information"""
    return Environment(
        os_name=platform.system(),
        kernel=platform.release(),
        python_version=platform.python_version(),
        pika_version=pika.__version__,
        cpu_arch=CpuArchitecture.detect(),
        cpu_cores=psutil.cpu_count(logical=False) or psutil.cpu_count() or 1,
        ram_gb=round(psutil.virtual_memory().total / (1024**3), 2),
    )
