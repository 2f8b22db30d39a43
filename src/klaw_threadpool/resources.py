"""Resource-pressure oracle backed by psutil."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import msgspec
import psutil

__all__ = [
    'ResourceMonitor',
    'ResourceOracle',
    'SystemInfo',
    'get_monitor',
]


class SystemInfo(msgspec.Struct, frozen=True):
    """Hardware summary of the host.

    Attributes:
        cores: Physical CPU cores.
        threads: Logical CPUs.
        memory: Total memory in bytes.
    """

    cores: int
    threads: int
    memory: int


@runtime_checkable
class ResourceOracle(Protocol):
    """Read-only view of system pressure, polled by pools before each start."""

    def is_any_thread_below(self, threshold: float) -> bool:
        """Return True if any logical CPU is below ``threshold`` percent busy."""
        ...

    @property
    def system(self) -> SystemInfo:
        """Hardware summary of the host."""
        ...


class ResourceMonitor:
    """Per-CPU utilisation sampling via ``psutil.cpu_percent``.

    psutil compares against the previous call, so ``start()`` takes the
    baseline sample; until then every CPU reads as idle.
    """

    __slots__ = ('_started', '_system')

    def __init__(self) -> None:
        self._started = False
        self._system: SystemInfo | None = None

    def start(self) -> None:
        if not self._started:
            psutil.cpu_percent(interval=None, percpu=True)
            self._started = True

    @property
    def system(self) -> SystemInfo:
        if self._system is None:
            threads = psutil.cpu_count(logical=True) or 1
            self._system = SystemInfo(
                cores=psutil.cpu_count(logical=False) or threads,
                threads=threads,
                memory=psutil.virtual_memory().total,
            )
        return self._system

    def is_any_thread_below(self, threshold: float) -> bool:
        if not self._started:
            self.start()
            return True
        usage = psutil.cpu_percent(interval=None, percpu=True)
        return any(percent < threshold for percent in usage)


_monitor: ResourceMonitor | None = None


def get_monitor() -> ResourceMonitor:
    """Get the shared monitor, starting it on first use."""
    global _monitor  # noqa: PLW0603
    if _monitor is None:
        _monitor = ResourceMonitor()
        _monitor.start()
    return _monitor
