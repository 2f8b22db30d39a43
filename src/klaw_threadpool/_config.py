"""Pool configuration: TransportKind enum, PoolConfig, and initialization."""

from __future__ import annotations

import logging
import os
import pathlib
from dataclasses import dataclass
from enum import Enum

import psutil

from klaw_threadpool._logging import configure_logging

__all__ = [
    'PoolConfig',
    'TransportKind',
    'get_config',
    'init',
]


class TransportKind(Enum):
    """Built-in transport used to reach worker modules."""

    THREAD = 'thread'
    PROCESS = 'process'


@dataclass(frozen=True)
class PoolConfig:
    """Process-wide defaults for pools and worker calls.

    Attributes:
        pool_size: Maximum number of concurrently active threads per pool.
        ping_interval: Seconds between scheduling ticks.
        max_thread_threshold: CPU usage percent above which no new thread starts.
        timeout: Default worker call timeout in seconds (0 = no timeout).
        transport: Default transport for worker modules.
        log_level: Logging level (e.g., "DEBUG", "INFO"). None = silent.
    """

    pool_size: int = 1
    ping_interval: float = 0.1
    max_thread_threshold: float = 98.0
    timeout: float = 30.0
    transport: TransportKind = TransportKind.THREAD
    log_level: str | None = None


_config: PoolConfig | None = None


def _detect_transport() -> TransportKind:
    """Detect the default transport from KLAW_THREADPOOL_TRANSPORT."""
    env_transport = os.environ.get('KLAW_THREADPOOL_TRANSPORT', '').lower()
    if env_transport == 'process':
        return TransportKind.PROCESS
    if env_transport and env_transport != 'thread':
        logging.warning("Unknown KLAW_THREADPOOL_TRANSPORT value '%s', defaulting to thread", env_transport)
    return TransportKind.THREAD


def _detect_pool_size() -> int:
    """Detect a pool size from KLAW_THREADPOOL_SIZE or system resources.

    Leaves one physical core for the event loop, respects container CPU
    quotas, and never goes below 1.
    """
    env_size = os.environ.get('KLAW_THREADPOOL_SIZE', '')
    if env_size:
        try:
            return max(1, int(env_size))
        except ValueError:
            logging.warning("Invalid KLAW_THREADPOOL_SIZE value '%s', auto-detecting", env_size)

    try:
        physical_cores = psutil.cpu_count(logical=False)
        if physical_cores is None:
            physical_cores = psutil.cpu_count(logical=True) or 2

        container_limit = _detect_container_cpu_limit()
        if container_limit is not None:
            physical_cores = min(physical_cores, container_limit)

        return max(physical_cores - 1, 1)
    except Exception:
        return 1


def _detect_container_cpu_limit() -> int | None:
    """Detect CPU limit in containerized environments."""
    # cgroups v2
    try:
        with pathlib.Path('/sys/fs/cgroup/cpu.max').open() as f:
            content = f.read().strip()
            if content != 'max':
                quota, period = content.split()
                if quota != 'max':
                    return max(1, int(int(quota) / int(period)))
    except (FileNotFoundError, ValueError, PermissionError):
        pass

    # cgroups v1
    try:
        with pathlib.Path('/sys/fs/cgroup/cpu/cpu.cfs_quota_us').open() as quota_f:
            quota_v1 = int(quota_f.read().strip())
        with pathlib.Path('/sys/fs/cgroup/cpu/cpu.cfs_period_us').open() as period_f:
            period_v1 = int(period_f.read().strip())
        if quota_v1 > 0:
            return max(1, quota_v1 // period_v1)
    except (FileNotFoundError, ValueError, PermissionError):
        pass

    return None


def init(
    pool_size: int | None = None,
    ping_interval: float = 0.1,
    max_thread_threshold: float = 98.0,
    timeout: float = 30.0,
    transport: TransportKind | str | None = None,
    log_level: str | None = None,
) -> PoolConfig:
    """Set the process-wide pool defaults.

    Args:
        pool_size: Max concurrent threads per pool. Auto-detected if None.
        ping_interval: Seconds between scheduling ticks (minimum 0.001).
        max_thread_threshold: CPU usage percent that blocks new threads.
        timeout: Default worker call timeout in seconds, 0 disables it.
        transport: Default transport ("thread" or "process"). Auto-detected if None.
        log_level: Logging level ("DEBUG", "INFO", etc.). None = silent.

    Returns:
        The PoolConfig that was set.

    Example:
        ```python
        from klaw_threadpool import init

        init(pool_size=4, log_level='DEBUG')
        ```
    """
    global _config  # noqa: PLW0603

    if transport is None:
        resolved_transport = _detect_transport()
    elif isinstance(transport, str):
        resolved_transport = TransportKind(transport.lower())
    else:
        resolved_transport = transport

    resolved_pool_size = _detect_pool_size() if pool_size is None else max(1, pool_size)

    _config = PoolConfig(
        pool_size=resolved_pool_size,
        ping_interval=max(ping_interval, 0.001),
        max_thread_threshold=max_thread_threshold,
        timeout=max(timeout, 0.0),
        transport=resolved_transport,
        log_level=log_level,
    )

    if log_level is not None:
        configure_logging(log_level)

    return _config


def get_config() -> PoolConfig:
    """Get the current pool configuration, detecting defaults on first use."""
    if _config is None:
        return init()
    return _config
