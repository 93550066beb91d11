"""Memory monitoring utilities used while streaming large CSV files."""

import gc
import logging
import resource
import sys

from enricher.core.config import get_settings

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def get_memory_usage() -> int:
    """Get peak resident set size in bytes."""
    try:
        # ru_maxrss is the peak RSS, close enough for a guard
        memory_value = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # macOS reports bytes, Linux reports KB
        if sys.platform == "darwin":
            return memory_value
        return memory_value * 1024
    except Exception as e:
        logger.warning(f"Could not get memory usage: {e}")
        return 0


def get_memory_limit() -> int:
    return get_settings().memory_limit_mb * MB


def get_memory_baseline() -> int:
    return get_settings().memory_baseline_mb * MB


def check_memory_pressure() -> tuple[bool, int, int]:
    """Check if memory usage is above the baseline.

    Returns:
        (is_pressure, current_usage_bytes, limit_bytes)
    """
    current = get_memory_usage()
    limit = get_memory_limit()
    baseline = get_memory_baseline()

    is_pressure = current > baseline
    if is_pressure:
        logger.warning(
            f"Memory pressure detected: {format_bytes(current)} / "
            f"{format_bytes(limit)} (baseline: {format_bytes(baseline)})"
        )
    return is_pressure, current, limit


def check_memory_exceeded() -> tuple[bool, int, int]:
    """Check if memory usage has exceeded the hard limit.

    Returns:
        (is_exceeded, current_usage_bytes, limit_bytes)
    """
    current = get_memory_usage()
    limit = get_memory_limit()

    is_exceeded = current >= limit
    if is_exceeded:
        logger.error(f"Memory limit exceeded: {format_bytes(current)} >= {format_bytes(limit)}")
    return is_exceeded, current, limit


def force_gc() -> None:
    collected = gc.collect()
    logger.debug(f"Garbage collection freed {collected} objects")


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}TB"


def log_memory_status(context: str = "") -> None:
    """Log current memory status for debugging."""
    current = get_memory_usage()
    limit = get_memory_limit()
    usage_percent = (current / limit * 100) if limit > 0 else 0

    context_str = f" [{context}]" if context else ""
    logger.info(
        f"Memory status{context_str}: {format_bytes(current)} / "
        f"{format_bytes(limit)} ({usage_percent:.1f}%)"
    )
