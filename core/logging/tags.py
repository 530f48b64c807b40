"""Standard logging tags for consistent log filtering.

Usage:
    from core.logging.tags import TAG_CACHE, TAG_TASK
    logger.debug("%s Cache hit: %s", TAG_CACHE, key)
"""

TAG_PERF = "[PERF]"
"""Performance metrics (cache hit rates, task timings)."""

TAG_CACHE = "[CACHE]"
"""Memory tier operations."""

TAG_DISK_CACHE = "[DISK_CACHE]"
"""Persistent tier operations."""

TAG_TASK = "[TASK]"
"""Background production task lifecycle."""

TAG_WORKER = "[WORKER]"
"""Loader requests, binding and delivery."""

TAG_RENDER = "[RENDER]"
"""Target rendering and fade-in."""

TAG_THREADING = "[THREADING]"
"""Thread pool management."""
