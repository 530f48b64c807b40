"""Size and capacity constants for the image worker.

These constants define cache budgets and decode limits used as defaults
by the cache tiers and the settings manager.
"""

# =============================================================================
# Memory Tier
# =============================================================================

DEFAULT_MEMORY_CACHE_MB = 5
"""Default byte budget of the memory tier in megabytes."""

DEFAULT_MEMORY_CACHE_ITEMS = 0
"""Default entry cap of the memory tier (0 = bounded by bytes only)."""

BYTES_PER_PIXEL = 4
"""Size estimate per pixel for decoded images (32-bit formats)."""

# =============================================================================
# Persistent Tier
# =============================================================================

DEFAULT_DISK_CACHE_MB = 10
"""Default byte budget of the on-disk tier in megabytes."""

DEFAULT_DISK_CACHE_FORMAT = "PNG"
"""Image format written by the on-disk tier."""

DEFAULT_DISK_CACHE_QUALITY = 90
"""Compression quality passed to QImage.save()."""

DISK_CACHE_DIR_NAME = "image_worker"
"""Sub-directory created under the platform cache location."""

# =============================================================================
# Thread Pools
# =============================================================================

DEFAULT_IO_WORKERS = 4
"""Worker threads in the IO pool."""
