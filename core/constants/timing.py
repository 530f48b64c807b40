"""Timing constants for the image worker.

All timing values are in milliseconds unless otherwise noted.
"""

FADE_IN_TIME_MS = 200
"""Duration of the fade-in transition applied when a loaded image is set."""

