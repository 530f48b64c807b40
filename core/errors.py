"""Exception types shared by the cache tiers, producers and the loader.

Only NotConfiguredError ever reaches callers of ImageWorker. The other
types are raised by collaborators and absorbed by the loader: a
StoreFailure degrades to a cache miss, a ProducerExhaustion clears the
memory tier and completes the request with no image.
"""


class ImageWorkerError(Exception):
    """Base class for image worker errors."""


class NotConfiguredError(ImageWorkerError):
    """An index-based load was requested without an index→key provider."""


class ProducerExhaustion(ImageWorkerError):
    """The producer ran out of memory (or a similar resource) while decoding."""

    def __init__(self, key: str, message: str = "resource exhausted during production"):
        super().__init__(f"{message}: {key}")
        self.key = key


class StoreFailure(ImageWorkerError):
    """The persistent tier could not be read or written."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"persistent store failure for {key}: {reason}")
        self.key = key
        self.reason = reason
