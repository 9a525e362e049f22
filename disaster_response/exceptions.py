class RepositoryError(Exception):
    """The hosted database could not complete an operation."""


class CacheError(Exception):
    """The cache backend rejected a write or delete."""


class UpstreamError(Exception):
    """A third-party API failed or answered with an unexpected shape."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
