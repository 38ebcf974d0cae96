"""Exception types raised by the listing deduplication core.

Single-record operations raise one of these; batch operations collect
per-entity failures into their result objects instead.
"""


class ListingDedupError(Exception):
    """Base class for all errors raised by this package."""


class InvalidArgumentError(ListingDedupError, ValueError):
    """An argument was missing or outside its valid range."""


class ConflictError(ListingDedupError):
    """The operation would violate a uniqueness invariant."""


class NotFoundError(ListingDedupError, LookupError):
    """A referenced entity does not exist for the tenant."""


class OperationCancelledError(ListingDedupError):
    """A batch operation was cancelled before it finished.

    Work committed before the cancellation point is kept.
    """

    def __init__(self, processed: int, total: int) -> None:
        super().__init__(f"cancelled after {processed}/{total} entities")
        self.processed = processed
        self.total = total
