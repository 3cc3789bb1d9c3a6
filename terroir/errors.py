"""
Error taxonomy for merge operations.

Callers catch ``MergeError`` at the request boundary and turn the message
into a status line; everything below that boundary raises.
"""


class MergeError(Exception):
    """Base class for all merge failures."""
    pass


class MergeValidationError(MergeError):
    """The request did not name at least one distinct follower."""
    pass


class NotFoundError(MergeError):
    """Leader or a follower no longer resolves to a live row."""
    pass


class TransientStoreError(MergeError):
    """Lock timeout, dropped connection or similar; safe to retry."""
    pass


class MergeFailedError(MergeError):
    """Unexpected failure. The transaction was rolled back."""
    pass


class MergeCancelledError(MergeError):
    """The caller cancelled the merge before it committed."""
    pass
