"""
Batchload-specific usage exceptions.

Fetch failures are never wrapped in these types: they are delivered unchanged
to every future of the batch that failed.
"""

from __future__ import annotations


class LoaderUsageError(RuntimeError):
    """
    Signal that the loader API was called in a way it does not support.

    Notes
    -----
    Usage errors are fatal to the call that raised them, not to the process.
    """


class ConcurrentCompletionError(LoaderUsageError):
    """
    Raised when a second drain pass is started on a context that is already draining.
    """


class ContextCompletedError(LoaderUsageError):
    """
    Raised when a context is used after its single drain pass has finished.
    """


class NoActiveContextError(LoaderUsageError):
    """
    Raised when an ambient loader lookup happens outside of any loader scope.
    """
