"""
Main entry points for users.

``run`` executes a body inside a fresh loader context and drains the context
before handing back the body's result. ``get_loader`` is what resolvers call to
obtain the loader for their kind of data from the ambient context.
"""

from __future__ import annotations

import asyncio
import inspect
import typing as t

import structlog

from batchload.context import LoaderScope, current_context
from batchload.core import LoaderContext
from batchload.exceptions import LoaderUsageError, NoActiveContextError
from batchload.loader import DataLoader, FetchFn
from batchload.options import LoaderOptions
from batchload.utils.logging import logging_context

log = structlog.get_logger(__name__)

K = t.TypeVar("K", bound=t.Hashable)
V = t.TypeVar("V")
T = t.TypeVar("T")

_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


def _accepts_context(body: t.Callable[..., t.Any]) -> bool:
    # Only a required positional parameter asks for the context.
    try:
        signature = inspect.signature(body)
    except (TypeError, ValueError):
        return True
    return any(
        parameter.kind in _POSITIONAL_KINDS and parameter.default is inspect.Parameter.empty
        for parameter in signature.parameters.values()
    )


async def run(body: t.Callable[..., t.Awaitable[T] | T]) -> T:
    """
    Run ``body`` inside a new loader context, then fire the pending loaders.

    Parameters
    ----------
    body : typing.Callable
        Callable invoked synchronously. It receives the new ``LoaderContext``
        only if it has a required positional parameter; bodies whose parameters
        all have defaults, or are ``*args``, are called with no arguments. It may
        return a plain value or an awaitable; an awaitable is driven concurrently
        with the drain loop. Tasks created while the body runs count as
        outstanding work, so ``run`` returns only after they have finished.

    Returns
    -------
    T
        The body's result, once every enlisted loader has been dispatched.

    Raises
    ------
    LoaderUsageError
        If ``body`` is missing or not callable.
    """
    if body is None or not callable(body):
        raise LoaderUsageError("run() requires a callable body")

    context = LoaderContext()
    with logging_context(context_id=context.context_id), LoaderScope(context):
        log.debug(event="Starting loader run", context_id=context.context_id)
        result = body(context) if _accepts_context(body) else body()

        if not inspect.isawaitable(result):
            await context.complete()
            return t.cast(T, result)

        task: asyncio.Future[T] = asyncio.ensure_future(result)
        try:
            await context.complete(pending=task)
        except BaseException:
            task.cancel()
            raise
        return await task


def run_sync(body: t.Callable[..., t.Awaitable[T] | T]) -> T:
    """
    Run ``body`` with ``run`` on a new event loop.

    Parameters
    ----------
    body : typing.Callable
        See ``run``.

    Returns
    -------
    T
        The body's result.
    """
    return asyncio.run(run(body))


def loader_scope() -> LoaderScope:
    """
    Create a scope around a new loader context.

    Use it with ``async with``: the context is drained alongside the block, so
    the block may await loads or spawn resolver tasks. Exiting the block waits
    for those tasks and their loads.

    Returns
    -------
    LoaderScope
        Scope yielding the new ``LoaderContext``.
    """
    return LoaderScope(LoaderContext())


def _default_identity(fetch: t.Callable[..., t.Any]) -> t.Hashable:
    # Closures re-created per call share one code object.
    code = getattr(fetch, "__code__", None)
    return code if code is not None else fetch


def get_loader(
    fetch: FetchFn[K, V],
    *,
    identity: t.Hashable | None = None,
    options: LoaderOptions | None = None,
) -> DataLoader[K, V]:
    """
    Return the loader for ``fetch`` from the ambient loader context.

    Parameters
    ----------
    fetch : FetchFn
        Fetch function for this kind of data.
    identity : typing.Hashable | None, optional
        Registry token. Defaults to the code object of ``fetch``, so an inline
        fetch defined inside a resolver maps to one loader per context. That loader
        keeps the first closure it was created with: later closures of the same
        function are not called, so variables they capture (a ``db`` handle, say)
        are ignored. Pass an explicit ``identity`` when closures must fetch from
        different sources.
    options : LoaderOptions | None, optional
        Options used if the loader has to be created.

    Returns
    -------
    DataLoader[K, V]
        Loader registered in the current context.

    Raises
    ------
    NoActiveContextError
        If called outside of any loader scope.
    """
    context = current_context()
    if context is None:
        raise NoActiveContextError("get_loader() called outside of a loader context")
    if identity is None:
        identity = _default_identity(fetch)
    return context.get_loader(identity, fetch, options=options)
