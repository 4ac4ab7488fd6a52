"""
Ambient storage for the loader context of the current asyncio call chain.

The active context lives in a ``ContextVar``: tasks created inside a scope get a
copy of the current ``contextvars.Context`` and therefore keep observing the
loader context that was active when they were scheduled.
"""

from __future__ import annotations

import asyncio
import contextvars
import typing as t

import structlog

if t.TYPE_CHECKING:
    from batchload.core import LoaderContext

log = structlog.get_logger(__name__)

active_context: contextvars.ContextVar[LoaderContext | None] = contextvars.ContextVar(
    "active_context", default=None
)


def current_context() -> LoaderContext | None:
    """
    Return the loader context of the current call chain.

    Returns
    -------
    LoaderContext | None
        Active context, or ``None`` outside of any scope.
    """
    return active_context.get()


class LoaderScope:
    """
    Context manager that installs a loader context for a scoped block.

    The synchronous form only installs and restores the context. The
    asynchronous form also drains the context: the drain starts on entry and
    runs alongside the block, so the block may await loads and spawn tasks.
    On exit the scope waits until the block's loads and every task spawned
    inside it are done, even when the block raised.

    Parameters
    ----------
    context : LoaderContext
        Context made current for the duration of the block.
    """

    def __init__(self, context: LoaderContext) -> None:
        self._context = context
        self._tokens: list[contextvars.Token[LoaderContext | None]] = []
        self._block_done: asyncio.Future[None] | None = None
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def context(self) -> LoaderContext:
        return self._context

    def _install(self) -> LoaderContext:
        self._tokens.append(active_context.set(self._context))
        return self._context

    def _restore(self) -> None:
        if self._tokens:
            active_context.reset(self._tokens.pop())

    def __enter__(self) -> LoaderContext:
        """
        Install the context.

        Returns
        -------
        LoaderContext
            The installed context.
        """
        return self._install()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Restore whatever context was current before ``__enter__``.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._restore()

    async def __aenter__(self) -> LoaderContext:
        """
        Install the context and start draining it in the background.

        Returns
        -------
        LoaderContext
            The installed context.
        """
        context = self._install()
        self._block_done = asyncio.get_running_loop().create_future()
        self._drain_task = asyncio.create_task(
            context.complete(pending=self._block_done, owner=asyncio.current_task()),
            name=f"loader_drain_{context.context_id}",
        )
        return context

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Wait for the drain to finish, then restore the previous context.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        if exc_type is not None:
            log.debug(
                event="Scope body failed, finishing dispatched work",
                context_id=self._context.context_id,
                error_type=exc_type.__name__,
            )
        try:
            if self._block_done is not None and not self._block_done.done():
                self._block_done.set_result(None)
            if self._drain_task is not None:
                await self._drain_task
        finally:
            self._block_done = None
            self._drain_task = None
            self._restore()
