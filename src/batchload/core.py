"""
Execution engine for loader contexts.

A context owns the queue of enlisted loaders and the registry of loaders for one
logical run. Draining it dispatches the enlisted loaders one after another and
keeps going until nothing is queued and no outstanding work can enlist more.
"""

from __future__ import annotations

import asyncio
import contextvars
import typing as t
import uuid

import structlog

from batchload.context import active_context
from batchload.exceptions import ConcurrentCompletionError, ContextCompletedError
from batchload.loader import DataLoader, Dispatchable, FetchFn
from batchload.options import LoaderOptions

log = structlog.get_logger(__name__)

K = t.TypeVar("K", bound=t.Hashable)
V = t.TypeVar("V")


class LoaderContext:
    """
    One logical run: an enlistment queue plus a loader registry.

    Loaders enlist themselves with their context the first time a key is loaded
    for a fresh batch. ``complete`` then dispatches them serially, in enlistment
    order, since parallel bulk fetches against one backing store rarely help
    throughput. Continuations attached to the resolved futures keep running
    while later loaders are fetched, and may enlist loaders again.

    Notes
    -----
    A context supports exactly one drain pass. Once it has finished, the context
    is terminal and rejects further use.
    """

    def __init__(self) -> None:
        self.context_id = uuid.uuid4().hex[:12]
        self._queue: list[Dispatchable] = []
        self._loaders: dict[t.Hashable, DataLoader[t.Any, t.Any]] = {}
        self._enlisted = asyncio.Event()
        self._is_completing = False
        self._is_completed = False
        self._dispatch_count = 0

    def __repr__(self) -> str:
        return (
            f"<LoaderContext {self.context_id} loaders={len(self._loaders)} "
            f"queued={len(self._queue)}>"
        )

    @property
    def is_completing(self) -> bool:
        return self._is_completing

    @property
    def is_completed(self) -> bool:
        return self._is_completed

    @property
    def dispatch_count(self) -> int:
        return self._dispatch_count

    def ensure_usable(self) -> None:
        """
        Raise if the context has already finished its drain pass.

        Raises
        ------
        ContextCompletedError
            If ``complete`` has already run to the end.
        """
        if self._is_completed:
            raise ContextCompletedError(f"Loader context {self.context_id} has already completed")

    def get_loader(
        self,
        identity: t.Hashable,
        fetch: FetchFn[K, V],
        *,
        options: LoaderOptions | None = None,
    ) -> DataLoader[K, V]:
        """
        Return the loader registered under ``identity``, creating it if needed.

        Parameters
        ----------
        identity : typing.Hashable
            Token telling one kind of data apart from another. Must stay the same
            for the same data source for the lifetime of the context.
        fetch : FetchFn
            Fetch function used when the loader has to be created.
        options : LoaderOptions | None, optional
            Options used when the loader has to be created.

        Returns
        -------
        DataLoader[K, V]
            The same instance for every call with an equal ``identity``.
        """
        self.ensure_usable()
        loader = self._loaders.get(identity)
        if loader is None:
            loader = DataLoader(fetch, self, options)
            self._loaders[identity] = loader
            log.debug(
                event="Registered loader",
                context_id=self.context_id,
                loader=loader.name,
                loader_count=len(self._loaders),
            )
        return t.cast(DataLoader[K, V], loader)

    def enlist(self, loader: Dispatchable) -> None:
        """
        Queue a loader for dispatch.

        Parameters
        ----------
        loader : Dispatchable
            Loader with an undispatched batch.
        """
        self.ensure_usable()
        self._queue.append(loader)
        self._enlisted.set()

    async def complete(
        self,
        *,
        pending: asyncio.Future[t.Any] | None = None,
        owner: asyncio.Task[t.Any] | None = None,
    ) -> None:
        """
        Dispatch enlisted loaders until the context is quiescent.

        Besides ``pending``, every unfinished task that was created while this
        context was active counts as outstanding work: such tasks are the
        continuations that may still enlist loaders.

        Parameters
        ----------
        pending : asyncio.Future[typing.Any] | None, optional
            Outstanding work (usually the task running the body of a run) that
            may keep enlisting loaders. Draining waits for it to finish.
        owner : asyncio.Task[typing.Any] | None, optional
            Task that installed this context and is itself waiting on the drain.
            It is never counted as outstanding work.

        Raises
        ------
        ConcurrentCompletionError
            If another drain pass is already running on this context.
        ContextCompletedError
            If the context has already been drained.
        """
        if self._is_completing:
            raise ConcurrentCompletionError(
                f"Loader context {self.context_id} is already completing"
            )
        self.ensure_usable()

        self._is_completing = True
        log.debug(
            event="Draining loader context",
            context_id=self.context_id,
            queued_count=len(self._queue),
        )
        try:
            await self._drain(pending=pending, owner=owner)
        finally:
            self._is_completing = False
            self._is_completed = True
        log.debug(
            event="Loader context drained",
            context_id=self.context_id,
            dispatch_count=self._dispatch_count,
        )

    def _running_tasks(
        self, *, exclude: set[asyncio.Task[t.Any] | None]
    ) -> set[asyncio.Task[t.Any]]:
        return {
            task
            for task in asyncio.all_tasks()
            if task not in exclude and task.get_context().get(active_context) is self
        }

    async def _drain(
        self,
        *,
        pending: asyncio.Future[t.Any] | None,
        owner: asyncio.Task[t.Any] | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        exclude = {asyncio.current_task(), owner}
        outstanding: set[asyncio.Future[t.Any]] = set()
        if pending is not None:
            outstanding.add(pending)

        while True:
            if self._queue:
                batch, self._queue = self._queue, []
                self._enlisted.clear()
                log.debug(
                    event="Dispatching enlisted loaders",
                    context_id=self.context_id,
                    loader_count=len(batch),
                )
                for loader in batch:
                    await loader.dispatch()
                    self._dispatch_count += 1
                # Done callbacks of the resolved futures run before the re-check.
                await asyncio.sleep(0)
                continue

            outstanding |= self._running_tasks(exclude=exclude)
            outstanding = {future for future in outstanding if not future.done()}
            if not outstanding:
                break

            self._enlisted.clear()
            # Created outside this context so the waiter is never tracked itself.
            enlisted = loop.create_task(self._enlisted.wait(), context=contextvars.Context())
            try:
                await asyncio.wait(
                    {*outstanding, enlisted},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                enlisted.cancel()
