"""
Per-key-type batching unit.

A ``DataLoader`` collects the keys requested between two dispatches, merges
duplicate requests for a key into one slot and resolves the whole batch with a
single call to its fetch function.
"""

from __future__ import annotations

import asyncio
import typing as t
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog

from batchload.options import LoaderOptions

if t.TYPE_CHECKING:
    from batchload.core import LoaderContext

log = structlog.get_logger(__name__)

K = t.TypeVar("K", bound=t.Hashable)
V = t.TypeVar("V")

FetchFn = t.Callable[[list[K]], t.Awaitable[Mapping[K, t.Iterable[V]]]]


class Dispatchable(t.Protocol):
    """Anything the engine can take off its queue and dispatch."""

    name: str

    async def dispatch(self) -> None: ...


@dataclass
class _KeySlot(t.Generic[V]):
    """The single shared outcome of one key within one batch."""

    waiters: list[asyncio.Future[list[V]]] = field(default_factory=list)
    values: list[V] | None = None

    def attach(self) -> asyncio.Future[list[V]]:
        # One future per caller: cancelling it never reaches the other callers.
        future: asyncio.Future[list[V]] = asyncio.get_running_loop().create_future()
        if self.values is not None:
            future.set_result(self.values)
        else:
            self.waiters.append(future)
        return future

    def resolve(self, values: list[V]) -> None:
        self.values = values
        waiters, self.waiters = self.waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(values)

    def fail(self, error: BaseException) -> None:
        waiters, self.waiters = self.waiters, []
        for future in waiters:
            if not future.done():
                future.set_exception(error)

    def cancel(self) -> None:
        waiters, self.waiters = self.waiters, []
        for future in waiters:
            future.cancel()


class DataLoader(t.Generic[K, V]):
    """
    Batch and deduplicate by-key requests for one kind of data.

    Parameters
    ----------
    fetch : FetchFn
        Coroutine function receiving the batched keys, in first-request order,
        and returning a mapping of key to zero or more values.
    context : LoaderContext
        Context owning this loader. The loader enlists itself there.
    options : LoaderOptions | None, optional
        Loader configuration.

    Notes
    -----
    Loaders are normally obtained through ``LoaderContext.get_loader`` so that
    every request for the same kind of data within a run shares one instance.
    Every ``load`` call gets its own future, but all calls for a key in one
    batch observe the same value list or the same exception object.
    """

    def __init__(
        self,
        fetch: FetchFn[K, V],
        context: LoaderContext,
        options: LoaderOptions | None = None,
    ) -> None:
        self._fetch = fetch
        self._context = context
        self._options = options or LoaderOptions()
        self.name: str = self._options.name or getattr(fetch, "__qualname__", repr(fetch))

        self._pending: dict[K, _KeySlot[V]] = {}
        self._cache: dict[K, _KeySlot[V]] = {}
        self._is_enlisted = False

    def __repr__(self) -> str:
        return f"<DataLoader {self.name} pending={len(self._pending)}>"

    @property
    def context(self) -> LoaderContext:
        return self._context

    @property
    def options(self) -> LoaderOptions:
        return self._options

    @property
    def is_enlisted(self) -> bool:
        return self._is_enlisted

    @property
    def pending_keys(self) -> list[K]:
        return list(self._pending)

    def load(self, key: K) -> asyncio.Future[list[V]]:
        """
        Request the values for ``key``.

        Parameters
        ----------
        key : K
            Key to load.

        Returns
        -------
        asyncio.Future[list[V]]
            Future owned by this caller. It resolves once the owning context
            dispatches the batch holding ``key``.
        """
        self._context.ensure_usable()

        slot = self._cache.get(key)
        if slot is not None:
            return slot.attach()

        slot = self._pending.get(key)
        if slot is None:
            slot = _KeySlot()
            self._pending[key] = slot
            if not self._is_enlisted:
                self._is_enlisted = True
                self._context.enlist(self)
                log.debug(event="Enlisted loader", loader=self.name)
        return slot.attach()

    def load_many(self, keys: t.Iterable[K]) -> asyncio.Future[list[list[V]]]:
        """
        Request several keys at once.

        Parameters
        ----------
        keys : typing.Iterable[K]
            Keys to load.

        Returns
        -------
        asyncio.Future[list[list[V]]]
            Values for each key, in the order of ``keys``.
        """
        return asyncio.gather(*(self.load(key) for key in keys))

    async def dispatch(self) -> None:
        """
        Fetch the current batch and resolve its callers.

        The pending batch is swapped out before the fetch starts, so keys loaded
        while the fetch is running form a new batch and enlist the loader again.
        A failing fetch fails every caller of the batch with the same exception
        and is not re-raised.
        """
        batch, self._pending = self._pending, {}
        self._is_enlisted = False
        if not batch:
            log.debug(event="Skipping empty loader batch", loader=self.name)
            return

        keys = list(batch)
        if self._options.cache:
            self._cache.update(batch)

        log.debug(event="Dispatching loader batch", loader=self.name, key_count=len(keys))
        try:
            result = await self._fetch(keys)
            if not isinstance(result, Mapping):
                raise TypeError(
                    f"Fetch for loader {self.name} returned {type(result).__name__}, "
                    "expected a mapping of key to values"
                )
            resolved = {key: list(result.get(key, ())) for key in keys}
        except asyncio.CancelledError:
            self._evict(keys=keys)
            for slot in batch.values():
                slot.cancel()
            raise
        except Exception as error:
            log.error(
                event="Loader fetch failed",
                loader=self.name,
                key_count=len(keys),
                error=str(object=error),
            )
            self._evict(keys=keys)
            for slot in batch.values():
                slot.fail(error)
            return

        for key, slot in batch.items():
            slot.resolve(resolved[key])
        log.debug(
            event="Resolved loader batch",
            loader=self.name,
            key_count=len(keys),
            hit_count=sum(1 for values in resolved.values() if values),
        )

    def _evict(self, *, keys: list[K]) -> None:
        for key in keys:
            self._cache.pop(key, None)
