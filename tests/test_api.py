"""
Tests for the run / get_loader entry points in batchload.api.
"""

import asyncio
import typing as t

import pytest

from batchload import (
    ContextCompletedError,
    LoaderContext,
    LoaderUsageError,
    NoActiveContextError,
    current_context,
    get_loader,
    loader_scope,
    run,
    run_sync,
)
from tests.mocks.fetchers import RecordingFetch


def _make_fetch(tag: str) -> t.Callable[[list[int]], t.Awaitable[dict[int, list[str]]]]:
    async def fetch(keys: list[int]) -> dict[int, list[str]]:
        return {key: [f"{tag}{key}"] for key in keys}

    return fetch


@pytest.mark.asyncio
async def test_run_sync_body_returns_after_drain(fetch: RecordingFetch) -> None:
    """Test that a synchronous body gets the context and its loads are dispatched."""
    seen: list[LoaderContext] = []

    def body(context: LoaderContext) -> list[asyncio.Future[list[str]]]:
        seen.append(context)
        loader = context.get_loader("letters", fetch)
        return [loader.load(1), loader.load(3)]

    futures = await run(body)

    assert [future.result() for future in futures] == [["a"], ["c"]]
    assert fetch.calls == [[1, 3]]
    assert seen[0].is_completed is True


@pytest.mark.asyncio
async def test_run_async_body_batches_concurrent_resolvers(fetch: RecordingFetch) -> None:
    """Test that resolvers running concurrently in the body share one batch."""

    async def resolve(key: int) -> list[str]:
        return await get_loader(fetch).load(key)

    async def body() -> list[list[str]]:
        return await asyncio.gather(*(resolve(key) for key in (1, 2, 2, 3, 4)))

    assert await run(body) == [["a"], ["b"], ["b"], ["c"], []]
    assert fetch.calls == [[1, 2, 3, 4]]


@pytest.mark.asyncio
async def test_run_drains_reentrant_loads() -> None:
    """Test that a load issued after another load resolves is dispatched before run returns."""
    humans_fetch = RecordingFetch({1: [10], 2: [20]})
    friends_fetch = RecordingFetch({10: ["r2d2"], 20: ["c3po"]})

    async def friend_of(context: LoaderContext, human_id: int) -> list[str]:
        (friend_id,) = await context.get_loader("humans", humans_fetch).load(human_id)
        return await context.get_loader("friends", friends_fetch).load(friend_id)

    async def body(context: LoaderContext) -> list[list[str]]:
        return await asyncio.gather(friend_of(context, 1), friend_of(context, 2))

    assert await run(body) == [["r2d2"], ["c3po"]]
    assert humans_fetch.calls == [[1, 2]]
    assert friends_fetch.calls == [[10, 20]]


@pytest.mark.asyncio
async def test_run_sync_body_exception_skips_drain(fetch: RecordingFetch) -> None:
    """Test that a synchronous body error propagates without dispatching."""

    def body(context: LoaderContext) -> None:
        context.get_loader("letters", fetch).load(1)
        raise ValueError("resolver failed")

    with pytest.raises(ValueError, match="resolver failed"):
        await run(body)

    assert fetch.calls == []
    assert current_context() is None


@pytest.mark.asyncio
async def test_run_async_body_exception_propagates(fetch: RecordingFetch) -> None:
    """Test that an async body error surfaces after the drain finishes."""

    async def body(context: LoaderContext) -> None:
        await context.get_loader("letters", fetch).load(1)
        raise LookupError("no such human")

    with pytest.raises(LookupError, match="no such human"):
        await run(body)
    assert fetch.calls == [[1]]


@pytest.mark.asyncio
async def test_run_fetch_error_reaches_awaiting_resolver() -> None:
    """Test that only resolvers of the failed batch observe the fetch error."""
    failing = RecordingFetch(error=TimeoutError("slow query"))
    healthy = RecordingFetch({1: ["a"]})

    async def body(context: LoaderContext) -> list[object]:
        return await asyncio.gather(
            context.get_loader("failing", failing).load(1),
            context.get_loader("failing", failing).load(2),
            context.get_loader("healthy", healthy).load(1),
            return_exceptions=True,
        )

    first, second, third = await run(body)

    assert isinstance(first, TimeoutError)
    assert second is first
    assert third == ["a"]


@pytest.mark.asyncio
async def test_run_rejects_missing_body() -> None:
    """Test that run refuses a missing or non-callable body."""
    with pytest.raises(LoaderUsageError):
        await run(None)  # type: ignore[arg-type]
    with pytest.raises(LoaderUsageError):
        await run(42)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_context_is_terminal_after_run(fetch: RecordingFetch) -> None:
    """Test that the context handed to the body cannot be reused after run."""
    contexts: list[LoaderContext] = []

    await run(contexts.append)

    with pytest.raises(ContextCompletedError):
        contexts[0].get_loader("letters", fetch)


@pytest.mark.asyncio
async def test_get_loader_outside_scope_raises(fetch: RecordingFetch) -> None:
    """Test that ambient lookup fails outside of any loader context."""
    with pytest.raises(NoActiveContextError):
        get_loader(fetch)


@pytest.mark.asyncio
async def test_get_loader_reuses_loader_for_inline_fetch() -> None:
    """Test that fetch closures built from the same code map to one loader."""

    async def body() -> list[list[str]]:
        first = get_loader(_make_fetch("first"))
        second = get_loader(_make_fetch("second"))
        assert first is second
        return await asyncio.gather(first.load(1), second.load(2))

    assert await run(body) == [["first1"], ["first2"]]


@pytest.mark.asyncio
async def test_get_loader_explicit_identity_separates_loaders() -> None:
    """Test that explicit identities keep closures of the same code apart."""

    async def body() -> list[list[str]]:
        first = get_loader(_make_fetch("first"), identity="first")
        second = get_loader(_make_fetch("second"), identity="second")
        assert first is not second
        return await asyncio.gather(first.load(1), second.load(2))

    assert await run(body) == [["first1"], ["second2"]]


@pytest.mark.asyncio
async def test_loader_scope_helper(fetch: RecordingFetch) -> None:
    """Test that loader_scope creates a fresh context drained on exit."""
    async with loader_scope() as context:
        future = get_loader(fetch).load(3)

    assert context.is_completed is True
    assert future.result() == ["c"]


def test_run_sync_without_running_loop(fetch: RecordingFetch) -> None:
    """Test the blocking entry point for callers without an event loop."""

    async def body(context: LoaderContext) -> list[list[str]]:
        return await context.get_loader("letters", fetch).load_many([1, 2])

    assert run_sync(body) == [["a"], ["b"]]
    assert fetch.calls == [[1, 2]]


@pytest.mark.asyncio
async def test_concurrent_runs_keep_separate_contexts(fetch: RecordingFetch) -> None:
    """Test that two runs in flight at once never share a context or a batch."""
    contexts: list[LoaderContext] = []

    async def body(context: LoaderContext) -> list[str]:
        contexts.append(context)
        await asyncio.sleep(0)
        loader = get_loader(fetch)
        assert loader.context is context
        return await loader.load(1)

    assert await asyncio.gather(run(body), run(body)) == [["a"], ["a"]]
    assert contexts[0] is not contexts[1]
    assert fetch.calls == [[1], [1]]
    assert all(context.is_completed for context in contexts)


@pytest.mark.asyncio
async def test_run_sync_body_drains_detached_continuations() -> None:
    """Test that a task spawned by a sync body is drained across its own suspensions."""
    humans_fetch = RecordingFetch({1: [10]})
    friends_fetch = RecordingFetch({10: ["r2d2"]})
    tasks: list[asyncio.Future[list[str]]] = []

    async def friend_of(context: LoaderContext, human_id: int) -> list[str]:
        (friend_id,) = await context.get_loader("humans", humans_fetch).load(human_id)
        await asyncio.sleep(0.01)
        return await context.get_loader("friends", friends_fetch).load(friend_id)

    def body(context: LoaderContext) -> None:
        tasks.append(asyncio.ensure_future(friend_of(context, 1)))

    await run(body)

    assert tasks[0].result() == ["r2d2"]
    assert friends_fetch.calls == [[10]]


@pytest.mark.asyncio
async def test_loader_scope_waits_for_spawned_tasks() -> None:
    """Test that tasks created inside loader_scope are finished when the block exits."""
    humans_fetch = RecordingFetch({1: [10], 2: [20]})
    friends_fetch = RecordingFetch({10: ["r2d2"], 20: ["c3po"]})

    async def friend_of(human_id: int) -> list[str]:
        (friend_id,) = await get_loader(humans_fetch).load(human_id)
        await asyncio.sleep(0)
        return await get_loader(friends_fetch).load(friend_id)

    async with loader_scope():
        tasks = [asyncio.create_task(friend_of(human_id)) for human_id in (1, 2)]

    assert [task.result() for task in tasks] == [["r2d2"], ["c3po"]]
    assert humans_fetch.calls == [[1, 2]]
    assert friends_fetch.calls == [[10, 20]]


@pytest.mark.asyncio
async def test_loader_scope_block_can_await_loads(fetch: RecordingFetch) -> None:
    """Test that awaiting a load inside loader_scope resolves instead of waiting for exit."""
    async with loader_scope():
        first = await get_loader(fetch).load(1)
        second = await asyncio.wait_for(get_loader(fetch).load(2), 1)

    assert first == ["a"]
    assert second == ["b"]
    assert fetch.calls == [[1], [2]]


@pytest.mark.asyncio
async def test_run_passes_context_only_to_required_parameter() -> None:
    """Test that bodies with only optional or variadic parameters are called bare."""

    def defaulted(limit: int = 2) -> int:
        return limit

    def variadic(*args: object) -> tuple[object, ...]:
        return args

    def required(context: LoaderContext, limit: int = 2) -> bool:
        return isinstance(context, LoaderContext) and limit == 2

    assert await run(defaulted) == 2
    assert await run(variadic) == ()
    assert await run(required) is True
