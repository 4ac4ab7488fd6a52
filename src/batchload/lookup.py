"""
Helpers for building the key -> values mapping returned by fetch functions.
"""

import typing as t

K = t.TypeVar("K", bound=t.Hashable)
V = t.TypeVar("V")
T = t.TypeVar("T")


@t.overload
def to_lookup(items: t.Iterable[T], key: t.Callable[[T], K]) -> dict[K, list[T]]: ...


@t.overload
def to_lookup(
    items: t.Iterable[T], key: t.Callable[[T], K], value: t.Callable[[T], V]
) -> dict[K, list[V]]: ...


def to_lookup(
    items: t.Iterable[t.Any],
    key: t.Callable[[t.Any], t.Any],
    value: t.Callable[[t.Any], t.Any] | None = None,
) -> dict[t.Any, list[t.Any]]:
    """
    Group rows into a multimap keyed by ``key(row)``.

    Parameters
    ----------
    items : typing.Iterable
        Rows returned by a bulk query.
    key : typing.Callable
        Extracts the loader key from a row.
    value : typing.Callable | None, optional
        Extracts the stored value from a row. Rows are stored as-is when omitted.

    Returns
    -------
    dict
        Mapping of each key to its values, in row order.
    """
    lookup: dict[t.Any, list[t.Any]] = {}
    for item in items:
        lookup.setdefault(key(item), []).append(item if value is None else value(item))
    return lookup
