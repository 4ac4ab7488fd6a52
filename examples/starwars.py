"""
Resolve ``friends`` and ``appearsIn`` for every human with one query per field.

Run with ``python examples/starwars.py``. Set ``BATCHLOAD_LOG_LEVEL=debug`` to see
the dispatched batches.
"""

import asyncio
import typing as t
from dataclasses import dataclass

from batchload import get_loader, run, setup_logging, to_lookup


@dataclass(frozen=True)
class Human:
    human_id: int
    name: str
    home_planet: str


@dataclass(frozen=True)
class Droid:
    droid_id: int
    name: str


@dataclass(frozen=True)
class Friendship:
    human_id: int
    droid: Droid


@dataclass(frozen=True)
class HumanAppearance:
    human_id: int
    episode: str


R2D2 = Droid(droid_id=1, name="R2-D2")
C3PO = Droid(droid_id=2, name="C-3PO")

HUMANS = [
    Human(human_id=1, name="Luke", home_planet="Tatooine"),
    Human(human_id=2, name="Vader", home_planet="Tatooine"),
    Human(human_id=3, name="Leia", home_planet="Alderaan"),
]
FRIENDSHIPS = [
    Friendship(human_id=1, droid=R2D2),
    Friendship(human_id=1, droid=C3PO),
    Friendship(human_id=3, droid=R2D2),
]
APPEARANCES = [
    HumanAppearance(human_id=human_id, episode=episode)
    for human_id in (1, 2, 3)
    for episode in ("NEWHOPE", "EMPIRE", "JEDI")
]


class Database:
    """In-memory stand-in that counts how many queries were issued."""

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def select(self, table: str, rows: t.Sequence[t.Any], ids: list[int]) -> list[t.Any]:
        self.queries.append(f"SELECT * FROM {table} WHERE human_id IN {tuple(ids)}")
        await asyncio.sleep(0.01)
        return [row for row in rows if row.human_id in ids]


async def resolve_friends(db: Database, human: Human) -> list[Droid]:
    async def fetch_friends(ids: list[int]) -> dict[int, list[Droid]]:
        rows = await db.select("friendships", FRIENDSHIPS, ids)
        return to_lookup(rows, key=lambda row: row.human_id, value=lambda row: row.droid)

    return await get_loader(fetch_friends).load(human.human_id)


async def resolve_appears_in(db: Database, human: Human) -> list[str]:
    async def fetch_appearances(ids: list[int]) -> dict[int, list[str]]:
        rows = await db.select("human_appearances", APPEARANCES, ids)
        return to_lookup(rows, key=lambda row: row.human_id, value=lambda row: row.episode)

    return await get_loader(fetch_appearances).load(human.human_id)


async def resolve_human(db: Database, human: Human) -> dict[str, t.Any]:
    friends, appears_in = await asyncio.gather(
        resolve_friends(db, human),
        resolve_appears_in(db, human),
    )
    return {
        "name": human.name,
        "homePlanet": human.home_planet,
        "friends": [droid.name for droid in friends],
        "appearsIn": appears_in,
    }


async def main() -> None:
    setup_logging()
    db = Database()

    async def query() -> list[dict[str, t.Any]]:
        return await asyncio.gather(*(resolve_human(db, human) for human in HUMANS))

    for human in await run(query):
        print(human)
    print(f"{len(db.queries)} queries for {len(HUMANS)} humans:")
    for statement in db.queries:
        print(f"  {statement}")


if __name__ == "__main__":
    asyncio.run(main())
