import asyncio

import pytest
from backend.chs_spots.contracts import ConfidenceReview, Spot
from backend.chs_spots.storage import PipelineStore

from backend.tests.factories import make_gold, make_venue


def run(coro):
    return asyncio.run(coro)


async def _with_store(store: PipelineStore, fn):
    await store.init()
    try:
        return await fn(store)
    finally:
        await store.dispose()


def make_spot(**overrides) -> Spot:
    base = dict(
        venue_id="ChIJ-moose",
        title="Tattooed Moose",
        type="Happy Hour",
        source="automated",
        promotion_time="4pm-7pm • Mon-Fri",
        promotion_list=["$5 draft beer"],
        area="Downtown",
        lat=32.7876,
        lng=-79.9403,
    )
    base.update(overrides)
    return Spot(**base)


def test_venue_queries(store):
    venues = [
        make_venue(id="a", name="A", lat=32.7800, lng=-79.9300),
        make_venue(id="b", name="B", lat=32.7801, lng=-79.9300),
        make_venue(id="c", name="C", lat=32.7900, lng=-79.9300),  # outside the box
        make_venue(id="d", name="D", lat=None, lng=None),
    ]

    async def scenario(store):
        await store.venues.upsert_many(venues)
        return (
            await store.venues.get_all(),
            await store.venues.get_by_id("b"),
            await store.venues.get_by_id("missing"),
            await store.venues.query_bbox(32.7801, -79.9300, 0.005, 5),
            await store.venues.query_bbox(32.7801, -79.9300, 0.005, 1),
        )

    all_venues, by_id, missing, nearby, nearest = run(_with_store(store, scenario))

    assert [v.id for v in all_venues] == ["a", "b", "c", "d"]
    assert by_id.name == "B"
    assert missing is None
    assert [v.id for v in nearby] == ["b", "a"]
    assert [v.id for v in nearest] == ["b"]


def test_spot_crud(store):
    async def scenario(store):
        created = await store.spots.insert(make_spot())
        updated = await store.spots.update(created.id, title="Moose", manual_override=True)
        missing = await store.spots.update(9999, title="x")
        deleted = await store.spots.delete(created.id)
        again = await store.spots.delete(created.id)
        return created, updated, missing, deleted, again, await store.spots.get_all()

    created, updated, missing, deleted, again, remaining = run(_with_store(store, scenario))

    assert created.id == 1
    assert created.promotion_list == ["$5 draft beer"]
    assert created.manual_override is False
    assert updated.title == "Moose"
    assert updated.manual_override is True
    assert missing is None
    assert deleted is True and again is False
    assert remaining == []


def test_update_rejects_unknown_fields(store):
    async def scenario(store):
        spot = await store.spots.insert(make_spot())
        await store.spots.update(spot.id, colour="red")

    with pytest.raises(ValueError):
        run(_with_store(store, scenario))


def test_replace_automated_spares_manual_and_overridden(store):
    async def scenario(store):
        await store.spots.insert(make_spot(id=1))
        await store.spots.insert(make_spot(id=2, type="Brunch"))
        await store.spots.insert(make_spot(id=3, manual_override=True))
        await store.spots.insert(make_spot(id=4, source="manual", venue_id=None))
        await store.spots.insert(make_spot(id=5, type="Trivia"))
        counts = await store.spots.replace_automated(
            ["Happy Hour", "Brunch"], [make_spot(id=6, venue_id="other")]
        )
        return counts, await store.spots.get_all()

    (deleted, inserted), spots = run(_with_store(store, scenario))

    assert (deleted, inserted) == (2, 1)
    assert [s.id for s in spots] == [3, 4, 5, 6]


def test_delete_automated(store):
    async def scenario(store):
        await store.spots.insert(make_spot())
        await store.spots.insert(make_spot(type="Brunch"))
        removed = await store.spots.delete_automated(["Brunch"])
        return removed, await store.spots.get_all(), await store.spots.max_id()

    removed, spots, max_id = run(_with_store(store, scenario))

    assert removed == 1
    assert [s.type for s in spots] == ["Happy Hour"]
    assert max_id == 1


def test_gold_upsert_replaces(store):
    async def scenario(store):
        await store.gold.upsert(make_gold([{"times": "4pm-7pm"}]))
        await store.gold.upsert(make_gold([{"times": "5pm-7pm"}], source_hash="hash-2"))
        return await store.gold.get_all()

    rows = run(_with_store(store, scenario))

    assert len(rows) == 1
    assert rows[0].source_hash == "hash-2"
    assert rows[0].promotions["entries"] == [{"times": "5pm-7pm"}]


def test_gold_requires_venue_id(store):
    async def scenario(store):
        await store.gold.upsert(make_gold([], venue_id=None))

    with pytest.raises(ValueError):
        run(_with_store(store, scenario))


def test_review_decision_map(store):
    async def scenario(store):
        await store.reviews.upsert(
            ConfidenceReview(venue_id="v1", activity_type="Happy Hour", decision="rejected",
                             reviewed_source_hash="h1", flags=["no-alcohol-keywords"])
        )
        await store.reviews.upsert(
            ConfidenceReview(venue_id="v1", activity_type="Happy Hour", decision="approved",
                             reviewed_source_hash="h2", source="llm", llm_confidence=92)
        )
        await store.reviews.upsert(
            ConfidenceReview(venue_id="v1", activity_type="Brunch", decision="approved")
        )
        return await store.reviews.get_decision_map()

    reviews = run(_with_store(store, scenario))

    assert set(reviews) == {"v1::Happy Hour", "v1::Brunch"}
    happy = reviews["v1::Happy Hour"]
    assert happy.decision == "approved"
    assert happy.reviewed_source_hash == "h2"
    assert happy.source == "llm"
    assert happy.llm_confidence == 92
    assert happy.flags == []
