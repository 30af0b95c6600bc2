"""End-to-end runs of the create-spots orchestration against a temp SQLite db."""

import asyncio
import json

from backend.chs_spots import llm_review
from backend.chs_spots.contracts import ConfidenceReview, Spot
from backend.chs_spots.llm_client import ChatResult
from backend.chs_spots.pipeline import find_stale_overrides, run_create_spots

from backend.tests.factories import make_gold, make_venue

HAPPY_HOUR = {
    "activityType": "Happy Hour",
    "label": "Happy Hour",
    "times": "4pm-7pm",
    "days": "Mon-Fri",
    "specials": ["$5 draft beer"],
    "confidence": 85,
}
# 55 -> flag
TACO_SPECIALS = {
    "activityType": "Happy Hour",
    "label": "Daily Specials",
    "times": "3pm-9pm",
    "days": "Daily",
    "specials": ["$2 tacos"],
}
# 0 -> reject
CAFE_HOURS = {
    "activityType": "Happy Hour",
    "label": "Breakfast Cafe",
    "times": "7am-11am",
    "days": "Daily",
    "specials": ["$1 coffee"],
}
BRUNCH = {
    "activityType": "Brunch",
    "label": "Weekend Brunch",
    "times": "10am-2pm",
    "days": "Sat-Sun",
    "specials": ["$4 mimosas"],
    "confidence": 90,
}

MOOSE = make_venue()
HUSK = make_venue(id="ChIJ-husk", name="Husk", lat=32.7797, lng=-79.9334, area="French Quarter")
TACO = make_venue(id="ChIJ-taco", name="Taco Boy", lat=32.7900, lng=-79.9400)
CAFE = make_venue(id="ChIJ-cafe", name="Corner Cafe", lat=32.7700, lng=-79.9300)


def run_pipeline(store, *, venues, gold, spots=(), reviews=(), credentials=None):
    async def scenario():
        await store.init()
        try:
            await store.venues.upsert_many(venues)
            for row in gold:
                await store.gold.upsert(row)
            for spot in spots:
                await store.spots.insert(spot)
            for review in reviews:
                await store.reviews.upsert(review)
            report = await run_create_spots(store, credentials=credentials)
            return report, await store.spots.get_all(), await store.reviews.get_decision_map()
        finally:
            await store.dispose()

    return asyncio.run(scenario())


def install_fake_review(monkeypatch, decisions_by_venue):
    """Answer each prompt item with the decision configured for its venue name."""

    async def fake_chat(messages, credentials, **kwargs):
        items = json.loads(messages[1]["content"].split("\n\n", 1)[1])
        answer = []
        for item in items:
            configured = decisions_by_venue.get(item["venue"])
            if configured:
                decision, confidence = configured
                answer.append(
                    {"index": item["index"], "decision": decision, "confidence": confidence,
                     "reasoning": f"{decision} {item['venue']}"}
                )
        return ChatResult(content=json.dumps(answer))

    monkeypatch.setattr(llm_review, "chat", fake_chat)


def test_builds_spots_and_reports_review_queue(store):
    gold = [
        make_gold([HAPPY_HOUR, BRUNCH]),
        make_gold([TACO_SPECIALS], venue_id=TACO.id, venue_name="Taco Boy"),
        make_gold([CAFE_HOURS], venue_id=CAFE.id, venue_name="Corner Cafe"),
        make_gold([HAPPY_HOUR], venue_id="ChIJ-unknown"),
        make_gold([], venue_id=HUSK.id, promotions={"found": False}),
    ]

    report, spots, _ = run_pipeline(store, venues=[MOOSE, HUSK, TACO, CAFE], gold=gold)

    assert sorted((s.venue_id, s.type) for s in spots) == [
        ("ChIJ-moose", "Brunch"),
        ("ChIJ-moose", "Happy Hour"),
        ("ChIJ-taco", "Happy Hour"),
    ]
    assert all(s.source == "automated" for s in spots)
    assert sorted(s.id for s in spots) == [1, 2, 3]
    assert report.created == 3
    assert report.missing_venue == 1
    assert report.no_promotions == 1
    assert report.incomplete == 1  # the cafe: everything rejected
    assert [e.venue_id for e in report.flagged] == [TACO.id]
    assert [e.venue_id for e in report.rejected] == [CAFE.id]
    assert report.flagged[0].venue == "Taco Boy"
    assert report.flagged[0].source_hash == "hash-1"
    assert report.managed_types == ["Happy Hour", "Brunch"]

    review_file = report.review_file()
    assert review_file["flagged"][0]["venueId"] == TACO.id
    assert review_file["flagged"][0]["effectiveConfidence"] == 55
    assert review_file["rejected"][0]["type"] == "Happy Hour"
    assert review_file["llmAutoApplied"] == 0


def test_rerun_replaces_automated_spots(store):
    stale = Spot(id=10, venue_id=MOOSE.id, title="Old Moose", type="Happy Hour",
                 promotion_time="2pm-4pm", lat=MOOSE.lat, lng=MOOSE.lng)
    manual = Spot(id=11, title="Secret Dive Bar", type="Happy Hour", source="manual",
                  lat=32.75, lng=-79.95)

    report, spots, _ = run_pipeline(
        store, venues=[MOOSE], gold=[make_gold([HAPPY_HOUR])], spots=[stale, manual]
    )

    by_id = {s.id: s for s in spots}
    assert report.deleted == 1
    assert 10 not in by_id
    assert by_id[11].source == "manual"
    assert by_id[12].promotion_time == "4pm-7pm • Mon-Fri"


def test_manual_override_is_preserved_and_stale_detected(store):
    edited = Spot(id=5, venue_id=MOOSE.id, title="Moose (edited)", type="Happy Hour",
                  promotion_time="custom", manual_override=True, lat=MOOSE.lat, lng=MOOSE.lng)
    orphan = Spot(id=6, venue_id=HUSK.id, title="Husk", type="Happy Hour",
                  manual_override=True, lat=HUSK.lat, lng=HUSK.lng)

    report, spots, _ = run_pipeline(
        store, venues=[MOOSE, HUSK], gold=[make_gold([HAPPY_HOUR, BRUNCH])], spots=[edited, orphan]
    )

    happy = [s for s in spots if s.venue_id == MOOSE.id and s.type == "Happy Hour"]
    assert [s.title for s in happy] == ["Moose (edited)"]
    assert any(s.venue_id == MOOSE.id and s.type == "Brunch" for s in spots)
    assert [(st.spot.id, st.reason) for st in report.stale_overrides] == [
        (6, "upstream gold extraction no longer exists")
    ]


def test_find_stale_overrides_reasons():
    spot = Spot(id=1, venue_id="v1", title="x", type="Brunch", manual_override=True)
    no_brunch = make_gold([HAPPY_HOUR], venue_id="v1")
    not_found = make_gold([], venue_id="v1", promotions={"found": False})

    assert find_stale_overrides([spot], [no_brunch])[0].reason == "upstream no longer has Brunch data"
    assert find_stale_overrides([spot], [not_found])[0].reason == (
        "upstream venue no longer reports promotions"
    )
    assert find_stale_overrides([spot], [make_gold([BRUNCH], venue_id="v1")]) == []


def test_prior_reviews_with_matching_hash_are_honoured(store):
    gold = [
        make_gold([TACO_SPECIALS], venue_id=TACO.id, venue_name="Taco Boy"),
        make_gold([CAFE_HOURS], venue_id=CAFE.id, venue_name="Corner Cafe"),
    ]
    reviews = [
        ConfidenceReview(venue_id=TACO.id, activity_type="Happy Hour", decision="rejected",
                         reviewed_source_hash="hash-1"),
        ConfidenceReview(venue_id=CAFE.id, activity_type="Happy Hour", decision="approved",
                         reviewed_source_hash="hash-1"),
    ]

    report, spots, _ = run_pipeline(store, venues=[TACO, CAFE], gold=gold, reviews=reviews)

    assert [s.venue_id for s in spots] == [CAFE.id]
    assert report.review_approved == 1
    assert report.review_rejected == 1
    assert report.flagged == [] and report.rejected == []


def test_reviews_for_an_older_source_hash_are_ignored(store):
    gold = [make_gold([TACO_SPECIALS], venue_id=TACO.id, source_hash="hash-new")]
    reviews = [
        ConfidenceReview(venue_id=TACO.id, activity_type="Happy Hour", decision="rejected",
                         reviewed_source_hash="hash-old"),
    ]

    report, spots, _ = run_pipeline(store, venues=[TACO], gold=gold, reviews=reviews)

    assert [s.venue_id for s in spots] == [TACO.id]
    assert [e.venue_id for e in report.flagged] == [TACO.id]


def test_llm_decisions_apply_in_the_same_run(store, monkeypatch, credentials):
    install_fake_review(
        monkeypatch,
        {
            "Taco Boy": ("reject", 95),  # flagged -> dropped now
            "Corner Cafe": ("approve", 90),  # rejected -> resurrected now
        },
    )
    gold = [
        make_gold([TACO_SPECIALS], venue_id=TACO.id, venue_name="Taco Boy"),
        make_gold([CAFE_HOURS], venue_id=CAFE.id, venue_name="Corner Cafe"),
    ]

    report, spots, reviews = run_pipeline(
        store, venues=[TACO, CAFE], gold=gold, credentials=credentials
    )

    assert [s.venue_id for s in spots] == [CAFE.id]
    assert report.llm_auto_applied == 2
    assert report.flagged == [] and report.rejected == []
    taco = reviews[f"{TACO.id}::Happy Hour"]
    assert taco.decision == "rejected"
    assert taco.source == "llm"
    assert taco.reviewed_source_hash == "hash-1"
    assert taco.llm_confidence == 95
    assert reviews[f"{CAFE.id}::Happy Hour"].decision == "approved"
    assert report.review_file()["reviewsInDb"] == 2


def test_unsure_llm_verdicts_go_to_human_review(store, monkeypatch, credentials):
    install_fake_review(monkeypatch, {"Taco Boy": ("reject", 60)})
    gold = [
        make_gold([TACO_SPECIALS], venue_id=TACO.id, venue_name="Taco Boy"),
        make_gold([CAFE_HOURS], venue_id=CAFE.id, venue_name="Corner Cafe"),
    ]

    report, spots, reviews = run_pipeline(
        store, venues=[TACO, CAFE], gold=gold, credentials=credentials
    )

    assert [s.venue_id for s in spots] == [TACO.id]
    assert reviews == {}
    assert [e.llm_decision for e in report.flagged] == ["reject"]
    assert [e.llm_decision for e in report.rejected] == [None]
    assert report.llm_errors == 1


def test_spots_without_coordinates_are_skipped(store):
    nowhere = make_venue(lat=None, lng=None)

    report, spots, _ = run_pipeline(store, venues=[nowhere], gold=[make_gold([HAPPY_HOUR])])

    assert spots == []
    assert report.skipped == 1
    assert report.created == 0


def test_manual_spots_are_linked_to_nearby_venue(store):
    manual = Spot(id=1, title="The Tattooed Moose Downtown", type="Happy Hour", source="manual",
                  lat=MOOSE.lat + 30 / 111_000, lng=MOOSE.lng)

    report, spots, _ = run_pipeline(store, venues=[MOOSE], gold=[], spots=[manual])

    assert report.linked_manual == 1
    assert spots[0].venue_id == MOOSE.id
