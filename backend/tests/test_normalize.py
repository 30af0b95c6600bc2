import pytest
from backend.chs_spots.normalize import (
    canonicalize_hours,
    content_hash,
    has_content_changed,
    looks_binary,
    normalize_text,
    normalize_url,
)

WEEK = [
    ("Monday", "11:00 AM - 10:00 PM"),
    ("Tuesday", "11:00 AM - 10:00 PM"),
    ("Wednesday", "11:00 AM - 10:00 PM"),
    ("Thursday", "11:00 AM - 11:00 PM"),
    ("Friday", "11:00 AM - 1:00 AM"),
    ("Saturday", "10:00 AM - 1:00 AM"),
    ("Sunday", "10:00 AM - 9:00 PM"),
]


def render_week(start: int) -> str:
    rotated = WEEK[start:] + WEEK[:start]
    rows = " ".join(f"{day}: {hours}" for day, hours in rotated)
    return f"Hours {rows} Happy Hour 4-7pm daily"


class TestNormalizeText:
    def test_strips_volatile_dates_and_years(self):
        text = "Updated 2025-03-14T10:22:01Z on Friday March 14th, 2025. Happy hour since 2024!"
        out = normalize_text(text)
        assert "2025" not in out
        assert "2024" not in out
        assert "March" not in out
        assert "Happy hour since" in out

    def test_strips_tracking_noise(self):
        text = (
            "Menu https://bar.com/menu?utm_source=fb&fbclid=abc123 "
            "gtm-5xk2 UA-12345-1 G-ABC123 Follow us on Instagram. "
            "We use cookies to improve your experience. Accept All Cookies "
            "Skip to content Order Now Locations (5829) session_abcdef123456"
        )
        out = normalize_text(text)
        for token in ("utm_source", "fbclid", "gtm-", "UA-", "G-ABC", "cookies", "Cookies",
                      "Skip to", "Order Now", "(5829)", "session_"):
            assert token not in out
        assert out.startswith("Menu https://bar.com/menu")

    def test_strips_footer_and_placeholders(self):
        text = "Loading... Wings $1 No description added. Copyright © 2024 All rights reserved"
        assert normalize_text(text) == "Wings $1"

    def test_collapses_whitespace(self):
        assert normalize_text("  $5   drafts\n\n\t$6 wells  ") == "$5 drafts $6 wells"

    def test_binary_payload_normalizes_to_empty(self):
        blob = "\x00\x01\x02\x03" * 40
        assert looks_binary(blob)
        assert normalize_text(blob) == ""

    def test_short_binary_is_not_discarded(self):
        assert not looks_binary("\x00" * 50)

    @pytest.mark.parametrize("value", [None, "", 42])
    def test_non_text_is_empty(self, value):
        assert normalize_text(value) == ""

    @pytest.mark.parametrize(
        "text",
        [
            "Follow us on Facebook page Follow us on Twitter",
            "Order Order Now Now",
            "Copyright © 2024 © 2025 Bar",
            "(1234)(5678) count",
            "Skip to Skip to content content",
            render_week(3),
            "plain text with nothing to strip",
            "Hours " + "Jan " * 7 + "5 " * 7 + "end",
            "Menu " + "March " * 12 + "14 " * 12 + "Wings",
        ],
    )
    def test_idempotent(self, text):
        once = normalize_text(text)
        assert normalize_text(once) == once

    def test_nested_month_day_phrases_fully_removed(self):
        assert normalize_text("Hours " + "Jan " * 7 + "5 " * 7 + "end") == "Hours end"


class TestHoursCanonicalization:
    def test_rotation_invariant(self):
        outputs = {normalize_text(render_week(start)) for start in range(7)}
        assert len(outputs) == 1

    def test_sorted_monday_first(self):
        out = canonicalize_hours(render_week(4))
        assert out.index("Monday") < out.index("Wednesday") < out.index("Sunday")

    def test_fewer_than_three_blocks_untouched(self):
        text = "Sunday: 10:00 AM - 9:00 PM Monday: 11:00 AM - 10:00 PM"
        assert canonicalize_hours(text) == text


class TestNormalizeUrl:
    def test_drops_query_and_fragment(self):
        url = "https://Bar.com/menu/?utm_source=ig&fbclid=x#specials"
        assert normalize_url(url) == "https://bar.com/menu/"

    def test_keeps_port_and_defaults_path(self):
        assert normalize_url("http://localhost:8080?x=1") == "http://localhost:8080/"

    def test_unparseable_falls_back_to_split(self):
        assert normalize_url("not a url?x=1#frag") == "not a url"

    def test_empty(self):
        assert normalize_url(None) == ""
        assert normalize_url("") == ""


def test_content_hash_ignores_noise():
    a = "Happy Hour 4-7pm $5 drafts. Updated 2025-01-02"
    b = "Happy   Hour 4-7pm $5 drafts. Updated 2025-06-30"
    assert content_hash(a) == content_hash(b)
    assert not has_content_changed(a, b)
    assert has_content_changed(a, "Happy Hour 3-6pm $5 drafts")
