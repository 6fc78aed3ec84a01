"""
tests/test_draw.py — Prize Draw Tests
=======================================
"""

from __future__ import annotations

import random
from collections import Counter

import pytest

from promowheel.engine import draw as draw_mod
from promowheel.engine.draw import PrizeSegment, draw, normalize_segments

SEGMENTS = normalize_segments([
    {"label": "10% Off", "prize_type": "discount", "color": "#111"},
    {"label": "Free Gift", "prize_type": "free_gift"},
    {"label": "Try Again", "prize_type": "no_win"},
    {"label": "Nothing", "is_no_win": True},
])


class TestSegments:
    def test_no_win_detected_from_prize_type_or_flag(self):
        assert [s.is_win for s in SEGMENTS] == [True, True, False, False]

    def test_display_keys_round_trip(self):
        assert SEGMENTS[0].extra == {"color": "#111"}
        assert SEGMENTS[0].to_dict()["color"] == "#111"

    def test_labels_are_trimmed(self):
        (seg,) = normalize_segments([{"label": "  Mug  "}])
        assert seg.label == "Mug"

    def test_existing_segments_pass_through(self):
        seg = PrizeSegment(label="Pen")
        assert normalize_segments([seg]) == [seg]


class TestDraw:
    def test_empty_wheel_raises(self):
        with pytest.raises(ValueError):
            draw([])

    def test_result_matches_index(self):
        result = draw(SEGMENTS, random.Random(7))
        assert result.segment is SEGMENTS[result.index]

    def test_uses_system_random_by_default(self):
        assert isinstance(draw_mod._system_random, random.SystemRandom)

    def test_roughly_uniform_including_no_win(self):
        rng = random.Random(12345)
        counts = Counter(draw(SEGMENTS, rng).index for _ in range(8000))
        assert set(counts) == {0, 1, 2, 3}
        for index in range(4):
            assert 1700 < counts[index] < 2300

    def test_single_segment_always_drawn(self):
        only = [PrizeSegment(label="Sticker")]
        assert all(draw(only).index == 0 for _ in range(20))
