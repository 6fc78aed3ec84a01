"""
promowheel.engine.draw — Prize Draw
=====================================

Picks one wheel segment uniformly at random with the OS CSPRNG.  A
"Try Again" segment is exactly as likely as any prize; there is no
weighting.  The draw runs server side inside the spin transaction so the
client never gets to choose an outcome.
"""

from __future__ import annotations

import random
import secrets
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

__all__ = ["DrawResult", "PrizeSegment", "draw", "normalize_segments"]

NO_WIN_PRIZE_TYPE = "no_win"

_system_random = secrets.SystemRandom()


@dataclass(frozen=True, slots=True)
class PrizeSegment:
    """One slice of the wheel.

    Display keys (colour, icon, description …) are carried in ``extra`` so
    they round-trip untouched; the engine itself only looks at ``label`` and
    whether the slice is a win.
    """

    label: str
    prize_type: str | None = None
    is_no_win: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        return not self.is_no_win

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PrizeSegment:
        extra = {k: v for k, v in raw.items() if k not in ("label", "prize_type", "is_no_win")}
        prize_type = raw.get("prize_type")
        return cls(
            label=str(raw.get("label") or "").strip(),
            prize_type=prize_type,
            is_no_win=bool(raw.get("is_no_win")) or prize_type == NO_WIN_PRIZE_TYPE,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "label": self.label,
            "prize_type": self.prize_type,
            "is_no_win": self.is_no_win,
        }


@dataclass(frozen=True, slots=True)
class DrawResult:
    index: int
    segment: PrizeSegment


def normalize_segments(raw_segments: Iterable[dict[str, Any] | PrizeSegment]) -> list[PrizeSegment]:
    """Coerce stored JSON segments into :class:`PrizeSegment` objects."""
    return [
        seg if isinstance(seg, PrizeSegment) else PrizeSegment.from_dict(seg)
        for seg in raw_segments
    ]


def draw(segments: Sequence[PrizeSegment], rng: random.Random | None = None) -> DrawResult:
    """Pick a segment index uniformly from ``range(len(segments))``.

    *rng* is injectable for tests; production uses :class:`secrets.SystemRandom`.

    Raises
    ------
    ValueError
        If *segments* is empty.
    """
    if not segments:
        raise ValueError("Cannot draw from a wheel with no segments")
    index = (rng or _system_random).randrange(len(segments))
    return DrawResult(index=index, segment=segments[index])
