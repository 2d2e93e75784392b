"""Turn engine: dice, scoring and end-of-game tallying.

These helpers hold no state of their own. The room owns the dice, the turn
order and the players, and calls in here while holding its roster lock.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .models import (
    CATEGORIES,
    DICE_COUNT,
    UPPER_BONUS,
    UPPER_BONUS_THRESHOLD,
    UPPER_CATEGORIES,
    Player,
)


def held_positions(raw: Any) -> set[int]:
    """Normalize a client's held-dice list to valid 0-based positions."""
    if not isinstance(raw, (list, tuple)):
        return set()

    held: set[int] = set()
    for item in raw:
        # JSON numbers may arrive as floats (NaN and Infinity included); bools are not positions.
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            continue
        if isinstance(item, float) and not (math.isfinite(item) and item.is_integer()):
            continue
        idx = int(item)
        if 0 <= idx < DICE_COUNT:
            held.add(idx)
    return held


def roll_dice(dice: Sequence[int], held: Iterable[int], rng: random.Random) -> list[int]:
    keep = set(held)
    return [face if i in keep else rng.randint(1, 6) for i, face in enumerate(dice)]


def coerce_score(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    return int(raw)


def is_category(name: Any) -> bool:
    return isinstance(name, str) and name in CATEGORIES


def next_index(index: int, length: int) -> int:
    if length <= 0:
        return 0
    return (index + 1) % length


def index_after_removal(index: int, removed_at: int, new_length: int) -> int:
    """Where the current-turn index points after one entry is removed.

    If the current player was removed the index stays put, wrapping over the
    shorter sequence. If someone earlier was removed it steps back one so it
    still names the same player.
    """
    if new_length <= 0:
        return 0
    if removed_at == index:
        return index % new_length
    if 0 <= removed_at < index:
        return index - 1
    return index % new_length


def is_game_over(players: Iterable[Player]) -> bool:
    active = [p for p in players if not p.viewer]
    if not active:
        return False
    return all(len(p.scores) >= len(CATEGORIES) for p in active)


@dataclass
class FinalScore:
    player_id: str
    name: str
    base_score: int
    upper_bonus: int

    @property
    def final_score(self) -> int:
        return self.base_score + self.upper_bonus

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_score": self.base_score,
            "upper_bonus": self.upper_bonus,
            "final_score": self.final_score,
        }


@dataclass
class GameResult:
    scores: list[FinalScore] = field(default_factory=list)
    winners: list[FinalScore] = field(default_factory=list)

    @property
    def is_draw(self) -> bool:
        return len(self.winners) > 1

    @property
    def winner_id(self) -> str:
        return self.winners[0].player_id if self.winners else ""

    @property
    def winner_name(self) -> str:
        if not self.winners:
            return ""
        if self.is_draw:
            return " & ".join(w.name for w in self.winners) + " (TIE!)"
        return self.winners[0].name

    def as_payload(self) -> dict[str, Any]:
        return {
            "final_scores": {s.player_id: s.as_dict() for s in self.scores},
            "winner_id": self.winner_id,
            "winner_name": self.winner_name,
            "is_draw": self.is_draw,
        }


def upper_bonus(scores: dict[str, int]) -> int:
    upper_total = sum(scores.get(cat, 0) for cat in UPPER_CATEGORIES)
    return UPPER_BONUS if upper_total >= UPPER_BONUS_THRESHOLD else 0


def tally(players: Iterable[Player]) -> GameResult:
    """Final scores for every non-viewer, in the order given.

    Every player sharing the top score is a winner, so ties come back as a
    draw listing all of them in display order.
    """
    result = GameResult()
    best = -1
    for p in players:
        if p.viewer:
            continue
        entry = FinalScore(
            player_id=p.id,
            name=p.name,
            base_score=p.total_score,
            upper_bonus=upper_bonus(p.scores),
        )
        result.scores.append(entry)
        if entry.final_score > best:
            best = entry.final_score
            result.winners = [entry]
        elif entry.final_score == best:
            result.winners.append(entry)
    return result
